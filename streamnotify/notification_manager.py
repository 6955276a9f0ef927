"""Notification manager - runs events through filters, shaping and the display queue."""

import asyncio
import logging
import re
from collections import Counter
from typing import Any, Optional

from .clock import Clock, SystemClock
from .currency import is_platform_unit
from .display_queue import DisplayQueue, DisplaySink
from .dispatcher import SideEffectDispatcher
from .events import IntentKind, Platform, canonical_type, kind_of
from .models import Notification, NotificationResult, QueueItem, Reason
from .normalizers import Normalizer, get_normalizer
from .notification_config import ConfigError, NotificationsConfig
from .notification_filter import OldMessageFilter, SelfMessageFilter
from .shaper import Shaper
from .spam_detector import DonationSpamDetector
from .suppression import UserSuppressor
from .transport import ChatTransportFacade, ConnectionRegistry

logger = logging.getLogger(__name__)

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")

OPERATOR_USER_ID = "operator"

# Currency assumed for gifts that arrive without one
PLATFORM_DEFAULT_CURRENCY = {
    Platform.TIKTOK: "coins",
    Platform.TWITCH: "bits",
}


def normalize_keys(data: dict) -> dict:
    """Accept camelCase keys (userId, giftCount, ...) as well as snake_case."""
    return {_CAMEL.sub("_", str(key)).lower(): value for key, value in data.items()}


class NotificationManager:
    """Orchestrates the notification pipeline.

    Order per event: enablement, self/old-message filters, donation spam
    detection (skipped for aggregated gifts), per-user rate limit, shaping,
    display queue commit, side effects.

    The spam detector is optional; without it gifts are never held back.
    Sinks on the dispatcher are optional; missing ones are skipped.
    """

    def __init__(
        self,
        config: NotificationsConfig,
        display_sink: DisplaySink,
        clock: Optional[Clock] = None,
        spam_detector: Optional[DonationSpamDetector] = None,
        suppressor: Optional[UserSuppressor] = None,
        dispatcher: Optional[SideEffectDispatcher] = None,
        shaper: Optional[Shaper] = None,
        connections: Optional[ConnectionRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.display_sink = display_sink
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger(__name__)
        self.spam_detector = spam_detector
        self.suppressor = suppressor or UserSuppressor(config, self.clock)
        self.dispatcher = dispatcher or SideEffectDispatcher()
        self.shaper = shaper or Shaper(self.clock)
        self.connections = connections or ConnectionRegistry()
        self.self_filter = SelfMessageFilter()
        self.old_filter = OldMessageFilter()
        self.normalizers: dict[Platform, Normalizer] = {
            platform: get_normalizer(platform, self.clock) for platform in Platform
        }
        self.pipeline_lock = asyncio.Lock()
        self.stats: Counter = Counter()

    async def handle_notification(
        self,
        notification_type: str,
        platform: "str | Platform",
        data: dict,
        connection_time_ms: Optional[int] = None,
    ) -> NotificationResult:
        """Run one event through the pipeline.

        Args:
            notification_type: "platform:<kind>" or bare kind
            platform: Platform the event came from
            data: Event data; camelCase or snake_case keys
            connection_time_ms: Platform connection time; defaults to the registry

        Returns:
            NotificationResult with the notification id, or why it was not shown
        """
        try:
            result = await self._process(notification_type, platform, data, connection_time_ms)
        except asyncio.CancelledError:
            self.logger.info(f"Cancelled {notification_type} before it was queued")
            result = NotificationResult.fail(Reason.CANCELLED)
        self.stats[result.reason.value if result.reason else "admitted"] += 1
        return result

    async def _process(
        self,
        notification_type: str,
        platform: "str | Platform",
        data: dict,
        connection_time_ms: Optional[int],
    ) -> NotificationResult:
        config = self.config
        try:
            kind = kind_of(notification_type)
            platform = Platform.parse(platform)
        except ValueError as e:
            self.logger.error(f"Rejected notification: {e}")
            return NotificationResult.fail(Reason.INVALID_NOTIFICATION)
        notification_type = canonical_type(kind)
        data = normalize_keys(data or {})

        try:
            if not config.general.enabled:
                self.logger.debug(f"Blocked {notification_type}: notifications disabled")
                return NotificationResult.suppress(Reason.DISABLED)
            if not config.is_platform_enabled(platform) or not config.is_type_enabled(platform, kind):
                self.logger.debug(f"Blocked {notification_type}: disabled for {platform.value}")
                return NotificationResult.suppress(Reason.DISABLED)
        except ConfigError as e:
            self.logger.error(f"config_missing: {e}")
            return NotificationResult.fail(Reason.CONFIG_MISSING)

        username = str(data.get("username") or data.get("display_name") or data.get("user_id") or "").strip()
        if not username:
            self.logger.error(f"Rejected {notification_type} from {platform.value}: missing username")
            return NotificationResult.fail(Reason.INVALID_NOTIFICATION)

        data["username"] = username
        if kind is IntentKind.GIFT and not data.get("currency") and platform in PLATFORM_DEFAULT_CURRENCY:
            data["currency"] = PLATFORM_DEFAULT_CURRENCY[platform]

        if kind is IntentKind.GIFT and data.get("amount") == 0 and not is_platform_unit(data.get("currency")):
            self.logger.debug(f"Blocked {notification_type} from {username}: zero amount")
            return NotificationResult.suppress(Reason.ZERO_AMOUNT)

        if self.self_filter.should_filter(platform, data, config):
            return NotificationResult.suppress(Reason.SELF_MESSAGE)

        if kind is IntentKind.CHAT:
            if connection_time_ms is None:
                connection_time_ms = self.connections.connection_time(platform)
            if self.old_filter.is_old_message(platform, data.get("timestamp"), connection_time_ms, config):
                return NotificationResult.suppress(Reason.OLD_MESSAGE)

        async with self.pipeline_lock:
            if kind is IntentKind.GIFT and not data.get("is_aggregated"):
                if not self._passes_spam_check(platform, username, data):
                    return NotificationResult.suppress(Reason.SPAM_DETECTION)

            user_id = str(data.get("user_id") or username)
            if not self.suppressor.admit(user_id, notification_type):
                return NotificationResult.suppress(Reason.USER_RATE_LIMIT)

            try:
                notification = self.shaper.shape(notification_type, platform, data, config)
            except ConfigError as e:
                self.logger.error(f"config_missing: {e}")
                return NotificationResult.fail(Reason.CONFIG_MISSING)
            except ValueError as e:
                self.logger.warning(f"Could not shape {notification_type} from {username}: {e}")
                return NotificationResult.fail(Reason.SHAPING_FAILED)

            return self._commit(notification, config)

    def _passes_spam_check(self, platform: Platform, username: str, data: dict) -> bool:
        if self.spam_detector is None or data.get("amount") is None:
            return True
        gift_count = data.get("gift_count") or 1
        try:
            decision = self.spam_detector.handle_donation_spam(
                str(data.get("user_id") or username),
                username,
                float(data["amount"]) / gift_count,
                str(data.get("gift_type") or "gift"),
                int(gift_count),
                platform,
                data.get("currency"),
            )
        except Exception as e:
            # Spam detection failing must not lose the gift
            self.logger.warning(f"Spam detection failed for {username}, showing gift: {e}")
            return True
        return decision.should_show

    def _commit(self, notification: Notification, config: NotificationsConfig) -> NotificationResult:
        try:
            item = QueueItem.from_notification(notification, self.clock.now_ms())
            self.display_sink.add_item(item)
        except Exception as e:
            self.logger.error(f"sink_failure: display rejected {notification.id}: {e}")
            return NotificationResult.fail(Reason.SINK_FAILURE)

        self.logger.info(notification.log_message)
        try:
            self.dispatcher.dispatch(notification, config)
        except Exception as e:
            self.logger.warning(f"sink_failure: could not dispatch side effects for {notification.id}: {e}")
        return NotificationResult(success=True, notification_id=notification.id)

    async def handle_raw_event(
        self,
        platform: "str | Platform",
        raw: Any,
        connection_time_ms: Optional[int] = None,
    ) -> Optional[NotificationResult]:
        """Normalise a raw platform payload and run it through the pipeline.

        Returns:
            NotificationResult, or None when the payload was dropped as malformed
        """
        platform = Platform.parse(platform)
        intent = self.normalizers[platform].normalize(raw)
        if intent.kind is IntentKind.RAW:
            self.stats["normalise_error"] += 1
            if intent.normalise_error and intent.normalise_error.startswith("combo_in_progress"):
                self.logger.debug(f"Waiting for streak to end on {platform.value}: {intent.normalise_error}")
            else:
                self.logger.warning(f"normalise_error: dropped {platform.value} payload: {intent.normalise_error}")
            return None
        return await self.handle_notification(
            intent.notification_type, platform, intent.to_data(), connection_time_ms
        )

    def attach_transport(self, transport: ChatTransportFacade) -> None:
        """Route a transport's payloads into handle_raw_event."""
        platform = Platform.parse(transport.platform)
        self.connections.register(transport)

        async def on_event(raw: Any) -> Optional[NotificationResult]:
            return await self.handle_raw_event(platform, raw)

        transport.set_event_handler(on_event)

    async def announce(
        self, username: str, message: str, platform: "str | Platform" = Platform.TWITCH
    ) -> NotificationResult:
        """Queue an operator announcement at envelope priority.

        Skips spam detection and the per-user rate limit.
        """
        config = self.config
        platform = Platform.parse(platform)
        if not config.general.enabled:
            return NotificationResult.suppress(Reason.DISABLED)
        data = {
            "username": username,
            "user_id": OPERATOR_USER_ID,
            "message": message,
            "announcement": True,
        }
        async with self.pipeline_lock:
            try:
                notification = self.shaper.shape(canonical_type(IntentKind.ENVELOPE), platform, data, config)
            except ConfigError as e:
                self.logger.error(f"config_missing: {e}")
                return NotificationResult.fail(Reason.CONFIG_MISSING)
            except ValueError as e:
                self.logger.warning(f"Could not shape announcement: {e}")
                return NotificationResult.fail(Reason.SHAPING_FAILED)
            return self._commit(notification, config)

    async def flush_aggregations(self) -> list[NotificationResult]:
        """Show summaries for gifts the spam detector held back."""
        if self.spam_detector is None:
            return []
        results = []
        for aggregated in self.spam_detector.pop_due_aggregations():
            self.logger.info(aggregated.message)
            results.append(
                await self.handle_notification(
                    canonical_type(IntentKind.GIFT), aggregated.platform, aggregated.to_data()
                )
            )
        return results

    def replace_config(self, config: NotificationsConfig) -> None:
        """Swap in a new config; in-flight events keep the one they started with."""
        self.config = config
        self.suppressor.update_config(config)
        if self.spam_detector is not None:
            self.spam_detector.update_config(config)
        if isinstance(self.display_sink, DisplayQueue):
            self.display_sink.max_queue_size = config.display.max_queue_size
            self.display_sink.chat_optimization = config.display.chat_optimization
        self.logger.info("Notification config replaced")

    def cleanup(self) -> None:
        """Housekeeping sweep over spam and suppression state."""
        self.suppressor.cleanup()
        if self.spam_detector is not None:
            self.spam_detector.cleanup()

    async def shutdown(self) -> None:
        """Wait for pending side effects."""
        await self.dispatcher.drain()

    def get_stats(self) -> dict:
        stats = {
            "results": dict(self.stats),
            "suppression": self.suppressor.get_statistics(),
            "sink_failures": self.dispatcher.failures,
            "artifacts_detected": self.shaper.artifacts_detected,
        }
        if self.spam_detector is not None:
            stats["spam"] = self.spam_detector.get_statistics()
        return stats
