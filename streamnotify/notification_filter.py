"""Notification filters - self messages and messages from before connecting."""

import logging
from typing import Any, Optional

from .events import Platform, parse_iso_ms
from .notification_config import NotificationsConfig

logger = logging.getLogger(__name__)


def _same_name(a: Any, b: Any) -> bool:
    if not a or not b:
        return False
    return str(a).strip().lower() == str(b).strip().lower()


class SelfMessageFilter:
    """Detects events authored by the broadcaster's own account."""

    def is_filtering_enabled(self, platform: Platform, config: NotificationsConfig) -> bool:
        """Check whether self messages should be dropped for a platform.

        Config errors fail open: the message is admitted and a warning logged.
        """
        try:
            return config.is_self_filtering_enabled(platform)
        except Exception as e:
            logger.warning(f"Could not read self-message setting for {platform}: {e}")
            return False

    def is_self_message(self, platform: Platform, event: dict, config: NotificationsConfig) -> bool:
        """Check if an event came from the configured broadcaster identity.

        Args:
            platform: Platform the event came from
            event: Normalised event data (nested raw fields are also understood)
            config: Current notification config

        Returns:
            True if the event should be treated as the broadcaster's own
        """
        try:
            identity = config.platform(platform)
        except Exception as e:
            logger.warning(f"Could not read broadcaster identity for {platform}: {e}")
            return False

        username = event.get("username")
        if platform is Platform.TWITCH:
            return self._is_twitch_self(event, username, identity.username)
        if platform is Platform.YOUTUBE:
            return self._is_youtube_self(event, username, identity.username)
        if platform is Platform.TIKTOK:
            return self._is_tiktok_self(event, username, identity.username, identity.user_id)
        return False

    def should_filter(self, platform: Platform, event: dict, config: NotificationsConfig) -> bool:
        """True if filtering is on and the event is a self message."""
        if not self.is_filtering_enabled(platform, config):
            return False
        if self.is_self_message(platform, event, config):
            logger.debug(f"Blocked self message on {platform.value} from {event.get('username')}")
            return True
        return False

    @staticmethod
    def _is_twitch_self(event: dict, username: Any, broadcaster: str) -> bool:
        if event.get("self") is True:
            return True
        if _same_name(username, broadcaster):
            return True
        context = event.get("context") if isinstance(event.get("context"), dict) else {}
        return _same_name(event.get("context_username") or context.get("username"), broadcaster)

    @staticmethod
    def _is_youtube_self(event: dict, username: Any, broadcaster: str) -> bool:
        if _same_name(username, broadcaster):
            return True
        if event.get("is_broadcaster") is True or event.get("isBroadcaster") is True:
            return True
        author = event.get("author") if isinstance(event.get("author"), dict) else {}
        if event.get("is_chat_owner") is True or author.get("isChatOwner") is True:
            return True
        badges = event.get("badges") or author.get("badges") or []
        return any("Owner" in str(badge) for badge in badges)

    @staticmethod
    def _is_tiktok_self(
        event: dict, username: Any, broadcaster: str, broadcaster_id: Optional[str]
    ) -> bool:
        if _same_name(username, broadcaster) or _same_name(event.get("unique_id"), broadcaster):
            return True
        if broadcaster_id and str(event.get("user_id")) == str(broadcaster_id):
            return True
        return False


class OldMessageFilter:
    """Drops chat messages sent before the latest platform connection."""

    def is_old_message(
        self,
        platform: Platform,
        timestamp: Any,
        connection_time_ms: Optional[int],
        config: NotificationsConfig,
    ) -> bool:
        """Check if a chat message predates the connection.

        Args:
            platform: Platform the message came from
            timestamp: ISO-8601 timestamp of the message
            connection_time_ms: Last successful handshake in ms epoch, if known
            config: Current notification config

        Returns:
            True if the message should be dropped
        """
        if not config.general.filter_old_messages:
            return False
        if connection_time_ms is None:
            return False
        sent_at = parse_iso_ms(timestamp)
        if sent_at is None:
            return False
        if sent_at < connection_time_ms:
            logger.debug(
                f"Blocked old {platform.value} message: sent {sent_at} < connected {connection_time_ms}"
            )
            return True
        return False
