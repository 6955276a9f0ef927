"""Donation spam detection.

Tracks recent gifts per (user, platform) inside a sliding window. Once a
user sends more low-value gifts of one type than the configured limit, the
extra gifts are held back and rolled into one aggregated summary that is
released when the window closes.
"""

import itertools
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

from .clock import Clock, SystemClock
from .events import Platform
from .notification_config import NotificationsConfig

logger = logging.getLogger(__name__)

LOW_VALUE_SPAM = "low_value_spam"

# Spam state is kept this many windows before cleanup drops it
RETENTION_WINDOWS = 2


@dataclass
class DonationEntry:
    """One gift seen inside the spam window."""

    timestamp: int
    amount: float
    gift_type: str
    gift_count: int


@dataclass
class SpamDecision:
    """Result of a spam check."""

    should_show: bool
    reason: Optional[str] = None
    aggregated_id: Optional[str] = None


@dataclass
class PendingAggregation:
    """Suppressed gifts waiting to be summarised."""

    aggregated_id: str
    user_id: str
    username: str
    platform: Platform
    started_at: int
    currency: Optional[str] = None
    entries: list[DonationEntry] = field(default_factory=list)


@dataclass
class AggregatedDonation:
    """Summary of suppressed gifts, emitted once their window has closed.

    Attributes:
        aggregated_id: Id shared with the SpamDecision that suppressed the gifts
        total_amount: Sum of unit amount x count over the suppressed gifts
        total_gifts: Number of individual gifts (counts summed)
        gift_types: Distinct gift names in the order first seen
        message: Human readable summary
    """

    aggregated_id: str
    user_id: str
    username: str
    platform: Platform
    total_amount: float
    total_gifts: int
    gift_types: list[str]
    currency: Optional[str]
    message: str

    def to_data(self) -> dict:
        """Data dict for an aggregated gift notification."""
        gift_type = self.gift_types[0] if len(self.gift_types) == 1 else "gifts"
        return {
            "user_id": self.user_id,
            "username": self.username,
            "amount": self.total_amount,
            "currency": self.currency,
            "gift_type": gift_type,
            "gift_count": self.total_gifts,
            "is_aggregated": True,
            "aggregated_id": self.aggregated_id,
            "gift_types": list(self.gift_types),
        }


class DonationSpamDetector:
    """Sliding-window detector for rapid low-value gifts."""

    def __init__(
        self,
        config: NotificationsConfig,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, Platform], list[DonationEntry]] = defaultdict(list)
        self._pending: dict[tuple[str, Platform], PendingAggregation] = {}
        self._ids = itertools.count(1)
        self._suppressed_total = 0

    def update_config(self, config: NotificationsConfig) -> None:
        self.config = config

    @property
    def window_ms(self) -> int:
        return int(self.config.spam.spam_detection_window * 1000)

    def handle_donation_spam(
        self,
        user_id: str,
        username: str,
        amount: float,
        gift_type: str,
        gift_count: int,
        platform: Platform,
        currency: Optional[str] = None,
    ) -> SpamDecision:
        """Record a gift and decide whether it should be shown.

        Args:
            user_id: Platform user id of the sender
            username: Sender name (used for aggregated summaries)
            amount: Value of one unit of the gift
            gift_type: Gift name
            gift_count: How many units were sent
            platform: Platform the gift came from
            currency: Currency of the amount (used for summaries)

        Returns:
            SpamDecision; suppressed gifts carry the id of their aggregation
        """
        platform = Platform.parse(platform)
        if not self.config.is_spam_detection_enabled(platform):
            return SpamDecision(should_show=True)

        spam = self.config.spam
        key = (str(user_id), platform)

        with self._lock:
            now = self.clock.now_ms()
            entry = DonationEntry(now, float(amount), str(gift_type), int(gift_count))
            window = self._entries[key]
            window.append(entry)
            cutoff = now - self.window_ms
            window[:] = [e for e in window if e.timestamp > cutoff]

            individual_count = sum(1 for e in window if e.gift_type == entry.gift_type)
            running_amount = sum(e.amount for e in window)

            if amount <= spam.low_value_threshold and individual_count > spam.max_individual_notifications:
                pending = self._pending.get(key)
                if pending is None:
                    pending = PendingAggregation(
                        aggregated_id=f"agg-{platform.value}-{user_id}-{next(self._ids)}",
                        user_id=str(user_id),
                        username=username,
                        platform=platform,
                        started_at=now,
                        currency=currency,
                    )
                    self._pending[key] = pending
                pending.entries.append(entry)
                self._suppressed_total += 1
                self.logger.debug(
                    f"Blocked gift spam from {username} on {platform.value}: "
                    f"{individual_count}x {gift_type} in window (running {running_amount})"
                )
                return SpamDecision(
                    should_show=False,
                    reason=LOW_VALUE_SPAM,
                    aggregated_id=pending.aggregated_id,
                )

        return SpamDecision(should_show=True)

    def pop_due_aggregations(self) -> list[AggregatedDonation]:
        """Remove and return aggregations whose window has closed."""
        with self._lock:
            now = self.clock.now_ms()
            due = [
                key
                for key, pending in self._pending.items()
                if now - pending.started_at >= self.window_ms
            ]
            return [self._summarise(self._pending.pop(key)) for key in due]

    @staticmethod
    def _summarise(pending: PendingAggregation) -> AggregatedDonation:
        total_amount = sum(e.amount * e.gift_count for e in pending.entries)
        total_gifts = sum(e.gift_count for e in pending.entries)
        gift_types = list(dict.fromkeys(e.gift_type for e in pending.entries))
        unit = pending.currency or ""
        amount_text = f"{total_amount:g}"
        message = (
            f"{pending.username} sent {total_gifts} gifts worth {amount_text} {unit}".rstrip()
            + f" ({', '.join(gift_types)})"
        )
        return AggregatedDonation(
            aggregated_id=pending.aggregated_id,
            user_id=pending.user_id,
            username=pending.username,
            platform=pending.platform,
            total_amount=total_amount,
            total_gifts=total_gifts,
            gift_types=gift_types,
            currency=pending.currency,
            message=message,
        )

    def cleanup(self) -> int:
        """Drop stale entries and empty users. Returns entries removed."""
        removed = 0
        with self._lock:
            cutoff = self.clock.now_ms() - self.window_ms * RETENTION_WINDOWS
            for key in list(self._entries):
                entries = self._entries[key]
                kept = [e for e in entries if e.timestamp > cutoff]
                removed += len(entries) - len(kept)
                if kept:
                    self._entries[key] = kept
                else:
                    del self._entries[key]
        if removed:
            self.logger.debug(f"Spam cleanup removed {removed} entries")
        return removed

    def get_statistics(self) -> dict:
        with self._lock:
            return {
                "tracked_users": len(self._entries),
                "tracked_entries": sum(len(v) for v in self._entries.values()),
                "pending_aggregations": len(self._pending),
                "suppressed_total": self._suppressed_total,
            }

    def reset_tracking(self) -> None:
        with self._lock:
            self._entries.clear()
            self._pending.clear()
            self._suppressed_total = 0
