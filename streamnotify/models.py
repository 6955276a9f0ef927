"""Notification and queue models."""

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .events import TYPE_PREFIX, IntentKind, Platform, kind_of
from .notification_config import KNOWN_PRIORITIES


class Reason(str, Enum):
    """Why a notification was not shown (or failed)."""

    # Suppressions (success=True, suppressed=True)
    DISABLED = "disabled"
    SPAM_DETECTION = "spam_detection"
    USER_RATE_LIMIT = "user_rate_limit"
    SELF_MESSAGE = "self_message"
    OLD_MESSAGE = "old_message"
    ZERO_AMOUNT = "zero_amount"

    # Failures (success=False)
    CONFIG_MISSING = "config_missing"
    SINK_FAILURE = "sink_failure"
    CANCELLED = "cancelled"
    INVALID_NOTIFICATION = "invalid_notification"
    SHAPING_FAILED = "shaping_failed"


_ids = itertools.count(1)


def next_notification_id(platform: Platform, kind: IntentKind, now_ms: int) -> str:
    """Generate a process-unique notification id."""
    return f"{platform.value}-{kind.value}-{now_ms}-{next(_ids)}"


class Notification(BaseModel):
    """A shaped notification ready for the display queue."""

    id: str = Field(min_length=1)
    type: str
    platform: Platform
    user_id: str = ""
    username: str = Field(min_length=1)
    display_message: str = Field(min_length=1)
    tts_message: str = Field(min_length=1)
    log_message: str = Field(min_length=1)
    priority: int
    duration: int = Field(ge=0)
    processed_at: int = Field(ge=0)
    timestamp: str = Field(min_length=1)
    created_at: int = Field(ge=0)

    # Chat
    message: Optional[str] = None

    # Gift / member
    amount: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    currency: Optional[str] = Field(default=None, min_length=1)
    gift_type: Optional[str] = None
    gift_count: Optional[int] = Field(default=None, ge=0)
    tier: Optional[str] = None
    months: Optional[int] = Field(default=None, ge=0)
    is_aggregated: bool = False
    cumulative_total: Optional[int] = Field(default=None, ge=0)

    # Raid
    viewer_count: Optional[int] = Field(default=None, gt=0)

    metadata: dict = Field(default_factory=dict)

    @property
    def kind(self) -> IntentKind:
        return kind_of(self.type)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Notification":
        if not self.type.startswith(TYPE_PREFIX):
            raise ValueError(f"type must start with {TYPE_PREFIX!r}")
        kind = kind_of(self.type)
        if self.priority not in KNOWN_PRIORITIES:
            raise ValueError(f"unknown priority {self.priority}")
        if self.created_at > self.processed_at:
            raise ValueError("created_at must not be after processed_at")
        if kind is IntentKind.RAID and self.viewer_count is None:
            raise ValueError("raid notifications need a viewer_count")
        return self


class QueueItem(BaseModel):
    """An entry on the display queue."""

    id: str
    type: str
    platform: Platform
    priority: int
    duration: int = Field(ge=0)
    enqueued_at: int = Field(ge=0)
    data: Notification

    @model_validator(mode="after")
    def _check_matches_data(self) -> "QueueItem":
        if self.data.id != self.id:
            raise ValueError("queue item id does not match notification id")
        if self.data.type != self.type:
            raise ValueError("queue item type does not match notification type")
        if self.priority not in KNOWN_PRIORITIES:
            raise ValueError(f"unknown priority {self.priority}")
        return self

    @property
    def kind(self) -> IntentKind:
        return kind_of(self.type)

    @classmethod
    def from_notification(cls, notification: Notification, enqueued_at: int) -> "QueueItem":
        return cls(
            id=notification.id,
            type=notification.type,
            platform=notification.platform,
            priority=notification.priority,
            duration=notification.duration,
            enqueued_at=enqueued_at,
            data=notification,
        )


@dataclass
class NotificationResult:
    """Outcome of one pipeline invocation."""

    success: bool
    suppressed: bool = False
    reason: Optional[Reason] = None
    notification_id: Optional[str] = None

    @classmethod
    def suppress(cls, reason: Reason) -> "NotificationResult":
        return cls(success=True, suppressed=True, reason=reason)

    @classmethod
    def fail(cls, reason: Reason) -> "NotificationResult":
        return cls(success=False, reason=reason)

    def to_dict(self) -> dict:
        result = {"success": self.success}
        if self.suppressed:
            result["suppressed"] = True
        if self.reason is not None:
            result["reason"] = self.reason.value
        if self.notification_id is not None:
            result["notificationId"] = self.notification_id
        return result
