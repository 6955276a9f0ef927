"""Event data classes for the notification pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

TYPE_PREFIX = "platform:"


class Platform(str, Enum):
    """Streaming platforms events can come from."""

    YOUTUBE = "youtube"
    TWITCH = "twitch"
    TIKTOK = "tiktok"

    @classmethod
    def parse(cls, value: "str | Platform") -> "Platform":
        """Resolve a platform from its value, name or short letter.

        Raises:
            ValueError: If the platform is unknown
        """
        if isinstance(value, Platform):
            return value
        key = str(value).strip().lower()
        if key in _PLATFORM_ALIASES:
            return _PLATFORM_ALIASES[key]
        raise ValueError(f"Unknown platform: {value}")


_PLATFORM_ALIASES = {
    "v": Platform.YOUTUBE,
    "youtube": Platform.YOUTUBE,
    "t": Platform.TWITCH,
    "twitch": Platform.TWITCH,
    "s": Platform.TIKTOK,
    "tiktok": Platform.TIKTOK,
}


class IntentKind(str, Enum):
    """Kinds of events a normaliser can produce."""

    CHAT = "chat"
    FOLLOW = "follow"
    MEMBER = "member"
    GIFT = "gift"
    GIFTMEMBER = "giftmember"
    RAID = "raid"
    ENVELOPE = "envelope"
    RAW = "raw"


# Kinds that can be shown on the overlay
NOTIFIABLE_KINDS = {kind for kind in IntentKind if kind is not IntentKind.RAW}

# Kinds that carry a monetary amount
MONETARY_KINDS = {IntentKind.GIFT, IntentKind.GIFTMEMBER}


def canonical_type(value: "str | IntentKind") -> str:
    """Return the prefixed notification type, e.g. "platform:gift".

    Raises:
        ValueError: If the kind is unknown or not notifiable
    """
    return f"{TYPE_PREFIX}{kind_of(value).value}"


def kind_of(value: "str | IntentKind") -> IntentKind:
    """Return the kind for a prefixed or bare notification type."""
    if isinstance(value, IntentKind):
        kind = value
    else:
        name = str(value)
        if name.startswith(TYPE_PREFIX):
            name = name[len(TYPE_PREFIX):]
        try:
            kind = IntentKind(name)
        except ValueError:
            raise ValueError(f"Unknown notification type: {value}") from None
    if kind not in NOTIFIABLE_KINDS:
        raise ValueError(f"Not a notifiable type: {value}")
    return kind


def iso_from_ms(ms: int) -> str:
    """Format a ms epoch as an ISO-8601 UTC string with milliseconds."""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso_ms(value: Any) -> Optional[int]:
    """Parse an ISO-8601 timestamp into ms epoch, or None if invalid."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


@dataclass
class RawIntent:
    """A platform event after normalisation.

    Attributes:
        platform: Platform the event came from
        kind: What happened (chat, gift, raid, ...)
        user_id: Platform user id of the author
        username: Display name of the author
        timestamp: ISO-8601 source timestamp
        created_at: Source timestamp in ms epoch
        payload: Kind-specific fields (amount, currency, gift_type, ...)
        display_name: Optional secondary name
        normalise_error: Why the payload could not be normalised (raw kind only)
    """

    platform: Platform
    kind: IntentKind
    user_id: str
    username: str
    timestamp: str
    created_at: int
    payload: dict = field(default_factory=dict)
    display_name: Optional[str] = None
    normalise_error: Optional[str] = None

    @property
    def notification_type(self) -> str:
        """Prefixed notification type for this intent."""
        return canonical_type(self.kind)

    def to_data(self) -> dict:
        """Flatten into the data dict the notification manager accepts."""
        data = dict(self.payload)
        data.update(
            {
                "user_id": self.user_id,
                "username": self.username,
                "timestamp": self.timestamp,
                "created_at": self.created_at,
            }
        )
        if self.display_name:
            data["display_name"] = self.display_name
        return data


def raw_intent(
    platform: Platform,
    raw: Any,
    error: str,
    created_at: int = 0,
) -> RawIntent:
    """Build the raw-kind intent returned for malformed payloads."""
    return RawIntent(
        platform=platform,
        kind=IntentKind.RAW,
        user_id="",
        username="",
        timestamp=iso_from_ms(created_at),
        created_at=created_at,
        payload={"raw": raw},
        normalise_error=error,
    )
