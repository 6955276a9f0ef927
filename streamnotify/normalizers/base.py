"""Base classes for platform normalisers."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..clock import Clock, SystemClock
from ..events import IntentKind, Platform, RawIntent, iso_from_ms, parse_iso_ms, raw_intent

logger = logging.getLogger(__name__)


class NormaliseError(ValueError):
    """Raised inside a normaliser when a payload is malformed."""


class Normalizer(ABC):
    """Abstract base class for turning platform payloads into RawIntents."""

    platform: Platform

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    def normalize(self, raw: Any) -> RawIntent:
        """Normalise a raw platform payload.

        Never raises: malformed payloads come back as a `raw` kind intent
        carrying the payload and a normalise_error.

        Args:
            raw: Payload as delivered by the platform transport

        Returns:
            RawIntent for the event
        """
        now = self.clock.now_ms()
        if not isinstance(raw, dict):
            return raw_intent(self.platform, raw, "payload is not an object", now)
        try:
            return self._normalize(raw)
        except NormaliseError as e:
            logger.debug(f"Could not normalise {self.platform.value} payload: {e}")
            return raw_intent(self.platform, raw, str(e), now)
        except (TypeError, AttributeError, ValueError) as e:
            logger.warning(f"Unexpected field types in {self.platform.value} payload: {e}")
            return raw_intent(self.platform, raw, f"malformed payload: {e}", now)

    @abstractmethod
    def _normalize(self, raw: dict) -> RawIntent:
        """Platform-specific normalisation.

        Raises:
            NormaliseError: If the payload is malformed
        """
        pass

    def _intent(
        self,
        kind: IntentKind,
        user_id: Any,
        username: Any,
        created_at: Optional[int] = None,
        payload: Optional[dict] = None,
        display_name: Optional[str] = None,
    ) -> RawIntent:
        """Build an intent, checking the user fields and filling timestamps."""
        username = _clean_username(username)
        if not username:
            raise NormaliseError(f"{kind.value} event has no username")
        if created_at is None:
            created_at = self.clock.now_ms()
        return RawIntent(
            platform=self.platform,
            kind=kind,
            user_id=str(user_id) if user_id not in (None, "") else username,
            username=username,
            timestamp=iso_from_ms(created_at),
            created_at=created_at,
            payload={k: v for k, v in (payload or {}).items() if v is not None},
            display_name=display_name,
        )


def _clean_username(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def first_present(*values: Any) -> Any:
    """Return the first value that is not None or empty string."""
    for value in values:
        if value is not None and value != "":
            return value
    return None


def timestamp_ms(value: Any) -> Optional[int]:
    """Read a timestamp given as ms epoch, numeric string or ISO-8601."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    return parse_iso_ms(text)


def positive_int(value: Any, field_name: str) -> int:
    """Coerce to a positive integer.

    Raises:
        NormaliseError: If the value is missing, not integral or not positive
    """
    if isinstance(value, bool) or value is None:
        raise NormaliseError(f"{field_name} is required")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise NormaliseError(f"{field_name} must be a number") from None
    if number % 1 != 0 or number <= 0:
        raise NormaliseError(f"{field_name} must be a positive integer")
    return int(number)
