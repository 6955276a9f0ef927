"""TikTok live event normaliser."""

import logging
from typing import Any

from ..events import IntentKind, Platform, RawIntent
from .base import NormaliseError, Normalizer, first_present, positive_int, timestamp_ms

logger = logging.getLogger(__name__)

COIN_CURRENCY = "coins"

# Gift type value for combo-capable gifts (streaks end with repeatEnd)
COMBO_GIFT_TYPE = 1

ENVELOPE_GIFT_TYPE = "Treasure Chest"


class StreakInProgress(NormaliseError):
    """A combo gift streak has not finished yet."""


class TikTokNormalizer(Normalizer):
    """Normaliser for TikTok webcast events (gift, chat, follow, subscribe, envelope)."""

    platform = Platform.TIKTOK

    def _normalize(self, raw: dict) -> RawIntent:
        event_type = str(first_present(raw.get("type"), raw.get("event")) or "").lower()
        if not event_type:
            if "gift" in raw or "giftDetails" in raw or "diamondCount" in raw:
                event_type = "gift"
            elif "comment" in raw:
                event_type = "chat"

        if event_type == "gift":
            return self._gift(raw)
        if event_type in ("chat", "comment"):
            return self._chat(raw)
        if event_type == "follow" or (
            event_type == "social" and "follow" in str(raw.get("displayType", "")).lower()
        ):
            return self._simple(raw, IntentKind.FOLLOW)
        if event_type in ("subscribe", "superfan"):
            return self._subscribe(raw)
        if event_type == "envelope":
            return self._envelope(raw)
        raise NormaliseError(f"unsupported event type {event_type!r}")

    def _user(self, raw: dict) -> tuple[Any, Any, dict]:
        user = raw.get("user") if isinstance(raw.get("user"), dict) else {}
        unique_id = first_present(user.get("uniqueId"), raw.get("uniqueId"))
        user_id = first_present(user.get("userId"), raw.get("userId"), unique_id)
        username = first_present(user.get("nickname"), raw.get("nickname"), unique_id)
        if not user_id:
            raise NormaliseError("event has no user id")
        extra = {"unique_id": unique_id, "is_broadcaster": bool(raw.get("isBroadcaster"))}
        return user_id, username, extra

    def _created_at(self, raw: dict):
        return timestamp_ms(first_present(raw.get("createTime"), raw.get("timestamp")))

    def _chat(self, raw: dict) -> RawIntent:
        comment = raw.get("comment")
        if not isinstance(comment, str) or not comment.strip():
            raise NormaliseError("chat event has no comment")
        user_id, username, payload = self._user(raw)
        payload["message"] = comment.strip()
        return self._intent(IntentKind.CHAT, user_id, username, self._created_at(raw), payload)

    def _simple(self, raw: dict, kind: IntentKind) -> RawIntent:
        user_id, username, payload = self._user(raw)
        return self._intent(kind, user_id, username, self._created_at(raw), payload)

    def _subscribe(self, raw: dict) -> RawIntent:
        user_id, username, payload = self._user(raw)
        months = raw.get("subMonth") or raw.get("months")
        payload["months"] = int(months) if isinstance(months, (int, float)) and months > 0 else None
        payload["tier"] = "superfan" if str(raw.get("type")).lower() == "superfan" else None
        return self._intent(IntentKind.MEMBER, user_id, username, self._created_at(raw), payload)

    def _envelope(self, raw: dict) -> RawIntent:
        user_id, username, payload = self._user(raw)
        amount = first_present(raw.get("diamondCount"), raw.get("coins"), raw.get("amount"))
        payload.update(
            {
                "amount": _coin_amount(amount, "envelope amount"),
                "currency": COIN_CURRENCY,
                "gift_type": ENVELOPE_GIFT_TYPE,
                "gift_count": 1,
            }
        )
        return self._intent(IntentKind.ENVELOPE, user_id, username, self._created_at(raw), payload)

    def _gift(self, raw: dict) -> RawIntent:
        gift = raw.get("gift") if isinstance(raw.get("gift"), dict) else {}
        details = raw.get("giftDetails") if isinstance(raw.get("giftDetails"), dict) else {}

        unit_amount = _coin_amount(
            first_present(gift.get("diamondCount"), details.get("diamondCount"), raw.get("diamondCount")),
            "diamondCount",
        )
        if unit_amount <= 0:
            raise NormaliseError("gift has no coin value")
        gift_count = positive_int(
            first_present(gift.get("repeatCount"), raw.get("repeatCount"), 1), "repeatCount"
        )
        gift_type = _gift_name(gift, details, raw)
        if not gift_type:
            raise NormaliseError("gift has no name")

        combo_type = first_present(raw.get("giftType"), gift.get("giftType"), gift.get("type"))
        try:
            combo_type = int(combo_type) if combo_type is not None else None
        except (TypeError, ValueError):
            combo_type = None
        repeat_end = bool(first_present(raw.get("repeatEnd"), gift.get("repeatEnd")))
        if combo_type == COMBO_GIFT_TYPE and not repeat_end:
            raise StreakInProgress(f"combo_in_progress: {gift_type} x{gift_count}")

        user_id, username, payload = self._user(raw)
        payload.update(
            {
                "gift_type": gift_type,
                "gift_count": gift_count,
                "unit_amount": unit_amount,
                "amount": unit_amount * gift_count,
                "currency": COIN_CURRENCY,
                "combo_type": combo_type,
                "gift_id": first_present(gift.get("id"), raw.get("giftId")),
            }
        )
        return self._intent(IntentKind.GIFT, user_id, username, self._created_at(raw), payload)


def _gift_name(gift: dict, details: dict, raw: dict) -> Any:
    name = gift.get("giftName")
    if isinstance(name, dict):
        name = name.get("giftName")
    return first_present(
        name,
        gift.get("name"),
        details.get("giftName"),
        details.get("name"),
        raw.get("giftName"),
    )


def _coin_amount(value: Any, field_name: str) -> int:
    """Coins are whole numbers; fractional values are malformed."""
    if value is None or isinstance(value, bool):
        raise NormaliseError(f"{field_name} is required")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise NormaliseError(f"{field_name} must be a number") from None
    if number < 0 or number % 1 != 0:
        raise NormaliseError(f"{field_name} must be a whole number of coins")
    return int(number)
