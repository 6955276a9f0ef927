"""YouTube live chat normaliser."""

import logging
from typing import Any, Optional

from ..currency import CurrencyParseError, parse_purchase_amount
from ..events import IntentKind, Platform, RawIntent
from .base import NormaliseError, Normalizer, first_present, positive_int

logger = logging.getLogger(__name__)

# Chat item type -> intent kind
ITEM_KINDS = {
    "LiveChatTextMessage": IntentKind.CHAT,
    "LiveChatMembershipItem": IntentKind.MEMBER,
    "LiveChatPaidMessage": IntentKind.GIFT,
    "LiveChatPaidSticker": IntentKind.GIFT,
    "LiveChatSponsorshipsGiftPurchaseAnnouncement": IntentKind.GIFTMEMBER,
}


def extract_text(field: Any) -> str:
    """Flatten a message field ("text", "simpleText" or "runs") to a string."""
    if field is None:
        return ""
    if isinstance(field, str):
        return field.strip()
    if not isinstance(field, dict):
        return ""
    runs = field.get("runs")
    if isinstance(runs, list):
        parts = []
        for run in runs:
            if not isinstance(run, dict):
                continue
            if run.get("text"):
                parts.append(str(run["text"]))
            elif isinstance(run.get("emoji"), dict):
                shortcuts = run["emoji"].get("shortcuts") or []
                parts.append(run["emoji"].get("emoji_id") or (shortcuts[0] if shortcuts else ""))
        return "".join(parts).strip()
    text = field.get("simpleText") or field.get("text") or ""
    return text.strip() if isinstance(text, str) else ""


class YouTubeNormalizer(Normalizer):
    """Normaliser for YouTube live chat items."""

    platform = Platform.YOUTUBE

    def _normalize(self, raw: dict) -> RawIntent:
        item = raw.get("item")
        if not isinstance(item, dict):
            raise NormaliseError("missing chat item")

        item_type = item.get("type")
        kind = ITEM_KINDS.get(item_type)
        if kind is None:
            raise NormaliseError(f"unsupported chat item type {item_type!r}")

        user_id, username, author = self._author(raw, item)
        created_at = self._timestamp(item)
        payload = {
            "id": item.get("id"),
            "is_broadcaster": bool(author.get("isBroadcaster") or raw.get("isBroadcaster")),
            "is_chat_owner": bool(author.get("isChatOwner")),
            "badges": self._badges(author),
        }

        if kind is IntentKind.CHAT:
            payload["message"] = extract_text(item.get("message"))
        elif kind is IntentKind.GIFT:
            payload.update(self._paid(item))
        elif kind is IntentKind.GIFTMEMBER:
            payload.update(
                {
                    "gift_count": positive_int(
                        item.get("giftMembershipsCount"), "giftMembershipsCount"
                    ),
                    "gift_type": "membership",
                    "message": extract_text(item.get("message")) or None,
                }
            )
        elif kind is IntentKind.MEMBER:
            payload.update(self._membership(item))

        return self._intent(kind, user_id, username, created_at, payload)

    def _author(self, raw: dict, item: dict) -> tuple[Any, str, dict]:
        details = raw.get("authorDetails") or item.get("authorDetails")
        author = item.get("author") if isinstance(item.get("author"), dict) else {}
        if isinstance(details, dict):
            user_id = first_present(details.get("channelId"), author.get("id"))
            username = first_present(details.get("displayName"), author.get("name"))
            author = {**author, **details}
        else:
            user_id = author.get("id")
            username = author.get("name")
        if not username:
            raise NormaliseError("chat item has no author name")
        username = str(username).strip()
        if username.startswith("@"):
            username = username[1:]
        return user_id, username, author

    @staticmethod
    def _badges(author: dict) -> list[str]:
        badges = []
        for badge in author.get("badges") or []:
            if isinstance(badge, dict):
                label = badge.get("title") or badge.get("label") or badge.get("tooltip")
                if label:
                    badges.append(str(label))
            elif badge:
                badges.append(str(badge))
        return badges

    def _timestamp(self, item: dict) -> Optional[int]:
        usec = item.get("timestamp_usec")
        if usec not in (None, ""):
            try:
                return int(float(usec)) // 1000
            except (TypeError, ValueError):
                raise NormaliseError("invalid timestamp_usec") from None
        value = item.get("timestamp")
        if value in (None, ""):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise NormaliseError("invalid timestamp") from None
        # Microsecond values are far larger than any ms epoch
        if number > 10_000_000_000_000:
            return int(number) // 1000
        return int(number)

    def _paid(self, item: dict) -> dict:
        try:
            parsed = parse_purchase_amount(
                item.get("purchase_amount"), item.get("purchase_currency")
            )
        except CurrencyParseError as e:
            raise NormaliseError(str(e)) from e
        if parsed.amount <= 0:
            raise NormaliseError("paid message requires a positive amount")

        fields = {
            "amount": parsed.amount,
            "currency": parsed.currency,
            "gift_count": 1,
        }
        if item.get("type") == "LiveChatPaidSticker":
            sticker = item.get("sticker") if isinstance(item.get("sticker"), dict) else {}
            fields["gift_type"] = "Super Sticker"
            fields["sticker_id"] = first_present(
                sticker.get("id"), item.get("stickerId"), item.get("sticker_id")
            )
            fields["sticker_name"] = first_present(
                sticker.get("name"), sticker.get("altText"), extract_text(sticker.get("label"))
            )
            fields["message"] = fields["sticker_name"]
        else:
            fields["gift_type"] = "Super Chat"
            fields["message"] = extract_text(item.get("message")) or None
        return fields

    @staticmethod
    def _membership(item: dict) -> dict:
        months = item.get("memberMilestoneDurationInMonths")
        try:
            months = int(months) if months not in (None, "") else None
        except (TypeError, ValueError):
            months = None
        return {
            "membership_level": extract_text(item.get("headerPrimaryText")) or None,
            "months": months,
            "message": extract_text(item.get("headerSubtext"))
            or extract_text(item.get("message"))
            or None,
        }
