"""Twitch chat and EventSub normaliser."""

import logging
from typing import Any

from ..events import IntentKind, Platform, RawIntent
from .base import NormaliseError, Normalizer, first_present, positive_int, timestamp_ms

logger = logging.getLogger(__name__)

VALID_TIERS = {"1000", "2000", "3000"}

ANONYMOUS_USERNAME = "Anonymous"


class TwitchNormalizer(Normalizer):
    """Normaliser for Twitch IRC chat messages and EventSub notifications."""

    platform = Platform.TWITCH

    def _normalize(self, raw: dict) -> RawIntent:
        if "metadata" in raw:
            return self._eventsub(raw)
        return self._chat(raw)

    def _chat(self, raw: dict) -> RawIntent:
        """IRC-style chat: {message, self, context/tags: {user-id, display-name, username}}."""
        context = raw.get("context") or raw.get("tags") or {}
        if not isinstance(context, dict):
            raise NormaliseError("chat context must be an object")
        message = raw.get("message")
        if not isinstance(message, str) or not message.strip():
            raise NormaliseError("chat message has no text")

        user_id = first_present(context.get("user-id"), context.get("user_id"), raw.get("userId"))
        username = first_present(
            context.get("display-name"),
            context.get("display_name"),
            context.get("username"),
            raw.get("username"),
        )
        created_at = timestamp_ms(
            first_present(context.get("tmi-sent-ts"), raw.get("timestamp"))
        )
        payload = {
            "message": message.strip(),
            "self": bool(raw.get("self")),
            "context_username": context.get("username"),
        }
        return self._intent(IntentKind.CHAT, user_id, username, created_at, payload)

    def _eventsub(self, raw: dict) -> RawIntent:
        metadata = raw.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise NormaliseError("EventSub metadata must be an object")
        if metadata.get("message_type") != "notification":
            raise NormaliseError(f"not a notification envelope: {metadata.get('message_type')!r}")

        body = raw.get("payload") if isinstance(raw.get("payload"), dict) else raw
        subscription = body.get("subscription") or {}
        if not isinstance(subscription, dict):
            raise NormaliseError("EventSub subscription must be an object")
        event = body.get("event")
        if not isinstance(event, dict):
            raise NormaliseError("EventSub envelope has no event")

        sub_type = subscription.get("type") or metadata.get("subscription_type")
        if not isinstance(sub_type, str):
            raise NormaliseError(f"EventSub type must be a string, got {sub_type!r}")
        handler = self._HANDLERS.get(sub_type)
        if handler is None:
            raise NormaliseError(f"unsupported EventSub type {sub_type!r}")

        created_at = timestamp_ms(metadata.get("message_timestamp"))
        return handler(self, event, created_at)

    def _follow(self, event: dict, created_at: Any) -> RawIntent:
        created_at = timestamp_ms(event.get("followed_at")) or created_at
        return self._intent(
            IntentKind.FOLLOW,
            event.get("user_id"),
            first_present(event.get("user_name"), event.get("user_login")),
            created_at,
        )

    def _subscribe(self, event: dict, created_at: Any) -> RawIntent:
        tier = _tier(event.get("tier"))
        if event.get("is_gift"):
            payload = {"tier": tier, "gift_count": 1, "gift_type": "subscription"}
            return self._intent(
                IntentKind.GIFTMEMBER,
                event.get("user_id"),
                first_present(event.get("user_name"), event.get("user_login")),
                created_at,
                payload,
            )
        payload = {"tier": tier, "months": _optional_int(event.get("cumulative_months"))}
        return self._intent(
            IntentKind.MEMBER,
            event.get("user_id"),
            first_present(event.get("user_name"), event.get("user_login")),
            created_at,
            payload,
        )

    def _resubscribe(self, event: dict, created_at: Any) -> RawIntent:
        message = event.get("message")
        payload = {
            "tier": _tier(event.get("tier")),
            "months": _optional_int(
                first_present(event.get("cumulative_months"), event.get("duration_months"))
            ),
            "message": message.get("text") if isinstance(message, dict) else message,
        }
        return self._intent(
            IntentKind.MEMBER,
            event.get("user_id"),
            first_present(event.get("user_name"), event.get("user_login")),
            created_at,
            payload,
        )

    def _subscription_gift(self, event: dict, created_at: Any) -> RawIntent:
        payload = {
            "tier": _tier(event.get("tier")),
            "gift_count": positive_int(event.get("total"), "total"),
            "gift_type": "subscription",
            "cumulative_total": _optional_int(event.get("cumulative_total")),
            "is_anonymous": bool(event.get("is_anonymous")),
        }
        username = first_present(event.get("user_name"), event.get("user_login"))
        if event.get("is_anonymous") and not username:
            username = ANONYMOUS_USERNAME
        return self._intent(
            IntentKind.GIFTMEMBER, event.get("user_id"), username, created_at, payload
        )

    def _raid(self, event: dict, created_at: Any) -> RawIntent:
        payload = {"viewer_count": positive_int(event.get("viewers"), "viewers")}
        return self._intent(
            IntentKind.RAID,
            event.get("from_broadcaster_user_id"),
            first_present(
                event.get("from_broadcaster_user_name"),
                event.get("from_broadcaster_user_login"),
            ),
            created_at,
            payload,
        )

    def _cheer(self, event: dict, created_at: Any) -> RawIntent:
        bits = positive_int(event.get("bits"), "bits")
        payload = {
            "amount": bits,
            "currency": "bits",
            "gift_type": "bits",
            "gift_count": 1,
            "message": event.get("message") or None,
            "is_anonymous": bool(event.get("is_anonymous")),
        }
        username = first_present(event.get("user_name"), event.get("user_login"))
        if event.get("is_anonymous") and not username:
            username = ANONYMOUS_USERNAME
        return self._intent(IntentKind.GIFT, event.get("user_id"), username, created_at, payload)

    def _chat_message(self, event: dict, created_at: Any) -> RawIntent:
        message = event.get("message")
        text = message.get("text") if isinstance(message, dict) else message
        if not isinstance(text, str) or not text.strip():
            raise NormaliseError("chat message has no text")
        chatter_id = event.get("chatter_user_id")
        payload = {
            "message": text.strip(),
            "self": chatter_id is not None and chatter_id == event.get("broadcaster_user_id"),
            "context_username": event.get("chatter_user_login"),
            "badges": [
                badge.get("set_id")
                for badge in event.get("badges") or []
                if isinstance(badge, dict) and badge.get("set_id")
            ],
        }
        return self._intent(
            IntentKind.CHAT,
            chatter_id,
            first_present(event.get("chatter_user_name"), event.get("chatter_user_login")),
            created_at,
            payload,
        )

    _HANDLERS = {
        "channel.follow": _follow,
        "channel.subscribe": _subscribe,
        "channel.subscription.message": _resubscribe,
        "channel.subscription.gift": _subscription_gift,
        "channel.raid": _raid,
        "channel.cheer": _cheer,
        "channel.chat.message": _chat_message,
    }


def _tier(value: Any) -> str:
    tier = str(value) if value is not None else "1000"
    if tier not in VALID_TIERS:
        raise NormaliseError(f"unknown subscription tier {value!r}")
    return tier


def _optional_int(value: Any):
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
