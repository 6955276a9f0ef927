"""Shaper - turns surviving event data into a Notification."""

import logging
from typing import Any, Optional

from .clock import Clock, SystemClock
from .currency import format_amount, format_number, is_platform_unit, spoken_amount, validate_amount
from .events import IntentKind, Platform, canonical_type, iso_from_ms, kind_of, parse_iso_ms
from .models import Notification, next_notification_id
from .notification_config import NotificationsConfig
from .scrubber import find_artifact
from .templates import (
    FALLBACK_USERNAME,
    SAFE_TEMPLATES,
    MessageTemplate,
    TemplateError,
    get_template,
    render,
    tier_label,
    truncate_username,
)

logger = logging.getLogger(__name__)

# Data keys copied onto the notification as-is
PASSTHROUGH_FIELDS = ("gift_type", "tier", "months", "cumulative_total", "message")

# Data keys kept in metadata
METADATA_FIELDS = (
    "id",
    "sticker_id",
    "sticker_name",
    "membership_level",
    "unit_amount",
    "combo_type",
    "gift_id",
    "aggregated_id",
    "gift_types",
    "is_anonymous",
)


class ShapeError(ValueError):
    """Raised when event data cannot be turned into a notification."""


class Shaper:
    """Builds display, spoken and log strings plus priority and duration."""

    def __init__(self, clock: Optional[Clock] = None, logger: Optional[logging.Logger] = None):
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger(__name__)
        self.artifacts_detected = 0

    def shape(
        self,
        notification_type: str,
        platform: Platform,
        data: dict,
        config: NotificationsConfig,
    ) -> Notification:
        """Shape event data into a Notification.

        Args:
            notification_type: Prefixed or bare notification type
            platform: Platform the event came from
            data: Event data (username, amount, gift_type, ...)
            config: Current notification config

        Returns:
            Validated Notification

        Raises:
            ConfigError: If the kind has no display settings
            ShapeError: If required data is missing or amounts are invalid
            pydantic.ValidationError: If the result breaks a Notification invariant
        """
        kind = kind_of(notification_type)
        platform = Platform.parse(platform)
        type_conf = config.type_config(kind)

        username = str(data.get("username") or "").strip()
        if not username:
            raise ShapeError("notification has no username")

        processed_at = self.clock.now_ms()
        source_ms = _source_ms(data)
        created_at = processed_at if source_ms is None else max(0, min(source_ms, processed_at))
        timestamp = data.get("timestamp")
        if parse_iso_ms(timestamp) is None:
            timestamp = iso_from_ms(processed_at)

        values = self._values(kind, username, data)
        variant = self._variant(kind, data)
        template = get_template(platform, variant)
        display, tts, log = self._render(kind, template, values)

        fields = {name: data.get(name) for name in PASSTHROUGH_FIELDS if data.get(name) is not None}
        if "tier" in fields:
            fields["tier"] = str(fields["tier"])
        if kind in (IntentKind.GIFT, IntentKind.GIFTMEMBER, IntentKind.ENVELOPE):
            if data.get("amount") is not None:
                fields["amount"] = float(data["amount"])
                fields["currency"] = data.get("currency")
            if data.get("gift_count") is not None:
                fields["gift_count"] = int(data["gift_count"])
        if kind is IntentKind.RAID:
            fields["viewer_count"] = data.get("viewer_count")

        return Notification(
            id=next_notification_id(platform, kind, processed_at),
            type=canonical_type(kind),
            platform=platform,
            user_id=str(data.get("user_id") or username),
            username=username,
            display_message=display,
            tts_message=tts,
            log_message=log,
            priority=type_conf.priority,
            duration=type_conf.duration,
            processed_at=processed_at,
            timestamp=timestamp,
            created_at=created_at,
            is_aggregated=bool(data.get("is_aggregated")),
            metadata={name: data[name] for name in METADATA_FIELDS if data.get(name) is not None},
            **fields,
        )

    def _values(self, kind: IntentKind, username: str, data: dict) -> dict:
        values = {
            "username": username,
            "message": _text(data.get("message")),
            "giftType": _text(data.get("gift_type")),
            "giftCount": data.get("gift_count"),
            "tier": data.get("tier"),
            "tierLabel": tier_label(data.get("tier")),
            "months": data.get("months"),
            "viewerCount": data.get("viewer_count"),
            "cumulativeTotal": data.get("cumulative_total"),
            "membershipLevel": _text(data.get("membership_level")),
            "giftTypes": ", ".join(data.get("gift_types") or []) or None,
            "currency": data.get("currency"),
        }

        amount = data.get("amount")
        currency = data.get("currency")
        if kind is IntentKind.GIFT:
            if amount is None or not currency:
                raise ShapeError("gift notification needs an amount and currency")
        if amount is not None and currency:
            try:
                validate_amount(amount, currency)
            except ValueError as e:
                raise ShapeError(str(e)) from e
            values["amount"] = format_number(amount, currency)
            values["formattedAmount"] = format_amount(amount, currency)
            values["spokenAmount"] = spoken_amount(amount, currency)
        return values

    @staticmethod
    def _variant(kind: IntentKind, data: dict) -> str:
        if kind is IntentKind.GIFT:
            currency = str(data.get("currency") or "")
            if data.get("is_aggregated"):
                return "gift_aggregated"
            if currency.lower() == "bits":
                return "gift_bits"
            if is_platform_unit(currency):
                return "gift_coins"
            return "gift"
        if kind is IntentKind.MEMBER:
            months = data.get("months")
            if isinstance(months, int) and months > 1:
                return "member_months"
            return "member"
        if kind is IntentKind.ENVELOPE and data.get("announcement"):
            return "envelope_announcement"
        return kind.value

    def _render(self, kind: IntentKind, template: MessageTemplate, values: dict) -> tuple[str, str, str]:
        try:
            display = render(template.display, _display_values(values))
            tts = render(template.tts, values)
            log = render(template.log, values)
        except TemplateError as e:
            self.logger.warning(f"Template for {kind.value} could not be filled ({e}), using safe template")
            return self._safe(kind, values)

        artifact = find_artifact(display) or find_artifact(tts)
        if artifact is not None:
            self.artifacts_detected += 1
            self.logger.warning(
                f"shaper_artifact_detected: {kind.value} message hit rule {artifact}, using safe template"
            )
            return self._safe(kind, values)
        return display, tts, log

    def _safe(self, kind: IntentKind, values: dict) -> tuple[str, str, str]:
        template = SAFE_TEMPLATES[kind]
        username = values["username"]
        if find_artifact(username) is not None:
            username = FALLBACK_USERNAME
        safe_values = {"username": username}
        return (
            render(template.display, _display_values(safe_values)),
            render(template.tts, safe_values),
            render(template.log, safe_values),
        )


def _display_values(values: dict) -> dict:
    """Only overlay strings get the shortened username."""
    return {**values, "username": truncate_username(values["username"])}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _source_ms(data: dict) -> Optional[int]:
    created = data.get("created_at")
    if isinstance(created, (int, float)) and not isinstance(created, bool):
        return int(created)
    return parse_iso_ms(data.get("timestamp"))
