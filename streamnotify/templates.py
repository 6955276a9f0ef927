"""Notification message templates.

Templates use `{name}` placeholders. A phrase wrapped in square brackets is
optional: if any placeholder inside it has no value the whole phrase is
dropped, otherwise the brackets are removed. A missing placeholder outside
brackets is an error.
"""

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .events import IntentKind, Platform

MAX_USERNAME_LENGTH = 40
MAX_INTERNATIONAL_USERNAME_LENGTH = 60

TIER_LABELS = {"2000": "Tier 2", "3000": "Tier 3"}

_PLACEHOLDER = re.compile(r"\{(\w+)\}")
_OPTIONAL = re.compile(r"\[([^\[\]]*)\]")
_INTERNATIONAL = re.compile("[\u0080-\uffff]")


class TemplateError(ValueError):
    """Raised when a required placeholder has no value."""


@dataclass(frozen=True)
class MessageTemplate:
    """Display, spoken and log forms of one notification."""

    display: str
    tts: str
    log: str


# Keyed by variant; variants are a kind plus an optional qualifier
DEFAULT_TEMPLATES = {
    "chat": MessageTemplate(
        display="{username}: {message}",
        tts="{username} says {message}",
        log="Chat from {username}: {message}",
    ),
    "follow": MessageTemplate(
        display="{username} just followed!",
        tts="{username} just followed",
        log="New follower: {username}",
    ),
    "member": MessageTemplate(
        display="{username} just subscribed![ ({tierLabel})]",
        tts="{username} just subscribed",
        log="New subscriber: {username}[ ({tierLabel})]",
    ),
    "member_months": MessageTemplate(
        display="{username} renewed subscription for {months} months![ ({tierLabel})]",
        tts="{username} renewed subscription for {months} months",
        log="Resubscription: {username} ({months} months)",
    ),
    "giftmember": MessageTemplate(
        display="{username} gifted {giftCount} subscriptions![ ({tierLabel})]",
        tts="{username} gifted {giftCount} subscriptions",
        log="Gift subscriptions from {username}: {giftCount}[ (total {cumulativeTotal})]",
    ),
    "gift": MessageTemplate(
        display="{username} sent a {formattedAmount} {giftType}[: {message}]",
        tts="{username} sent {spokenAmount}[ with a {giftType}]",
        log="Gift from {username}: {giftType} ({formattedAmount})",
    ),
    "gift_coins": MessageTemplate(
        display="{username} sent {giftCount}x {giftType} ({formattedAmount})",
        tts="{username} sent {giftCount} {giftType}",
        log="Gift from {username}: {giftCount}x {giftType} ({formattedAmount})",
    ),
    "gift_bits": MessageTemplate(
        display="{username} sent {amount} bits[: {message}]",
        tts="{username} sent {spokenAmount}",
        log="Bits from {username}: {amount}",
    ),
    "gift_aggregated": MessageTemplate(
        display="{username} sent {giftCount} gifts worth {formattedAmount}[ ({giftTypes})]",
        tts="{username} sent {giftCount} gifts worth {spokenAmount}",
        log="Aggregated gifts from {username}: {giftCount} ({formattedAmount})",
    ),
    "raid": MessageTemplate(
        display="Incoming raid from {username} with {viewerCount} viewers!",
        tts="Incoming raid from {username} with {viewerCount} viewers",
        log="Raid from {username}: {viewerCount} viewers",
    ),
    "envelope": MessageTemplate(
        display="{username} sent a treasure chest![ ({formattedAmount})]",
        tts="{username} sent a treasure chest",
        log="Treasure chest from {username}[ ({formattedAmount})]",
    ),
    "envelope_announcement": MessageTemplate(
        display="{username}: {message}",
        tts="{message}",
        log="Announcement from {username}: {message}",
    ),
}

PLATFORM_TEMPLATES = {
    (Platform.YOUTUBE, "member"): MessageTemplate(
        display="{username} just became a member![ ({membershipLevel})]",
        tts="{username} just became a member",
        log="New member: {username}",
    ),
    (Platform.YOUTUBE, "member_months"): MessageTemplate(
        display="{username} has been a member for {months} months![ ({membershipLevel})]",
        tts="{username} has been a member for {months} months",
        log="Member milestone: {username} ({months} months)",
    ),
    (Platform.YOUTUBE, "giftmember"): MessageTemplate(
        display="{username} gifted {giftCount} memberships!",
        tts="{username} gifted {giftCount} memberships",
        log="Gift memberships from {username}: {giftCount}",
    ),
}

# Used when a rendered message fails the artifact check
SAFE_TEMPLATES = {
    IntentKind.CHAT: MessageTemplate(
        "New message from {username}", "New message from {username}", "Chat from {username}"
    ),
    IntentKind.FOLLOW: MessageTemplate(
        "{username} just followed!", "{username} just followed", "New follower: {username}"
    ),
    IntentKind.MEMBER: MessageTemplate(
        "{username} just subscribed!", "{username} just subscribed", "New subscriber: {username}"
    ),
    IntentKind.GIFTMEMBER: MessageTemplate(
        "{username} gifted subscriptions!", "{username} gifted subscriptions", "Gift subscriptions from {username}"
    ),
    IntentKind.GIFT: MessageTemplate(
        "{username} sent a gift!", "{username} sent a gift", "Gift from {username}"
    ),
    IntentKind.RAID: MessageTemplate(
        "Incoming raid from {username}!", "Incoming raid from {username}", "Raid from {username}"
    ),
    IntentKind.ENVELOPE: MessageTemplate(
        "{username} sent a treasure chest!", "{username} sent a treasure chest", "Treasure chest from {username}"
    ),
}

FALLBACK_USERNAME = "Someone"


def get_template(platform: Platform, variant: str) -> MessageTemplate:
    """Get the template for a platform and variant.

    Raises:
        KeyError: If no template exists for the variant
    """
    return PLATFORM_TEMPLATES.get((platform, variant)) or DEFAULT_TEMPLATES[variant]


def _has_value(value: Any) -> bool:
    return value is not None and value != "" and value != []


def render(template: str, values: Mapping[str, Any]) -> str:
    """Fill a template, dropping optional phrases with missing values.

    Raises:
        TemplateError: If a required placeholder has no value
    """

    def optional(match: re.Match) -> str:
        phrase = match.group(1)
        names = _PLACEHOLDER.findall(phrase)
        if all(_has_value(values.get(name)) for name in names):
            return phrase
        return ""

    text = _OPTIONAL.sub(optional, template)

    def required(match: re.Match) -> str:
        name = match.group(1)
        value = values.get(name)
        if not _has_value(value):
            raise TemplateError(f"No value for {name}")
        return str(value)

    return _PLACEHOLDER.sub(required, text).strip()


def truncate_username(username: str, limit: int = MAX_USERNAME_LENGTH) -> str:
    """Shorten long names for the overlay.

    Names with international characters are kept whole up to
    MAX_INTERNATIONAL_USERNAME_LENGTH.
    """
    if len(username) <= limit:
        return username
    if _INTERNATIONAL.search(username) and len(set(username)) > 3:
        if len(username) <= MAX_INTERNATIONAL_USERNAME_LENGTH:
            return username
        return username[:limit]
    return username[: limit - 3].rstrip() + "..."


def tier_label(tier: Optional[str]) -> Optional[str]:
    if tier is None:
        return None
    return TIER_LABELS.get(str(tier))
