"""Notification configuration loader."""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .events import IntentKind, Platform

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when the notification config is missing a field or is invalid."""


# Overlay priority per kind (higher is shown first)
DEFAULT_PRIORITIES = {
    IntentKind.CHAT: 1,
    IntentKind.FOLLOW: 2,
    IntentKind.MEMBER: 3,
    IntentKind.GIFT: 4,
    IntentKind.GIFTMEMBER: 5,
    IntentKind.RAID: 6,
    IntentKind.ENVELOPE: 8,  # Reserved for operator announcements
}

KNOWN_PRIORITIES = set(DEFAULT_PRIORITIES.values())

# On-screen duration per kind in ms
DEFAULT_DURATIONS = {
    IntentKind.CHAT: 4500,
    IntentKind.FOLLOW: 3000,
    IntentKind.MEMBER: 3000,
    IntentKind.GIFT: 3000,
    IntentKind.GIFTMEMBER: 3000,
    IntentKind.RAID: 3000,
    IntentKind.ENVELOPE: 3000,
}

# Flag in `general` (or a platform override) that enables each kind
DEFAULT_ENABLED_KEYS = {
    IntentKind.CHAT: "messages_enabled",
    IntentKind.FOLLOW: "follows_enabled",
    IntentKind.MEMBER: "members_enabled",
    IntentKind.GIFT: "gifts_enabled",
    IntentKind.GIFTMEMBER: "members_enabled",
    IntentKind.RAID: "raids_enabled",
    IntentKind.ENVELOPE: "envelopes_enabled",
}


class GeneralConfig(BaseModel):
    """Pipeline-wide switches and suppression windows."""

    enabled: bool = True
    ignore_self_messages: bool = False
    filter_old_messages: bool = True
    user_suppression_enabled: bool = True
    max_notifications_per_user: int = Field(default=5, gt=0)
    suppression_window_ms: int = Field(default=60_000, gt=0)
    suppression_duration_ms: int = Field(default=300_000, ge=0)
    suppression_cleanup_interval_ms: int = Field(default=300_000, gt=0)
    tts_enabled: bool = False

    messages_enabled: bool = True
    follows_enabled: bool = True
    gifts_enabled: bool = True
    members_enabled: bool = True
    raids_enabled: bool = True
    envelopes_enabled: bool = True


class SpamConfig(BaseModel):
    """Low-value gift spam detection thresholds."""

    spam_detection_enabled: bool = True
    spam_detection_window: float = Field(default=5, gt=0)  # seconds
    max_individual_notifications: int = Field(default=2, gt=0)
    low_value_threshold: float = Field(default=10, ge=0)


class PlatformConfig(BaseModel):
    """Per-platform identity and overrides (None means use `general`)."""

    notifications_enabled: bool = True
    username: str = ""
    user_id: Optional[str] = None
    ignore_self_messages: Optional[bool] = None
    spam_detection_enabled: Optional[bool] = None

    messages_enabled: Optional[bool] = None
    follows_enabled: Optional[bool] = None
    gifts_enabled: Optional[bool] = None
    members_enabled: Optional[bool] = None
    raids_enabled: Optional[bool] = None
    envelopes_enabled: Optional[bool] = None


class TypeConfig(BaseModel):
    """Display settings for one notification kind."""

    priority: int
    duration: int = Field(ge=0)
    enabled_key: str
    tts: bool = True

    @field_validator("priority")
    @classmethod
    def _known_priority(cls, value: int) -> int:
        if value not in KNOWN_PRIORITIES:
            raise ValueError(f"priority must be one of {sorted(KNOWN_PRIORITIES)}")
        return value


class DisplayConfig(BaseModel):
    """Display queue limits."""

    max_queue_size: int = Field(default=100, gt=0)
    chat_optimization: bool = True


def default_types() -> dict[IntentKind, TypeConfig]:
    """Build the default per-kind table."""
    return {
        kind: TypeConfig(
            priority=DEFAULT_PRIORITIES[kind],
            duration=DEFAULT_DURATIONS[kind],
            enabled_key=DEFAULT_ENABLED_KEYS[kind],
            tts=kind is not IntentKind.CHAT,
        )
        for kind in DEFAULT_PRIORITIES
    }


def default_platforms() -> dict[Platform, PlatformConfig]:
    return {platform: PlatformConfig() for platform in Platform}


class NotificationsConfig(BaseModel):
    """Read-only view of everything the pipeline is configured with.

    Instances are treated as immutable; reloading builds a new one.
    """

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    spam: SpamConfig = Field(default_factory=SpamConfig)
    platforms: dict[Platform, PlatformConfig] = Field(default_factory=default_platforms)
    types: dict[IntentKind, TypeConfig] = Field(default_factory=default_types)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    vfx: dict[str, dict] = Field(default_factory=dict)

    @field_validator("platforms", mode="before")
    @classmethod
    def _parse_platform_keys(cls, value):
        if isinstance(value, dict):
            return {Platform.parse(key): conf for key, conf in value.items()}
        return value

    def platform(self, platform: Platform) -> PlatformConfig:
        """Get platform config.

        Raises:
            ConfigError: If the platform has no entry
        """
        try:
            return self.platforms[Platform.parse(platform)]
        except KeyError:
            raise ConfigError(f"No config for platform {platform}") from None

    def type_config(self, kind: IntentKind) -> TypeConfig:
        """Get display settings for a kind.

        Raises:
            ConfigError: If the kind has no entry
        """
        try:
            return self.types[IntentKind(kind)]
        except (KeyError, ValueError):
            raise ConfigError(f"No config for notification type {kind}") from None

    def is_platform_enabled(self, platform: Platform) -> bool:
        return self.platform(platform).notifications_enabled

    def is_type_enabled(self, platform: Platform, kind: IntentKind) -> bool:
        """Check the enabled flag for a kind, platform override first."""
        key = self.type_config(kind).enabled_key
        override = getattr(self.platform(platform), key, None)
        if override is not None:
            return bool(override)
        if not hasattr(self.general, key):
            raise ConfigError(f"Unknown enabled key {key} for {kind}")
        return bool(getattr(self.general, key))

    def is_self_filtering_enabled(self, platform: Platform) -> bool:
        override = self.platform(platform).ignore_self_messages
        if override is not None:
            return override
        return self.general.ignore_self_messages

    def is_spam_detection_enabled(self, platform: Platform) -> bool:
        override = self.platform(platform).spam_detection_enabled
        if override is not None:
            return override
        return self.spam.spam_detection_enabled


def _merge_defaults(data: dict) -> dict:
    """Fill in platforms and types the file leaves out."""
    merged = dict(data)

    platforms = {p.value: {} for p in Platform}
    for key, conf in (data.get("platforms") or {}).items():
        platforms[Platform.parse(key).value] = conf or {}
    merged["platforms"] = platforms

    types = {kind.value: conf.model_dump() for kind, conf in default_types().items()}
    for key, conf in (data.get("types") or {}).items():
        kind = IntentKind(key)
        types[kind.value] = {**types.get(kind.value, {}), **(conf or {})}
    merged["types"] = types

    return merged


def parse_notification_config(data: dict) -> NotificationsConfig:
    """Validate a config mapping into a NotificationsConfig.

    Raises:
        ConfigError: If the mapping does not describe a valid config
    """
    if not isinstance(data, dict):
        raise ConfigError("Notification config must be a mapping")
    try:
        return NotificationsConfig.model_validate(_merge_defaults(data))
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"Invalid notification config: {e}") from e


def load_notification_config(config_path: Optional[Path] = None) -> NotificationsConfig:
    """Load notification config from YAML file.

    Args:
        config_path: Path to config file. If None, uses the path from settings.

    Returns:
        NotificationsConfig with values from file or defaults.

    Raises:
        ConfigError: If the file exists but cannot be parsed or validated
    """
    if config_path is None:
        from .config import get_settings

        config_path = Path(get_settings().notification_config_path)
    config_path = Path(config_path)

    if not config_path.exists():
        logger.info(f"Config file not found at {config_path}, using defaults")
        return NotificationsConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        raise ConfigError(f"Malformed YAML in {config_path}") from e

    config = parse_notification_config(data)
    logger.info(f"Loaded notification config from {config_path}")
    return config


# Global config instance (loaded on first use)
_config: Optional[NotificationsConfig] = None


def get_notification_config() -> NotificationsConfig:
    """Get the global notification config (lazy loaded)."""
    global _config
    if _config is None:
        _config = load_notification_config()
    return _config


def reload_notification_config(config_path: Optional[Path] = None) -> NotificationsConfig:
    """Re-read the config file and swap the global instance."""
    global _config
    _config = load_notification_config(config_path)
    return _config
