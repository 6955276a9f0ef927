"""Configuration management for the stream notification service."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Notification config (YAML)
    notification_config_path: str = "config/notifications.yaml"

    # Overlay renderer endpoint (items are POSTed here)
    overlay_url: str = ""

    # Text-to-speech endpoint
    tts_url: str = ""

    # Sinks
    sink_timeout_ms: int = 5000
    http_timeout_seconds: float = 10.0

    # Housekeeping
    aggregation_flush_seconds: int = 1

    # App
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "STREAMNOTIFY_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
