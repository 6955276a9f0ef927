"""Normalisers for turning platform payloads into RawIntents."""

from typing import Optional

from ..clock import Clock
from ..events import Platform
from .base import NormaliseError, Normalizer
from .tiktok import TikTokNormalizer
from .twitch import TwitchNormalizer
from .youtube import YouTubeNormalizer

__all__ = [
    "NormaliseError",
    "Normalizer",
    "get_normalizer",
    "TikTokNormalizer",
    "TwitchNormalizer",
    "YouTubeNormalizer",
]


def get_normalizer(platform: "str | Platform", clock: Optional[Clock] = None) -> Normalizer:
    """Get the appropriate normaliser for a platform.

    Args:
        platform: Platform value, name or short letter
        clock: Clock used when a payload has no timestamp

    Returns:
        Normalizer implementation for the platform

    Raises:
        ValueError: If platform is unknown
    """
    platform = Platform.parse(platform)
    if platform is Platform.YOUTUBE:
        return YouTubeNormalizer(clock)
    elif platform is Platform.TWITCH:
        return TwitchNormalizer(clock)
    elif platform is Platform.TIKTOK:
        return TikTokNormalizer(clock)
    raise ValueError(f"Unknown platform: {platform}")
