"""Sink implementations: HTTP overlay and TTS, config-driven effects, donation goals."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .events import Platform
from .models import QueueItem

logger = logging.getLogger(__name__)


class HttpOverlayRenderer:
    """Posts queue items to an overlay server."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def show(self, item: QueueItem) -> None:
        """Send one item to the overlay.

        Raises:
            httpx.HTTPError: If the overlay rejects the item or is unreachable
        """
        client = await self._get_client()
        response = await client.post(self.url, json=item.model_dump(mode="json"))
        response.raise_for_status()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class HttpTTSSink:
    """Sends text to a text-to-speech service over HTTP."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def speak(self, text: str) -> None:
        """Queue text for speech.

        Raises:
            httpx.HTTPError: If the TTS service fails
        """
        client = await self._get_client()
        response = await client.post(self.url, json={"text": text})
        response.raise_for_status()
        logger.debug(f"TTS accepted {len(text)} characters")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class ConfigEffectsSink:
    """Looks up visual effect commands from the `vfx` config section.

    Keys are "<kind>:<gift type>" (case-insensitive gift type) with
    "<kind>" as the fallback, e.g. {"gift:rose": {...}, "raid": {...}}.
    """

    def __init__(self, vfx: Optional[dict] = None):
        self.vfx = {str(key).lower(): value for key, value in (vfx or {}).items()}

    async def get_vfx_config(self, kind: str, gift_type: Optional[str] = None) -> Optional[dict]:
        kind = str(kind).lower()
        if gift_type:
            specific = self.vfx.get(f"{kind}:{str(gift_type).lower()}")
            if specific is not None:
                return specific
        return self.vfx.get(kind)


@dataclass
class GoalState:
    """Progress toward one platform's donation goal."""

    platform: Platform
    current: float
    target: float
    currency: str

    @property
    def percentage(self) -> float:
        if self.target <= 0:
            return 100.0
        return round(min(self.current / self.target, 1.0) * 100, 1)

    @property
    def completed(self) -> bool:
        return self.current >= self.target


@dataclass
class GoalResult:
    """Outcome of adding a donation to a goal."""

    platform: Platform
    added: float
    current: float
    target: float
    currency: str
    percentage: float
    goal_completed: bool
    just_completed: bool = False


DEFAULT_GOALS = {
    Platform.TIKTOK: (1000, "coins"),
    Platform.YOUTUBE: (100, "USD"),
    Platform.TWITCH: (1000, "bits"),
}


class GoalTracker:
    """In-memory donation goals, one per platform."""

    def __init__(self, goals: Optional[dict] = None):
        self.goals: dict[Platform, GoalState] = {}
        for platform, (target, currency) in DEFAULT_GOALS.items():
            self.goals[platform] = GoalState(platform, 0.0, float(target), currency)
        for key, conf in (goals or {}).items():
            platform = Platform.parse(key)
            self.goals[platform] = GoalState(
                platform,
                float(conf.get("current", 0)),
                float(conf.get("target", DEFAULT_GOALS[platform][0])),
                conf.get("currency", DEFAULT_GOALS[platform][1]),
            )

    def add_donation(self, platform: "str | Platform", amount: float, currency: Optional[str] = None) -> Optional[GoalResult]:
        """Add a donation to the platform goal.

        Args:
            platform: Platform the donation came from
            amount: Donation amount
            currency: Donation currency; must match the goal currency if given

        Returns:
            GoalResult, or None if the donation does not count toward the goal
        """
        goal = self.goals.get(Platform.parse(platform))
        if goal is None:
            return None
        if currency and currency.lower() != goal.currency.lower():
            logger.info(
                f"Skipping {amount} {currency} for {goal.platform.value} goal tracked in {goal.currency}"
            )
            return None
        if amount < 0:
            raise ValueError("Donation amount cannot be negative")

        was_completed = goal.completed
        goal.current += amount
        result = GoalResult(
            platform=goal.platform,
            added=amount,
            current=goal.current,
            target=goal.target,
            currency=goal.currency,
            percentage=goal.percentage,
            goal_completed=goal.completed,
            just_completed=goal.completed and not was_completed,
        )
        if result.just_completed:
            logger.info(f"{goal.platform.value} goal reached: {goal.current}/{goal.target} {goal.currency}")
        return result

    async def process_donation_goal(self, donation: dict) -> Optional[GoalResult]:
        """Goals sink entry point: {amount, currency, username, platform}."""
        return self.add_donation(donation["platform"], float(donation["amount"]), donation.get("currency"))

    def get_progress(self, platform: "str | Platform") -> GoalState:
        return self.goals[Platform.parse(platform)]

    def reset(self, platform: "str | Platform | None" = None) -> None:
        targets = [Platform.parse(platform)] if platform else list(self.goals)
        for key in targets:
            self.goals[key].current = 0.0


def describe_item(item: QueueItem) -> str:
    """One-line description of a queue item for logs and the CLI."""
    return f"[{item.platform.value}] {item.type} p{item.priority}: {item.data.display_message}"
