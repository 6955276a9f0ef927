"""Side effect dispatcher - fans admitted notifications out to TTS, effects and goals."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Protocol

from .events import MONETARY_KINDS
from .models import Notification
from .notification_config import NotificationsConfig

logger = logging.getLogger(__name__)


class TTSSink(Protocol):
    async def speak(self, text: str) -> None: ...


class EffectsSink(Protocol):
    async def get_vfx_config(self, kind: str, gift_type: Optional[str] = None) -> Optional[dict]: ...


class GoalsSink(Protocol):
    async def process_donation_goal(self, donation: dict) -> Any: ...


EffectCallback = Callable[[Notification, dict], Any]


class SideEffectDispatcher:
    """Submits side effects without blocking the pipeline.

    Every sink call runs as its own task with a deadline. Failures and
    timeouts are logged and counted; they never reach the caller.
    """

    def __init__(
        self,
        tts_sink: Optional[TTSSink] = None,
        effects_sink: Optional[EffectsSink] = None,
        goals_sink: Optional[GoalsSink] = None,
        sink_timeout_ms: int = 5000,
        on_effect: Optional[EffectCallback] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.tts_sink = tts_sink
        self.effects_sink = effects_sink
        self.goals_sink = goals_sink
        self.sink_timeout_ms = sink_timeout_ms
        self.on_effect = on_effect
        self.logger = logger or logging.getLogger(__name__)
        self.failures = 0
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, notification: Notification, config: NotificationsConfig) -> list[asyncio.Task]:
        """Schedule all side effects for an admitted notification.

        Must be called from a running event loop. Returns the scheduled tasks.
        """
        kind = notification.kind
        tasks = []

        if self.tts_sink is not None and self._tts_enabled(notification, config):
            tasks.append(self._schedule("tts", self.tts_sink.speak, notification.tts_message))

        if self.effects_sink is not None:
            tasks.append(self._schedule("effects", self._trigger_effect, notification))

        if self.goals_sink is not None and kind in MONETARY_KINDS and notification.amount is not None:
            donation = {
                "amount": notification.amount,
                "currency": notification.currency,
                "username": notification.username,
                "platform": notification.platform.value,
            }
            tasks.append(self._schedule("goals", self.goals_sink.process_donation_goal, donation))

        return tasks

    @staticmethod
    def _tts_enabled(notification: Notification, config: NotificationsConfig) -> bool:
        if not config.general.tts_enabled:
            return False
        return config.type_config(notification.kind).tts

    async def _trigger_effect(self, notification: Notification) -> None:
        vfx = await _maybe_await(
            self.effects_sink.get_vfx_config(notification.kind.value, notification.gift_type)
        )
        if vfx is None:
            return
        self.logger.debug(f"VFX for {notification.id}: {vfx}")
        if self.on_effect is not None:
            await _maybe_await(self.on_effect(notification, vfx))

    def _schedule(self, name: str, func: Callable[..., Any], *args: Any) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._submit(name, func, *args))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _submit(self, name: str, func: Callable[..., Any], *args: Any) -> None:
        try:
            await asyncio.wait_for(_maybe_await(func(*args)), timeout=self.sink_timeout_ms / 1000)
        except asyncio.TimeoutError:
            self.failures += 1
            self.logger.warning(f"sink_failure: {name} sink timed out after {self.sink_timeout_ms}ms")
        except Exception as e:
            self.failures += 1
            self.logger.warning(f"sink_failure: {name} sink raised {type(e).__name__}: {e}")

    async def drain(self) -> None:
        """Wait for all submitted side effects to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
