"""Millisecond clocks for the notification pipeline."""

import time
from typing import Protocol


class Clock(Protocol):
    """Source of the current time in ms since the epoch."""

    def now_ms(self) -> int: ...


class SystemClock:
    """Wall clock backed by time.time()."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """Clock that only moves when told to. Used by tests and replays."""

    def __init__(self, start_ms: int = 0):
        self._now = int(start_ms)

    def now_ms(self) -> int:
        return self._now

    def advance(self, ms: int) -> int:
        """Move the clock forward and return the new time."""
        if ms < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += int(ms)
        return self._now

    def set(self, now_ms: int) -> None:
        self._now = int(now_ms)
