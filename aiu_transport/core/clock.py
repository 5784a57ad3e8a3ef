"""Clock abstraction used for time-based accounting.

Rate limiters sample time through a ``Clock`` instead of reading the wall
clock directly, so tests can advance a simulated clock rather than sleep.
"""

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    """Source of time plus the matching way to wait for it to pass."""

    def now(self) -> float:
        """Current time in seconds (only differences are meaningful)."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        ...


class MonotonicClock:
    """Default clock backed by ``time.monotonic`` and ``asyncio.sleep``."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class FakeClock:
    """Manually driven clock for deterministic tests.

    ``sleep`` advances the clock instead of waiting, and records every
    requested duration in ``sleeps``.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += max(0.0, seconds)
        # Still yield so cancellation can be delivered at this point
        await asyncio.sleep(0)


default_clock = MonotonicClock()
