"""
Display-refresh-rate tick source for the recording loop.
"""

import asyncio
import time
from typing import AsyncIterator, Optional


class MonotonicClock:
    """Wall clock in milliseconds with an awaitable sleep."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000

    async def sleep(self, seconds: float):
        await asyncio.sleep(seconds)


class FrameTicker:
    """
    Yields monotonically non-decreasing timestamps (ms) at ``refresh_hz``.

    The clock is injectable so tests can drive time deterministically.
    Each tick suspends the caller, so other tasks run between frames.
    """

    def __init__(self, refresh_hz: float = 60.0, clock: Optional[MonotonicClock] = None):
        if refresh_hz <= 0:
            raise ValueError("refresh_hz must be positive")
        self.refresh_hz = refresh_hz
        self.clock = clock or MonotonicClock()

    @property
    def interval_s(self) -> float:
        return 1.0 / self.refresh_hz

    def now_ms(self) -> float:
        return self.clock.now_ms()

    async def ticks(self) -> AsyncIterator[float]:
        last = self.clock.now_ms()
        while True:
            await self.clock.sleep(self.interval_s)
            now = max(self.clock.now_ms(), last)
            last = now
            yield now
