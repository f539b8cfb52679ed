"""Per-destination outbound pacing.

Callers reserve a slot under a short lock and then sleep outside it.
Slots for one destination are handed out at least ``min_gap`` apart,
even when several tasks reserve at once. Two callers may perform their
calls in a different order than they reserved; within one gap window
that ordering does not matter.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)

DEFAULT_MIN_GAP_SECONDS = 3.0


class RateLimiter:
    def __init__(
        self,
        min_gap: float = DEFAULT_MIN_GAP_SECONDS,
        *,
        lock: asyncio.Lock | None = None,
        timestamps: dict[Hashable, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_gap = min_gap
        self._lock = lock if lock is not None else asyncio.Lock()
        self._timestamps: dict[Hashable, float] = (
            timestamps if timestamps is not None else {}
        )
        self._clock = clock
        self._sleep = sleep

    async def reserve(self, destination: Hashable) -> float:
        """Claim the next slot for *destination* and return its instant."""
        async with self._lock:
            now = self._clock()
            last = self._timestamps.setdefault(destination, now - 10 * self.min_gap)
            target = max(now, last + self.min_gap)
            self._timestamps[destination] = target
        return target

    async def wait(self, destination: Hashable) -> None:
        """Reserve a slot and sleep until it arrives."""
        target = await self.reserve(destination)
        delay = target - self._clock()
        if delay > 0:
            logger.debug("Rate limit: waiting %.2fs for %s", delay, destination)
            await self._sleep(delay)
