"""Tests for per-destination outbound pacing."""
from __future__ import annotations

import asyncio

import pytest

from chatbridge.engine.rate_limit import RateLimiter


class FakeClock:
    """Monotonic clock that only moves when sleep() is awaited."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


@pytest.fixture
def clock():
    return FakeClock()


class TestReserve:
    @pytest.mark.asyncio
    async def test_first_call_is_immediate(self, clock):
        limiter = RateLimiter(3.0, clock=clock, sleep=clock.sleep)
        assert await limiter.reserve(1) == clock.now

    @pytest.mark.asyncio
    async def test_back_to_back_slots_are_spaced(self, clock):
        limiter = RateLimiter(3.0, clock=clock, sleep=clock.sleep)
        first = await limiter.reserve(1)
        second = await limiter.reserve(1)
        third = await limiter.reserve(1)
        assert second - first == pytest.approx(3.0)
        assert third - second == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_destinations_are_independent(self, clock):
        limiter = RateLimiter(3.0, clock=clock, sleep=clock.sleep)
        await limiter.reserve(1)
        assert await limiter.reserve(2) == clock.now

    @pytest.mark.asyncio
    async def test_idle_destination_is_not_delayed(self, clock):
        limiter = RateLimiter(3.0, clock=clock, sleep=clock.sleep)
        await limiter.reserve(1)
        clock.now += 60
        assert await limiter.reserve(1) == clock.now

    @pytest.mark.asyncio
    async def test_concurrent_reservations_are_spaced(self, clock):
        limiter = RateLimiter(3.0, clock=clock, sleep=clock.sleep)
        slots = await asyncio.gather(*(limiter.reserve(7) for _ in range(6)))
        ordered = sorted(slots)
        assert len(set(slots)) == 6
        for earlier, later in zip(ordered, ordered[1:]):
            assert later - earlier >= 3.0 - 1e-9

    @pytest.mark.asyncio
    async def test_shared_timestamps_dict(self, clock):
        timestamps: dict = {}
        limiter = RateLimiter(2.0, timestamps=timestamps, clock=clock, sleep=clock.sleep)
        target = await limiter.reserve(5)
        assert timestamps == {5: target}


class TestWait:
    @pytest.mark.asyncio
    async def test_wait_sleeps_until_slot(self, clock):
        limiter = RateLimiter(3.0, clock=clock, sleep=clock.sleep)
        await limiter.wait(1)
        await limiter.wait(1)
        assert clock.sleeps == [pytest.approx(3.0)]

    @pytest.mark.asyncio
    async def test_wait_does_not_hold_the_lock_while_sleeping(self, clock):
        lock = asyncio.Lock()
        release = asyncio.Event()
        entered = asyncio.Event()

        async def blocking_sleep(delay: float) -> None:
            entered.set()
            await release.wait()
            clock.now += delay

        limiter = RateLimiter(3.0, lock=lock, clock=clock, sleep=blocking_sleep)
        await limiter.wait(1)
        waiter = asyncio.create_task(limiter.wait(1))
        await entered.wait()
        assert not lock.locked()
        async with lock:
            pass
        release.set()
        await waiter

    @pytest.mark.asyncio
    async def test_zero_gap_never_sleeps(self, clock):
        limiter = RateLimiter(0.0, clock=clock, sleep=clock.sleep)
        for _ in range(5):
            await limiter.wait(1)
        assert clock.sleeps == []
