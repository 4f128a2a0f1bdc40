from __future__ import annotations

import pytest

from webhook_service.services.rate_limit import FixedWindowRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.mark.asyncio
async def test_hundred_calls_allowed_then_rejected(clock):
    limiter = FixedWindowRateLimiter(limit=100, window_seconds=60, clock=clock)
    for _ in range(100):
        assert await limiter.allow("hook-1")
    assert not await limiter.allow("hook-1")
    assert not await limiter.allow("hook-1")


@pytest.mark.asyncio
async def test_keys_are_counted_separately(clock):
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
    assert await limiter.allow("hook-1")
    assert not await limiter.allow("hook-1")
    assert await limiter.allow("hook-2")


@pytest.mark.asyncio
async def test_window_resets_lazily_after_expiry(clock):
    limiter = FixedWindowRateLimiter(limit=2, window_seconds=60, clock=clock)
    assert await limiter.allow("hook-1")
    assert await limiter.allow("hook-1")
    assert not await limiter.allow("hook-1")

    clock.now += 60
    assert not await limiter.allow("hook-1")

    clock.now += 0.001
    assert await limiter.allow("hook-1")
    assert await limiter.allow("hook-1")
    assert not await limiter.allow("hook-1")


@pytest.mark.asyncio
async def test_reset_clears_counters(clock):
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
    assert await limiter.allow("hook-1")
    assert not await limiter.allow("hook-1")
    limiter.reset("hook-1")
    assert await limiter.allow("hook-1")
