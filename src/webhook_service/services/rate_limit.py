"""Fixed-window rate limiting for inbound webhooks.

Two interchangeable implementations of :class:`RateLimiter`:

* :class:`FixedWindowRateLimiter` keeps counters in process memory. With several
  service instances each one counts separately, so the effective global limit is
  ``limit * instance_count``.
* :class:`PostgresRateLimiter` keeps one counter row per key and bumps it with a
  single atomic upsert, which gives a true global bound.

Both reset a window lazily on the first call after it expired. Bursts straddling a
window boundary can reach twice the nominal rate.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Protocol

import asyncpg  # type: ignore[import-untyped]


class RateLimiter(Protocol):
    async def allow(self, key: str) -> bool:
        """Count one request for ``key``; return False once the window quota is spent."""
        ...


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """In-memory fixed-window counter per key."""

    def __init__(
        self,
        limit: int = 100,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    async def allow(self, key: str) -> bool:
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now > window.reset_at:
            self._windows[key] = _Window(count=1, reset_at=now + self._window_seconds)
            return True
        if window.count >= self._limit:
            return False
        window.count += 1
        return True

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)


class PostgresRateLimiter:
    """Shared fixed-window counter stored in ``webhook_rate_limits``."""

    _UPSERT = """
        INSERT INTO webhook_rate_limits (key, count, reset_at)
        VALUES ($1, 1, now() + make_interval(secs => $2))
        ON CONFLICT (key) DO UPDATE
        SET count = CASE
                WHEN webhook_rate_limits.reset_at < now() THEN 1
                ELSE webhook_rate_limits.count + 1
            END,
            reset_at = CASE
                WHEN webhook_rate_limits.reset_at < now() THEN now() + make_interval(secs => $2)
                ELSE webhook_rate_limits.reset_at
            END
        RETURNING count
    """

    def __init__(self, pool: asyncpg.Pool, limit: int = 100, window_seconds: float = 60.0) -> None:
        self._pool = pool
        self._limit = limit
        self._window_seconds = window_seconds

    async def allow(self, key: str) -> bool:
        async with self._pool.acquire() as conn:
            count = await conn.fetchval(self._UPSERT, key, float(self._window_seconds))
        return int(count) <= self._limit
