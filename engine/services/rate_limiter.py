"""
Rate Limiter Service

Reservoir limiter for outbound upstream requests.
- At most `concurrent` permits are granted in any window of `duration_seconds`
- At most `concurrent` permits are in flight at once
"""

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional

from ..core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Reservoir of `concurrent` permits refilled over `duration_seconds`.

    Each granted permit goes back into the reservoir `duration_seconds`
    after it was taken, so the number of grants inside any window of that
    length never exceeds the capacity. There is no minimum spacing between
    grants: a full reservoir is drained immediately.

    Usage:
        async with limiter:
            response = await client.get(url)

        result = await limiter.schedule(fetch, url)
    """

    def __init__(self, concurrent: int, duration_seconds: float, name: str = "default"):
        self.name = name
        self._capacity = max(1, int(concurrent))
        self._interval = float(duration_seconds)
        self._grants: Deque[float] = deque()
        self._in_flight = 0
        self._cond = asyncio.Condition()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _expire_grants(self, now: float):
        while self._grants and now - self._grants[0] >= self._interval:
            self._grants.popleft()

    async def acquire(self):
        """Wait for a permit. Cancelling the waiter consumes nothing."""
        async with self._cond:
            while True:
                now = time.monotonic()
                self._expire_grants(now)

                if self._in_flight < self._capacity and len(self._grants) < self._capacity:
                    self._grants.append(now)
                    self._in_flight += 1
                    return

                # Reservoir empty: wake when the oldest grant refills.
                # In-flight bound only: wake on release.
                timeout: Optional[float] = None
                if len(self._grants) >= self._capacity:
                    timeout = max(self._grants[0] + self._interval - now, 0.0)

                try:
                    await asyncio.wait_for(self._cond.wait(), timeout)
                except asyncio.TimeoutError:
                    pass

    async def release(self):
        async with self._cond:
            if self._in_flight > 0:
                self._in_flight -= 1
            self._cond.notify_all()

    async def update(self, concurrent: int, duration_seconds: float):
        """Change capacity and interval. Permits already in flight are kept."""
        async with self._cond:
            self._capacity = max(1, int(concurrent))
            self._interval = float(duration_seconds)
            self._cond.notify_all()

        logger.info(
            "rate_limiter_updated",
            limiter=self.name,
            concurrent=self._capacity,
            duration_seconds=self._interval,
        )

    async def schedule(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run `fn(*args, **kwargs)` while holding a permit."""
        async with self:
            return await fn(*args, **kwargs)

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.release()
