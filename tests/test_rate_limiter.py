"""
Tests for RateLimiter

Verifies the reservoir bound per window and the in-flight bound.
"""

import asyncio
import time

import pytest

from engine.services.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_grants_never_exceed_capacity_in_window():
    """No more than `concurrent` grants within any `duration_seconds` window."""
    limiter = RateLimiter(concurrent=3, duration_seconds=0.3)
    grant_times = []

    async def request():
        async with limiter:
            grant_times.append(time.monotonic())

    await asyncio.gather(*(request() for _ in range(7)))

    assert len(grant_times) == 7
    grant_times.sort()
    for i, start in enumerate(grant_times):
        in_window = [t for t in grant_times[i:] if t - start < 0.3 - 0.01]
        assert len(in_window) <= 3


@pytest.mark.asyncio
async def test_full_reservoir_is_drained_immediately():
    limiter = RateLimiter(concurrent=5, duration_seconds=10)

    started = time.monotonic()
    for _ in range(5):
        await limiter.acquire()
        await limiter.release()

    assert time.monotonic() - started < 0.5


@pytest.mark.asyncio
async def test_in_flight_bound_waits_for_release():
    limiter = RateLimiter(concurrent=1, duration_seconds=0.01)
    await limiter.acquire()
    assert limiter.in_flight == 1

    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.05)
    assert not waiter.done()

    await limiter.release()
    await asyncio.wait_for(waiter, timeout=1)
    assert limiter.in_flight == 1
    await limiter.release()


@pytest.mark.asyncio
async def test_cancelled_waiter_consumes_nothing():
    limiter = RateLimiter(concurrent=1, duration_seconds=5)
    await limiter.acquire()

    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.01)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    await limiter.release()
    assert limiter.in_flight == 0


@pytest.mark.asyncio
async def test_update_changes_capacity():
    limiter = RateLimiter(concurrent=1, duration_seconds=10)
    await limiter.acquire()
    await limiter.release()

    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.02)
    assert not waiter.done()

    await limiter.update(2, 10)
    await asyncio.wait_for(waiter, timeout=1)
    assert limiter.capacity == 2
    await limiter.release()


@pytest.mark.asyncio
async def test_schedule_runs_function_with_permit():
    limiter = RateLimiter(concurrent=2, duration_seconds=1)

    async def double(value):
        assert limiter.in_flight == 1
        return value * 2

    assert await limiter.schedule(double, 21) == 42
    assert limiter.in_flight == 0
