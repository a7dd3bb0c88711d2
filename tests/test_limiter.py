"""Tests for the FIFO concurrency limiter."""
from __future__ import annotations

import asyncio

import pytest

from aeo_orchestrator.core.errors import LimiterTimeoutError
from aeo_orchestrator.core.models import LimiterStatus
from aeo_orchestrator.services.limiter import ConcurrencyLimiter


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ConcurrencyLimiter(capacity=0)


@pytest.mark.anyio
async def test_extra_acquire_blocks_until_release() -> None:
    limiter = ConcurrencyLimiter(capacity=2)
    await limiter.acquire()
    await limiter.acquire()

    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.01)

    assert not waiter.done()
    assert limiter.status() == LimiterStatus(capacity=2, running=2, queued=1)

    limiter.release()
    await asyncio.wait_for(waiter, timeout=1)
    assert limiter.status() == LimiterStatus(capacity=2, running=2, queued=0)


@pytest.mark.anyio
async def test_release_promotes_exactly_one_waiter() -> None:
    limiter = ConcurrencyLimiter(capacity=1)
    await limiter.acquire()
    first = asyncio.create_task(limiter.acquire())
    second = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.01)

    limiter.release()
    await asyncio.sleep(0.01)

    assert first.done()
    assert not second.done()
    assert limiter.status() == LimiterStatus(capacity=1, running=1, queued=1)

    limiter.release()
    await asyncio.wait_for(second, timeout=1)
    limiter.release()
    assert limiter.status().running == 0


@pytest.mark.anyio
async def test_waiters_are_promoted_in_fifo_order() -> None:
    limiter = ConcurrencyLimiter(capacity=1)
    await limiter.acquire()
    order = []

    async def worker(name: str) -> None:
        async with limiter.slot():
            order.append(name)
            await asyncio.sleep(0)

    tasks = [asyncio.create_task(worker(name)) for name in ("a", "b", "c", "d")]
    await asyncio.sleep(0.01)
    assert limiter.status().queued == 4

    limiter.release()
    await asyncio.wait_for(asyncio.gather(*tasks), timeout=1)

    assert order == ["a", "b", "c", "d"]
    assert limiter.status().running == 0


@pytest.mark.anyio
async def test_running_never_exceeds_capacity() -> None:
    limiter = ConcurrencyLimiter(capacity=3)
    observed = []

    async def worker() -> None:
        async with limiter.slot():
            observed.append(limiter.status().running)
            await asyncio.sleep(0.005)

    await asyncio.gather(*(worker() for _ in range(12)))

    assert max(observed) <= 3
    assert min(observed) >= 1
    assert limiter.status() == LimiterStatus(capacity=3, running=0, queued=0)


@pytest.mark.anyio
async def test_acquire_timeout_removes_waiter() -> None:
    limiter = ConcurrencyLimiter(capacity=1)
    await limiter.acquire()

    with pytest.raises(LimiterTimeoutError) as info:
        await limiter.acquire(timeout=0.05)

    assert isinstance(info.value, TimeoutError)
    assert info.value.queued == 0
    assert limiter.status() == LimiterStatus(capacity=1, running=1, queued=0)


@pytest.mark.anyio
async def test_timeout_reports_remaining_queue_length() -> None:
    limiter = ConcurrencyLimiter(capacity=1)
    await limiter.acquire()
    patient = asyncio.create_task(limiter.acquire(timeout=None))
    await asyncio.sleep(0.01)

    with pytest.raises(LimiterTimeoutError) as info:
        await limiter.acquire(timeout=0.05)

    assert info.value.queued == 1
    assert limiter.status().queued == 1

    limiter.release()
    await asyncio.wait_for(patient, timeout=1)
    assert limiter.status() == LimiterStatus(capacity=1, running=1, queued=0)


@pytest.mark.anyio
async def test_default_timeout_comes_from_constructor() -> None:
    limiter = ConcurrencyLimiter(capacity=1, queue_timeout=0.05)
    await limiter.acquire()

    with pytest.raises(LimiterTimeoutError):
        await limiter.acquire()


@pytest.mark.anyio
async def test_cancelled_waiter_leaves_queue() -> None:
    limiter = ConcurrencyLimiter(capacity=1)
    await limiter.acquire()
    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.01)

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert limiter.status().queued == 0
    limiter.release()
    assert limiter.status().running == 0


@pytest.mark.anyio
async def test_waiter_cancelled_after_promotion_returns_slot() -> None:
    limiter = ConcurrencyLimiter(capacity=1)
    await limiter.acquire()
    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.01)

    limiter.release()
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert limiter.status() == LimiterStatus(capacity=1, running=0, queued=0)


@pytest.mark.anyio
async def test_slot_releases_on_error() -> None:
    limiter = ConcurrencyLimiter(capacity=1)

    with pytest.raises(RuntimeError):
        async with limiter.slot():
            assert limiter.status().running == 1
            raise RuntimeError("boom")

    assert limiter.status().running == 0


def test_release_is_clamped_at_zero() -> None:
    limiter = ConcurrencyLimiter(capacity=2)
    limiter.release()
    assert limiter.status().running == 0


@pytest.mark.anyio
async def test_independent_limiters_do_not_interfere() -> None:
    small = ConcurrencyLimiter(capacity=1)
    large = ConcurrencyLimiter(capacity=5)
    await small.acquire()

    for _ in range(5):
        await large.acquire(timeout=0.05)

    assert small.status().running == 1
    assert large.status().running == 5
