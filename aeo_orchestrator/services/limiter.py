"""Process-wide concurrency gate for calls to the generation service."""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from aeo_orchestrator.core.errors import LimiterTimeoutError
from aeo_orchestrator.core.models import LimiterStatus, LimiterToken

logger = logging.getLogger(__name__)

# Sentinel meaning "use the limiter's configured queue timeout".
DEFAULT_TIMEOUT: Any = object()


@dataclass(slots=True)
class _Waiter:
    future: asyncio.Future
    enqueued_at: float
    timer: Optional[asyncio.TimerHandle] = None


class ConcurrencyLimiter:
    """FIFO semaphore with a per-wait timeout.

    Every mutation of ``running`` and of the waiter queue happens in code that
    does not suspend, on the event loop that owns the limiter. Acquire,
    release and timeout eviction are therefore serialized, and a release hands
    its slot straight to the queue head so ``running`` never exceeds
    ``capacity``.
    """

    def __init__(self, capacity: int, queue_timeout: Optional[float] = None) -> None:
        if capacity < 1:
            raise ValueError("Limiter capacity must be at least 1")
        if queue_timeout is not None and queue_timeout <= 0:
            raise ValueError("queue_timeout must be positive")
        self._capacity = capacity
        self._queue_timeout = queue_timeout
        self._running = 0
        self._waiters: "OrderedDict[int, _Waiter]" = OrderedDict()
        self._ids = itertools.count()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def queue_timeout(self) -> Optional[float]:
        return self._queue_timeout

    def status(self) -> LimiterStatus:
        return LimiterStatus(
            capacity=self._capacity,
            running=self._running,
            queued=len(self._waiters),
        )

    async def acquire(self, timeout: Optional[float] = DEFAULT_TIMEOUT) -> LimiterToken:
        """Take a slot, queueing FIFO behind earlier callers when full.

        Raises:
            LimiterTimeoutError: no slot was handed over within ``timeout``.
        """
        if timeout is DEFAULT_TIMEOUT:
            timeout = self._queue_timeout

        if self._running < self._capacity and not self._waiters:
            self._running += 1
            logger.debug("Acquired immediately. Running: %d/%d", self._running, self._capacity)
            return LimiterToken()

        loop = asyncio.get_running_loop()
        waiter_id = next(self._ids)
        waiter = _Waiter(future=loop.create_future(), enqueued_at=loop.time())
        if timeout is not None:
            waiter.timer = loop.call_later(timeout, self._expire, waiter_id, timeout)
        self._waiters[waiter_id] = waiter
        logger.debug(
            "Queueing request. Running: %d/%d, Queue: %d",
            self._running,
            self._capacity,
            len(self._waiters),
        )

        try:
            await waiter.future
        except asyncio.CancelledError:
            self._abandon(waiter_id, waiter)
            raise
        return LimiterToken(waited=loop.time() - waiter.enqueued_at)

    def release(self) -> None:
        """Return a slot and promote the oldest live waiter, if any."""
        previous = self._running
        self._running = max(0, self._running - 1)

        while self._waiters:
            _, waiter = self._waiters.popitem(last=False)
            if waiter.timer is not None:
                waiter.timer.cancel()
            if waiter.future.done():
                # Cancelled while queued; its task has not cleaned up yet.
                continue
            self._running += 1
            waiter.future.set_result(None)
            logger.debug(
                "Released and started queued request. Running: %d -> %d, Queue: %d",
                previous,
                self._running,
                len(self._waiters),
            )
            return

        logger.debug("Released. Running: %d -> %d, Queue: empty", previous, self._running)

    @asynccontextmanager
    async def slot(self, timeout: Optional[float] = DEFAULT_TIMEOUT) -> AsyncIterator[LimiterToken]:
        """Hold a slot for the duration of the block, releasing on every exit path."""
        token = await self.acquire(timeout)
        try:
            yield token
        finally:
            self.release()

    def _expire(self, waiter_id: int, timeout: float) -> None:
        waiter = self._waiters.pop(waiter_id, None)
        if waiter is None or waiter.future.done():
            return
        queued = len(self._waiters)
        logger.warning("Queue timeout after %.3fs. Queue: %d", timeout, queued)
        waiter.future.set_exception(LimiterTimeoutError(timeout, queued))

    def _abandon(self, waiter_id: int, waiter: _Waiter) -> None:
        if self._waiters.pop(waiter_id, None) is not None:
            if waiter.timer is not None:
                waiter.timer.cancel()
            return
        future = waiter.future
        # Promoted just before the cancellation landed: hand the slot on.
        if future.done() and not future.cancelled() and future.exception() is None:
            self.release()
