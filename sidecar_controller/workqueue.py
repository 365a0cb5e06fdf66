"""
Deduplicating, rate-limited work queue for pod keys.

This module provides the hand-off between change notifications and the
reconcile workers. A key is queued at most once no matter how many
notifications arrive for it, and a key being processed is never handed to a
second worker: notifications that arrive mid-processing are parked and the
key is queued again when the worker calls done().

Failed keys are re-added after a per-key exponential backoff. All queue
operations are non-blocking except get(), which waits cooperatively for work
or shutdown.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ItemExponentialFailureRateLimiter:
    """
    Per-key exponential backoff.

    The n-th consecutive failure of a key waits ``base_delay * 2**n``
    seconds, capped at ``max_delay``.
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[str, int] = {}

    def when(self, item: str) -> float:
        exp = self._failures.get(item, 0)
        self._failures[item] = exp + 1

        # Past this exponent the delay is far beyond any sane cap
        if exp > 62:
            return self.max_delay
        return min(self.base_delay * (2**exp), self.max_delay)

    def num_requeues(self, item: str) -> int:
        return self._failures.get(item, 0)

    def forget(self, item: str) -> None:
        self._failures.pop(item, None)


class BucketRateLimiter:
    """
    Overall token bucket shared by all keys.

    Limits the total retry rate to ``qps`` with bursts of up to ``burst``
    items. It does not track individual keys.
    """

    def __init__(
        self,
        qps: float = 10.0,
        burst: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()

    def when(self, item: str) -> float:
        now = self._clock()
        self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.qps)
        self._last = now

        # Reserve a token even when the bucket is empty; the debt is paid by waiting
        self._tokens -= 1
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self.qps

    def num_requeues(self, item: str) -> int:
        return 0

    def forget(self, item: str) -> None:
        pass


class MaxOfRateLimiter:
    """Combines several limiters; the longest delay wins."""

    def __init__(self, *limiters):
        self.limiters = limiters

    def when(self, item: str) -> float:
        return max(limiter.when(item) for limiter in self.limiters)

    def num_requeues(self, item: str) -> int:
        return max(limiter.num_requeues(item) for limiter in self.limiters)

    def forget(self, item: str) -> None:
        for limiter in self.limiters:
            limiter.forget(item)


def default_controller_rate_limiter() -> MaxOfRateLimiter:
    """Per-key exponential backoff bounded by an overall 10 qps / 100 burst bucket."""
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(0.005, 1000.0),
        BucketRateLimiter(qps=10.0, burst=100),
    )


class RateLimitingQueue:
    """
    Work queue with dedup, in-flight tracking and rate-limited requeue.

    Every get() that returns a key must be matched by exactly one done()
    for that key.
    """

    def __init__(self, rate_limiter=None, name: str = "pods"):
        """
        Initialize the queue.

        Args:
            rate_limiter: Limiter deciding requeue delays. Defaults to
                          default_controller_rate_limiter().
            name: Queue name used in log messages
        """
        self.rate_limiter = rate_limiter or default_controller_rate_limiter()
        self.name = name

        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()  # queued or waiting to be re-queued
        self._processing: set[str] = set()  # handed to a worker, not done yet
        self._not_empty = asyncio.Event()
        self._shutting_down = False
        self._timers: set[asyncio.TimerHandle] = set()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, item: str) -> None:
        """
        Queue a key unless it is already queued or being processed.

        Keys added after shut_down() are dropped.
        """
        if self._shutting_down:
            logger.debug(f"Queue {self.name} is shutting down, dropping {item}")
            return
        if item in self._dirty:
            return

        self._dirty.add(item)
        if item in self._processing:
            # Re-queued by done()
            return

        self._queue.append(item)
        self._not_empty.set()

    async def get(self) -> tuple[str | None, bool]:
        """
        Wait for the next key.

        Returns:
            Tuple of (key, shutdown). Once the queue is shut down every call
            returns (None, True).
        """
        while not self._queue and not self._shutting_down:
            self._not_empty.clear()
            await self._not_empty.wait()

        if self._shutting_down:
            return None, True

        item = self._queue.popleft()
        self._processing.add(item)
        self._dirty.discard(item)
        return item, False

    def done(self, item: str) -> None:
        """Release the in-flight marker of a key returned by get()."""
        self._processing.discard(item)
        if item in self._dirty:
            self._queue.append(item)
            self._not_empty.set()

    def add_after(self, item: str, delay: float) -> None:
        """Queue a key once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            self._timers.discard(handle)
            self.add(item)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, item: str) -> None:
        """Queue a key after the backoff its failure count calls for."""
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: str) -> None:
        """Reset the failure count of a key."""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: str) -> int:
        return self.rate_limiter.num_requeues(item)

    def shut_down(self) -> None:
        """
        Stop handing out work.

        Blocked and future get() calls return the shutdown flag. Delayed
        re-adds are cancelled; keys already handed out can still be
        released with done().
        """
        if self._shutting_down:
            return
        self._shutting_down = True

        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

        self._not_empty.set()
        logger.debug(f"Queue {self.name} shut down with {len(self._queue)} queued items")
