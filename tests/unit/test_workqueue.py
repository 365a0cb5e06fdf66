"""
Unit tests for the rate-limited work queue.

These tests use pytest with asyncio support since get() waits on the
event loop and requeues are scheduled with loop timers.
"""

import asyncio

import pytest

from sidecar_controller.workqueue import (
    BucketRateLimiter,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimitingQueue,
    default_controller_rate_limiter,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestItemExponentialFailureRateLimiter:
    """Test suite for per-key exponential backoff."""

    def test_delay_doubles_per_failure(self):
        limiter = ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=1.0)

        assert limiter.when("a") == pytest.approx(0.01)
        assert limiter.when("a") == pytest.approx(0.02)
        assert limiter.when("a") == pytest.approx(0.04)
        assert limiter.num_requeues("a") == 3

    def test_delay_is_capped(self):
        limiter = ItemExponentialFailureRateLimiter(base_delay=1.0, max_delay=5.0)
        delays = [limiter.when("a") for _ in range(10)]

        assert max(delays) == 5.0

    def test_large_exponent_does_not_overflow(self):
        limiter = ItemExponentialFailureRateLimiter(base_delay=0.005, max_delay=1000.0)
        for _ in range(2000):
            delay = limiter.when("a")
        assert delay == 1000.0

    def test_keys_are_independent(self):
        limiter = ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=1.0)
        limiter.when("a")
        limiter.when("a")

        assert limiter.when("b") == pytest.approx(0.01)
        assert limiter.num_requeues("b") == 1

    def test_forget_resets(self):
        limiter = ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=1.0)
        limiter.when("a")
        limiter.when("a")
        limiter.forget("a")

        assert limiter.num_requeues("a") == 0
        assert limiter.when("a") == pytest.approx(0.01)


class TestBucketRateLimiter:
    """Test suite for the overall token bucket."""

    def test_burst_then_delay(self):
        clock = FakeClock()
        limiter = BucketRateLimiter(qps=10.0, burst=2, clock=clock)

        assert limiter.when("a") == 0.0
        assert limiter.when("b") == 0.0
        assert limiter.when("c") == pytest.approx(0.1)
        assert limiter.when("d") == pytest.approx(0.2)

    def test_tokens_refill(self):
        clock = FakeClock()
        limiter = BucketRateLimiter(qps=10.0, burst=1, clock=clock)

        assert limiter.when("a") == 0.0
        clock.now += 0.1
        assert limiter.when("a") == 0.0

    def test_does_not_track_requeues(self):
        limiter = BucketRateLimiter()
        limiter.when("a")
        assert limiter.num_requeues("a") == 0


class TestMaxOfRateLimiter:
    """Test suite for combined limiters."""

    def test_longest_delay_wins(self):
        clock = FakeClock()
        limiter = MaxOfRateLimiter(
            ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=1.0),
            BucketRateLimiter(qps=1.0, burst=1, clock=clock),
        )

        assert limiter.when("a") == pytest.approx(0.01)
        assert limiter.when("a") == pytest.approx(1.0)
        assert limiter.num_requeues("a") == 2

        limiter.forget("a")
        assert limiter.num_requeues("a") == 0

    def test_default_controller_rate_limiter(self):
        limiter = default_controller_rate_limiter()
        assert limiter.when("a") == pytest.approx(0.005)
        assert limiter.num_requeues("a") == 1


class TestRateLimitingQueue:
    """Test suite for RateLimitingQueue."""

    @pytest.fixture
    def queue(self):
        return RateLimitingQueue(ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=0.05))

    @pytest.mark.asyncio
    async def test_add_and_get(self, queue):
        queue.add("default/a")
        queue.add("default/b")

        assert await queue.get() == ("default/a", False)
        assert await queue.get() == ("default/b", False)

    @pytest.mark.asyncio
    async def test_add_deduplicates_queued_keys(self, queue):
        """Test that adding a queued key N times leaves one instance."""
        for _ in range(5):
            queue.add("default/a")

        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_add_while_processing_is_deferred(self, queue):
        """Test that a key added mid-processing is requeued once by done()."""
        queue.add("default/a")
        key, _ = await queue.get()

        for _ in range(3):
            queue.add("default/a")
        assert len(queue) == 0

        queue.done(key)
        assert len(queue) == 1
        assert await queue.get() == ("default/a", False)

    @pytest.mark.asyncio
    async def test_done_without_new_adds_does_not_requeue(self, queue):
        queue.add("default/a")
        key, _ = await queue.get()
        queue.done(key)

        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_get_waits_for_add(self, queue):
        task = asyncio.create_task(queue.get())
        await asyncio.sleep(0.01)
        assert not task.done()

        queue.add("default/a")
        assert await asyncio.wait_for(task, timeout=1) == ("default/a", False)

    @pytest.mark.asyncio
    async def test_concurrent_getters_each_get_one_key(self, queue):
        tasks = [asyncio.create_task(queue.get()) for _ in range(2)]
        await asyncio.sleep(0)

        queue.add("default/a")
        queue.add("default/b")
        results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=1)

        assert sorted(key for key, _ in results) == ["default/a", "default/b"]

    @pytest.mark.asyncio
    async def test_shut_down_wakes_blocked_getters(self, queue):
        tasks = [asyncio.create_task(queue.get()) for _ in range(3)]
        await asyncio.sleep(0)

        queue.shut_down()
        results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=1)

        assert results == [(None, True)] * 3

    @pytest.mark.asyncio
    async def test_get_after_shut_down_returns_immediately(self, queue):
        queue.add("default/a")
        queue.shut_down()

        assert await asyncio.wait_for(queue.get(), timeout=1) == (None, True)
        assert queue.shutting_down

    @pytest.mark.asyncio
    async def test_add_after_shut_down_is_dropped(self, queue):
        queue.shut_down()
        queue.add("default/a")
        queue.add_rate_limited("default/b")

        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_done_after_shut_down(self, queue):
        """Test that keys handed out before shutdown can still be released."""
        queue.add("default/a")
        key, _ = await queue.get()
        queue.shut_down()

        queue.done(key)
        assert await queue.get() == (None, True)

    @pytest.mark.asyncio
    async def test_add_rate_limited_requeues_after_delay(self, queue):
        queue.add_rate_limited("default/a")

        assert len(queue) == 0
        assert queue.num_requeues("default/a") == 1

        key, shutdown = await asyncio.wait_for(queue.get(), timeout=1)
        assert (key, shutdown) == ("default/a", False)

    @pytest.mark.asyncio
    async def test_forget_resets_requeues(self, queue):
        queue.add_rate_limited("default/a")
        queue.add_rate_limited("default/a")
        assert queue.num_requeues("default/a") == 2

        queue.forget("default/a")
        assert queue.num_requeues("default/a") == 0

    @pytest.mark.asyncio
    async def test_add_after_zero_delay_adds_immediately(self, queue):
        queue.add_after("default/a", 0)
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_shut_down_cancels_delayed_adds(self, queue):
        queue.add_after("default/a", 0.02)
        queue.shut_down()
        await asyncio.sleep(0.05)

        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_shut_down_is_idempotent(self, queue):
        queue.shut_down()
        queue.shut_down()
        assert await queue.get() == (None, True)
