"""Tests for token bucket rate limiters."""

import asyncio
import threading

import pytest

from aiu_transport.ratelimit import KeyedRateLimiter, RateLimiter, RateLimiterOptions, TokenBucket


def make_limiter(clock, capacity=5, refill_rate=1.0, initial_tokens=None):
    return RateLimiter(
        RateLimiterOptions(capacity=capacity, refill_rate=refill_rate, initial_tokens=initial_tokens),
        clock=clock,
    )


class TestRateLimiterOptions:
    """Tests for limiter configuration validation."""

    @pytest.mark.parametrize(
        ("capacity", "refill_rate", "initial_tokens"),
        [
            (0, 1.0, None),
            (-1, 1.0, None),
            (5, 0, None),
            (5, 1.0, 6),
            (5, 1.0, -1),
        ],
    )
    def test_rejects_invalid_values(self, capacity, refill_rate, initial_tokens):
        with pytest.raises(ValueError):
            RateLimiterOptions(capacity=capacity, refill_rate=refill_rate, initial_tokens=initial_tokens)

    def test_from_settings(self, monkeypatch):
        """Default options come from the global settings."""
        from aiu_transport.ratelimit import models

        monkeypatch.setattr(models.settings, "rate_limit_capacity", 20.0)
        monkeypatch.setattr(models.settings, "rate_limit_refill_rate", 4.0)

        options = RateLimiterOptions.from_settings()
        assert options.capacity == 20.0
        assert options.refill_rate == 4.0


class TestTokenBucket:
    """Tests for the refill step of the bucket state."""

    def test_refill_is_idempotent_at_same_instant(self):
        bucket = TokenBucket(capacity=10, refill_rate=2, tokens=3, last_refill=5.0)
        bucket.refill(6.0)
        bucket.refill(6.0)
        assert bucket.tokens == 5
        assert bucket.last_refill == 6.0

    def test_refill_ignores_clock_going_backwards(self):
        bucket = TokenBucket(capacity=10, refill_rate=2, tokens=3, last_refill=5.0)
        bucket.refill(1.0)
        assert bucket.tokens == 3


class TestRateLimiter:
    """Tests for the single-key limiter."""

    def test_starts_at_capacity(self, clock):
        """A new bucket is full unless initial_tokens says otherwise."""
        assert make_limiter(clock).get_available_tokens() == 5

    def test_starts_at_initial_tokens(self, clock):
        assert make_limiter(clock, initial_tokens=2).get_available_tokens() == 2

    def test_try_consume_debits_tokens(self, clock):
        limiter = make_limiter(clock)

        assert limiter.try_consume() is True
        assert limiter.try_consume(3) is True
        assert limiter.get_available_tokens() == 1

    def test_failed_try_consume_leaves_tokens_untouched(self, clock):
        """A failed attempt never mutates the bucket or drives it negative."""
        limiter = make_limiter(clock, capacity=2)

        assert limiter.try_consume(3) is False
        assert limiter.get_available_tokens() == 2

        assert limiter.try_consume(2) is True
        assert limiter.try_consume() is False
        assert limiter.get_available_tokens() == 0

    def test_refills_over_time(self, clock):
        """Tokens grow by elapsed * refill_rate."""
        limiter = make_limiter(clock, capacity=5, refill_rate=1.0)
        limiter.try_consume(5)

        clock.advance(2)
        assert limiter.get_available_tokens() == 2.0

        clock.advance(0.5)
        assert limiter.get_available_tokens() == 2.5

    def test_refill_is_capped_at_capacity(self, clock):
        """Idle periods of any length never overfill the bucket."""
        limiter = make_limiter(clock, capacity=5, refill_rate=1.0)
        limiter.try_consume(1)

        clock.advance(10_000)
        assert limiter.get_available_tokens() == 5

    def test_time_until_tokens(self, clock):
        limiter = make_limiter(clock, capacity=5, refill_rate=2.0)
        limiter.try_consume(5)

        assert limiter.time_until_tokens(1) == 500
        assert limiter.time_until_tokens(3) == 1500

        clock.advance(0.25)
        assert limiter.time_until_tokens(1) == 250

    def test_time_until_tokens_rounds_up(self, clock):
        limiter = make_limiter(clock, capacity=1, refill_rate=3.0)
        limiter.try_consume()

        assert limiter.time_until_tokens(1) == 334

    def test_time_until_tokens_zero_when_available(self, clock):
        assert make_limiter(clock).time_until_tokens(5) == 0

    def test_reset_refills_to_capacity(self, clock):
        limiter = make_limiter(clock, capacity=5, refill_rate=1.0)
        limiter.try_consume(5)

        limiter.reset()
        assert limiter.get_available_tokens() == 5

        # Refill accounting restarts from the reset instant
        limiter.try_consume(5)
        clock.advance(1)
        assert limiter.get_available_tokens() == 1

    @pytest.mark.asyncio
    async def test_consume_without_waiting(self, clock):
        limiter = make_limiter(clock)

        await limiter.consume(2)

        assert clock.sleeps == []
        assert limiter.get_available_tokens() == 3

    @pytest.mark.asyncio
    async def test_consume_waits_for_refill(self, clock):
        """consume sleeps exactly the computed wait, then takes the tokens."""
        limiter = make_limiter(clock, capacity=5, refill_rate=2.0)
        limiter.try_consume(5)

        await limiter.consume(2)

        assert clock.sleeps == [1.0]
        assert limiter.get_available_tokens() == 0

    @pytest.mark.asyncio
    async def test_consume_more_than_capacity_raises(self, clock):
        limiter = make_limiter(clock, capacity=2)

        with pytest.raises(ValueError):
            await limiter.consume(3)

    @pytest.mark.asyncio
    async def test_cancelled_wait_consumes_nothing(self, blocking_clock):
        """Cancelling a waiting task releases it without taking tokens."""
        limiter = make_limiter(blocking_clock, capacity=1, refill_rate=1.0)
        limiter.try_consume()

        task = asyncio.create_task(limiter.consume())
        await asyncio.sleep(0)
        assert blocking_clock.sleeps == [1.0]

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        blocking_clock.advance(1)
        assert limiter.get_available_tokens() == 1

    @pytest.mark.asyncio
    async def test_wait_for_bounds_consume(self, blocking_clock):
        """Callers impose their own deadline on an unbounded wait."""
        limiter = make_limiter(blocking_clock, capacity=1, refill_rate=0.001)
        limiter.try_consume()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(limiter.consume(), timeout=0.01)


class TestKeyedRateLimiter:
    """Tests for the per-key registry."""

    @pytest.fixture
    def limiter(self, clock):
        return KeyedRateLimiter(RateLimiterOptions(capacity=3, refill_rate=1.0), clock=clock)

    def test_keys_are_created_lazily(self, limiter):
        assert len(limiter) == 0
        assert "openai" not in limiter

        limiter.get_available_tokens("openai")

        assert "openai" in limiter
        assert list(limiter.keys()) == ["openai"]

    def test_keys_are_independent(self, limiter):
        """Exhausting one key leaves the others untouched."""
        assert limiter.try_consume("openai", 3) is True
        assert limiter.try_consume("openai") is False

        assert limiter.try_consume("ollama") is True
        assert limiter.get_available_tokens("ollama") == 2

    def test_every_key_shares_the_configuration(self, limiter):
        assert limiter.get_available_tokens("a") == 3
        assert limiter.get_available_tokens("b") == 3

    def test_reset_key_discards_bucket(self, limiter, clock):
        """reset(key) forgets the bucket; the next use starts full."""
        limiter.try_consume("openai", 3)

        limiter.reset("openai")

        assert "openai" not in limiter
        assert limiter.get_available_tokens("openai") == 3

    def test_reset_unknown_key_is_noop(self, limiter):
        limiter.reset("never-used")
        assert len(limiter) == 0

    def test_reset_all(self, limiter):
        limiter.try_consume("a", 3)
        limiter.try_consume("b", 3)

        limiter.reset_all()

        assert len(limiter) == 0
        assert limiter.get_available_tokens("a") == 3

    def test_time_until_tokens_per_key(self, limiter):
        limiter.try_consume("a", 3)

        assert limiter.time_until_tokens("a") == 1000
        assert limiter.time_until_tokens("b") == 0

    @pytest.mark.asyncio
    async def test_consume_waits_per_key(self, limiter, clock):
        limiter.try_consume("a", 3)

        await limiter.consume("b")
        assert clock.sleeps == []

        await limiter.consume("a")
        assert clock.sleeps == [1.0]

    def test_concurrent_threads_never_overdraw(self, clock):
        """Interleaved callers behave as if serialized per key."""
        limiter = KeyedRateLimiter(RateLimiterOptions(capacity=100, refill_rate=1.0), clock=clock)
        successes = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                if limiter.try_consume("shared"):
                    with lock:
                        successes.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(successes) == 100
        assert limiter.get_available_tokens("shared") == 0
