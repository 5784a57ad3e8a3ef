"""Token bucket rate limiters.

``RateLimiter`` throttles a single logical stream of requests;
``KeyedRateLimiter`` keeps an independent bucket per key (usually a
provider id). Buckets are refilled lazily from the injected clock on every
access, so no background task is needed and idle periods of any length are
accounted for correctly.
"""

import math
import threading
from typing import Dict, Generic, Hashable, Iterator, Optional, TypeVar

from aiu_transport.core.clock import Clock, default_clock
from aiu_transport.core.logging import get_logger
from aiu_transport.ratelimit.models import RateLimiterOptions, TokenBucket

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)


class RateLimiter:
    """Single-key token bucket limiter.

    Every read or mutation refills the bucket first. Refill and debit happen
    under one lock, so callers sharing a limiter across threads observe them
    as a single step.

    Example:
        >>> limiter = RateLimiter(RateLimiterOptions(capacity=5, refill_rate=1))
        >>> limiter.try_consume()
        True
    """

    def __init__(self, options: RateLimiterOptions, clock: Optional[Clock] = None):
        self.options = options
        self._clock = clock or default_clock
        initial = options.initial_tokens
        self._bucket = TokenBucket(
            capacity=options.capacity,
            refill_rate=options.refill_rate,
            tokens=options.capacity if initial is None else initial,
            last_refill=self._clock.now(),
        )
        self._lock = threading.Lock()

    @property
    def capacity(self) -> float:
        return self._bucket.capacity

    @property
    def refill_rate(self) -> float:
        return self._bucket.refill_rate

    def try_consume(self, tokens: float = 1) -> bool:
        """Take ``tokens`` if they are available right now.

        Returns:
            True if the tokens were debited; False leaves the bucket untouched
        """
        with self._lock:
            self._bucket.refill(self._clock.now())
            if self._bucket.tokens >= tokens:
                self._bucket.tokens -= tokens
                return True
            return False

    async def consume(self, tokens: float = 1) -> None:
        """Wait until ``tokens`` are available, then take them.

        There is no timeout: a refill rate that is too low for the demand
        keeps the caller waiting. Wrap the call in ``asyncio.wait_for`` to
        bound it; a cancelled wait consumes nothing.

        Raises:
            ValueError: If ``tokens`` exceeds the bucket capacity
        """
        if tokens > self._bucket.capacity:
            raise ValueError(
                f"Cannot consume {tokens} tokens from a bucket of capacity {self._bucket.capacity}"
            )
        while not self.try_consume(tokens):
            wait_ms = self.time_until_tokens(tokens)
            logger.debug(f"Rate limited, waiting {wait_ms}ms for {tokens} token(s)")
            await self._clock.sleep(wait_ms / 1000)

    def time_until_tokens(self, tokens: float = 1) -> int:
        """Milliseconds until ``tokens`` can be taken (0 if they can be now)."""
        with self._lock:
            self._bucket.refill(self._clock.now())
            if self._bucket.tokens >= tokens:
                return 0
            needed = tokens - self._bucket.tokens
            return math.ceil(needed / self._bucket.refill_rate * 1000)

    def get_available_tokens(self) -> float:
        """Current token count after refilling, fractional part included."""
        with self._lock:
            self._bucket.refill(self._clock.now())
            return self._bucket.tokens

    def reset(self) -> None:
        """Fill the bucket to capacity and restart refill accounting from now."""
        with self._lock:
            self._bucket.tokens = self._bucket.capacity
            self._bucket.last_refill = self._clock.now()


class KeyedRateLimiter(Generic[K]):
    """Registry of independent ``RateLimiter`` instances keyed by any hashable.

    Limiters are created on first use with the registry's shared options.
    ``reset(key)`` discards a key's limiter entirely, so the next use starts
    from a fresh full bucket.
    """

    def __init__(self, options: RateLimiterOptions, clock: Optional[Clock] = None):
        self.options = options
        self._clock = clock or default_clock
        self._limiters: Dict[K, RateLimiter] = {}
        self._lock = threading.Lock()

    def _get_limiter(self, key: K) -> RateLimiter:
        with self._lock:
            limiter = self._limiters.get(key)
            if limiter is None:
                limiter = RateLimiter(self.options, clock=self._clock)
                self._limiters[key] = limiter
            return limiter

    async def consume(self, key: K, tokens: float = 1) -> None:
        await self._get_limiter(key).consume(tokens)

    def try_consume(self, key: K, tokens: float = 1) -> bool:
        return self._get_limiter(key).try_consume(tokens)

    def time_until_tokens(self, key: K, tokens: float = 1) -> int:
        return self._get_limiter(key).time_until_tokens(tokens)

    def get_available_tokens(self, key: K) -> float:
        return self._get_limiter(key).get_available_tokens()

    def reset(self, key: K) -> None:
        """Forget ``key``'s bucket."""
        with self._lock:
            self._limiters.pop(key, None)

    def reset_all(self) -> None:
        with self._lock:
            self._limiters.clear()

    def keys(self) -> Iterator[K]:
        with self._lock:
            return iter(list(self._limiters))

    def __contains__(self, key: object) -> bool:
        return key in self._limiters

    def __len__(self) -> int:
        return len(self._limiters)
