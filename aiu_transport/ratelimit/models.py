"""Rate limiting data models.

This module contains the dataclasses for limiter configuration and
token bucket state.
"""

from dataclasses import dataclass
from typing import Optional

from aiu_transport.core.config import settings


@dataclass(frozen=True)
class RateLimiterOptions:
    """Configuration shared by every bucket a limiter creates.

    Attributes:
        capacity: Maximum number of tokens in the bucket
        refill_rate: Tokens added per second
        initial_tokens: Tokens available right after creation (defaults to capacity)
    """
    capacity: float
    refill_rate: float
    initial_tokens: Optional[float] = None

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("capacity must be positive")
        if self.refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        if self.initial_tokens is not None and not 0 <= self.initial_tokens <= self.capacity:
            raise ValueError("initial_tokens must be between 0 and capacity")

    @classmethod
    def from_settings(cls) -> "RateLimiterOptions":
        return cls(
            capacity=settings.rate_limit_capacity,
            refill_rate=settings.rate_limit_refill_rate,
        )


@dataclass
class TokenBucket:
    """Token bucket state. ``0 <= tokens <= capacity`` at every observation."""
    capacity: float
    refill_rate: float
    tokens: float
    last_refill: float

    def refill(self, now: float) -> None:
        """Credit tokens for the time elapsed since the last refill.

        Repeated calls at the same instant change nothing. A clock that
        moved backwards credits nothing.
        """
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now
