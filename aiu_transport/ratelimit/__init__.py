"""Client-side rate limiting.

Token bucket limiters that gate outgoing requests, either for a single
stream of requests or per key (for example per provider).
"""

from aiu_transport.ratelimit.models import RateLimiterOptions, TokenBucket
from aiu_transport.ratelimit.token_bucket import KeyedRateLimiter, RateLimiter

__all__ = [
    "KeyedRateLimiter",
    "RateLimiter",
    "RateLimiterOptions",
    "TokenBucket",
]
