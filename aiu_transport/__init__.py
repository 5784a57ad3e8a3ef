"""aiu_transport: HTTP transport with rate limiting, retries and SSE streaming.

This package provides:
- Token bucket rate limiting, single and per key (RateLimiter, KeyedRateLimiter)
- Retry policy with exponential backoff (RetryPolicy, with_retry)
- Incremental Server-Sent Events decoding (parse_sse, parse_sse_json)
- The HttpClient that combines them
"""

from aiu_transport.client import HttpClient, HttpClientOptions, RequestOptions
from aiu_transport.exceptions import (
    BadApiKeyError,
    InvalidRequestError,
    NetworkError,
    ParsingError,
    ProviderDownError,
    RateLimitError,
    RequestTimeoutError,
    ResponseError,
    StreamInterruptedError,
    TransportException,
)
from aiu_transport.ratelimit import KeyedRateLimiter, RateLimiter, RateLimiterOptions
from aiu_transport.retry import RetryContext, RetryPolicy, execute_with_retry, with_retry
from aiu_transport.streaming import (
    DONE_SENTINEL,
    SSEDecoder,
    SSEEvent,
    SSEJSONStream,
    SSEStream,
    encode_event,
    parse_sse,
    parse_sse_json,
)

__version__ = "0.1.0"

__all__ = [
    "HttpClient",
    "HttpClientOptions",
    "RequestOptions",
    "TransportException",
    "NetworkError",
    "RequestTimeoutError",
    "ResponseError",
    "BadApiKeyError",
    "RateLimitError",
    "ProviderDownError",
    "InvalidRequestError",
    "ParsingError",
    "StreamInterruptedError",
    "RateLimiter",
    "KeyedRateLimiter",
    "RateLimiterOptions",
    "RetryPolicy",
    "RetryContext",
    "execute_with_retry",
    "with_retry",
    "DONE_SENTINEL",
    "SSEDecoder",
    "SSEEvent",
    "SSEStream",
    "SSEJSONStream",
    "encode_event",
    "parse_sse",
    "parse_sse_json",
]
