"""Retry mechanism with exponential backoff for outgoing requests.

This module provides a configurable retry policy, the attempt loop shared by
``HttpClient`` and a decorator for arbitrary async callables. A policy
classifies both raised exceptions and returned ``httpx.Response`` objects,
so retryable status codes are retried without being turned into exceptions
first.
"""

import functools
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar, Union

import httpx

from aiu_transport.core.clock import Clock, default_clock
from aiu_transport.core.config import settings
from aiu_transport.core.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
R = TypeVar("R")

Outcome = Union[BaseException, httpx.Response]


@dataclass
class RetryContext:
    """State of a request between two attempts.

    Passed to ``RetryPolicy.on_retry`` right before the backoff sleep.

    Attributes:
        attempt: The 1-based attempt that just failed
        max_attempts: Attempts allowed by the policy
        elapsed_ms: Milliseconds since the first attempt started
        last_error: The exception raised by the failed attempt, if any
        response: The retryable response returned by the failed attempt, if any
        delay: Seconds the loop is about to wait
    """
    attempt: int
    max_attempts: int
    elapsed_ms: float
    last_error: Optional[BaseException] = None
    response: Optional[httpx.Response] = None
    delay: float = 0.0


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one (default: 4)
        base_delay: Delay after the first failed attempt in seconds (default: 1.0)
        max_delay: Maximum delay between attempts in seconds (default: 30.0)
        exponential_base: Base for exponential calculation (default: 2.0)
        jitter: Up to this fraction of the delay is added at random (default: 0.2)
        retryable_exceptions: Exception types that trigger a retry
        retryable_status_codes: Status codes retried besides every 5xx
        respect_retry_after: Wait for a 429's Retry-After header when present
        retry_if: Optional predicate replacing the built-in classification
        backoff: Optional function of the attempt number replacing the
            exponential delay
        on_retry: Optional hook called with a ``RetryContext`` before each wait

    Example:
        >>> policy = RetryPolicy(max_attempts=5, base_delay=1.0, jitter=0.0)
        >>> policy.calculate_delay(attempt=3)
        4.0
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.2
    retryable_exceptions: Tuple[Type[BaseException], ...] = (httpx.TransportError,)
    retryable_status_codes: Tuple[int, ...] = (429,)
    respect_retry_after: bool = True
    retry_if: Optional[Callable[[Outcome], bool]] = None
    backoff: Optional[Callable[[int], float]] = None
    on_retry: Optional[Callable[[RetryContext], None]] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls, **overrides: Any) -> "RetryPolicy":
        """Build a policy from the environment-driven defaults."""
        values: dict[str, Any] = {
            "max_attempts": settings.retry_max_attempts,
            "base_delay": settings.retry_base_delay,
            "max_delay": settings.retry_max_delay,
            "jitter": settings.retry_jitter,
        }
        values.update(overrides)
        return cls(**values)

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay after the given failed attempt.

        Uses exponential backoff:
        delay = min(base_delay * (exponential_base ^ (attempt - 1)), max_delay)
        plus a random share of up to ``jitter`` of that delay.

        Args:
            attempt: The attempt that failed (1-indexed)

        Returns:
            Delay in seconds
        """
        if self.backoff is not None:
            return max(0.0, self.backoff(attempt))
        delay = self.base_delay * (self.exponential_base ** max(0, attempt - 1))
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * random.random()
        return delay

    def delay_for(self, attempt: int, outcome: Outcome) -> float:
        """Delay before the next attempt, honouring Retry-After on 429."""
        if (
            self.respect_retry_after
            and isinstance(outcome, httpx.Response)
            and outcome.status_code == 429
        ):
            retry_after = parse_retry_after(outcome.headers.get("Retry-After"))
            if retry_after is not None:
                return retry_after
        return self.calculate_delay(attempt)

    def is_retryable(self, outcome: Outcome) -> bool:
        """Check if an exception or a response should trigger a retry.

        Responses and ``httpx.HTTPStatusError`` are classified by status
        code: every 5xx plus ``retryable_status_codes``.

        Args:
            outcome: The exception raised or the response returned

        Returns:
            True if the outcome should trigger a retry
        """
        if self.retry_if is not None:
            return bool(self.retry_if(outcome))
        if isinstance(outcome, httpx.Response):
            return self._is_retryable_status(outcome.status_code)
        if isinstance(outcome, httpx.HTTPStatusError):
            return self._is_retryable_status(outcome.response.status_code)
        return isinstance(outcome, self.retryable_exceptions)

    def _is_retryable_status(self, status_code: int) -> bool:
        return status_code >= 500 or status_code in self.retryable_status_codes


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header value into seconds.

    Accepts delta-seconds or an HTTP date; returns None when absent or
    unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _describe(outcome: Outcome) -> str:
    if isinstance(outcome, httpx.Response):
        return f"HTTP {outcome.status_code}"
    return f"{type(outcome).__name__}: {outcome}"


async def execute_with_retry(
    operation: Callable[[int], Awaitable[R]],
    policy: Optional[RetryPolicy] = None,
    *,
    clock: Optional[Clock] = None,
    label: str = "operation",
) -> R:
    """Run ``operation`` until it succeeds or the policy gives up.

    ``operation`` receives the 1-based attempt number. A raised exception is
    re-raised once it is not retryable or attempts are exhausted. A returned
    ``httpx.Response`` that the policy classifies as retryable is closed and
    retried while attempts remain; the final response is returned as-is and
    the caller decides how to report it.

    Args:
        operation: Coroutine function performing one attempt
        policy: RetryPolicy configuration. Uses defaults if not provided.
        clock: Clock used to wait between attempts and measure elapsed time
        label: Name used in log messages

    Returns:
        The result of the last attempt
    """
    retry_policy = policy or RetryPolicy()
    clock = clock or default_clock
    started = clock.now()
    attempt = 1

    while True:
        last_error: Optional[BaseException] = None
        response: Optional[httpx.Response] = None
        try:
            result = await operation(attempt)
        except Exception as e:
            if not retry_policy.is_retryable(e):
                logger.debug(
                    f"Non-retryable exception in {label}: {type(e).__name__}: {e}"
                )
                raise
            if attempt >= retry_policy.max_attempts:
                logger.warning(
                    f"Max attempts ({retry_policy.max_attempts}) exceeded for {label}: "
                    f"{type(e).__name__}: {e}"
                )
                raise
            last_error = e
        else:
            if not isinstance(result, httpx.Response) or not retry_policy.is_retryable(result):
                return result
            if attempt >= retry_policy.max_attempts:
                logger.warning(
                    f"Max attempts ({retry_policy.max_attempts}) exceeded for {label}: "
                    f"HTTP {result.status_code}"
                )
                return result
            response = result

        outcome: Outcome = last_error if last_error is not None else response  # type: ignore[assignment]
        delay = retry_policy.delay_for(attempt, outcome)
        context = RetryContext(
            attempt=attempt,
            max_attempts=retry_policy.max_attempts,
            elapsed_ms=(clock.now() - started) * 1000,
            last_error=last_error,
            response=response,
            delay=delay,
        )
        if retry_policy.on_retry is not None:
            retry_policy.on_retry(context)

        logger.warning(
            f"Retry {attempt}/{retry_policy.max_attempts - 1} for {label} "
            f"after {_describe(outcome)}. Waiting {delay:.2f}s...",
            extra={"attempt": attempt},
        )

        # Release the connection before waiting
        if response is not None:
            await response.aclose()

        await clock.sleep(delay)
        attempt += 1


def with_retry(policy: Optional[RetryPolicy] = None, clock: Optional[Clock] = None) -> Callable[[F], F]:
    """Decorator that adds retry logic with exponential backoff.

    This decorator wraps async functions and retries them on exceptions the
    policy classifies as retryable.

    Args:
        policy: RetryPolicy configuration. Uses defaults if not provided.
        clock: Clock used for waits. Uses the monotonic clock if not provided.

    Returns:
        Decorated function with retry logic

    Example:
        >>> @with_retry(policy=RetryPolicy(max_attempts=3))
        ... async def list_models(client):
        ...     return await client.request("https://api.example.com/v1/models")
    """
    retry_policy = policy or RetryPolicy()

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            async def attempt_once(attempt: int) -> Any:
                return await func(*args, **kwargs)

            return await execute_with_retry(
                attempt_once, retry_policy, clock=clock, label=func.__name__
            )

        return wrapper  # type: ignore

    return decorator
