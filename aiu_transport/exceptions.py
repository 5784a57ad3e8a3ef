"""Exceptions raised by the transport layer."""

from typing import Any, Optional

import httpx


class TransportException(Exception):
    """Base class for transport exceptions with an error code.

    All custom exceptions inherit from this class and define a ``code``
    and the HTTP ``status_code`` that best describes the failure.
    """
    code: str = "UNKNOWN"
    status_code: int = 500

    def __init__(
        self,
        message: str = "Transport error",
        *,
        provider_id: Optional[str] = None,
        details: Any = None,
    ):
        self.message = message
        self.provider_id = provider_id
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "provider_id": self.provider_id,
            "details": self.details,
        }


class NetworkError(TransportException):
    """Raised when the request could not be delivered after all attempts.

    Covers connection resets, DNS failures and other ``httpx.TransportError``
    failures. The original exception is chained as ``__cause__``.
    """
    code = "NETWORK_ERROR"
    status_code = 502

    def __init__(self, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None and str(cause) else ""
        super().__init__(
            f'Network error communicating with provider "{provider_id or "unknown"}"{detail}',
            provider_id=provider_id,
        )


class RequestTimeoutError(TransportException):
    """Raised when the request timed out on its last attempt."""
    code = "TIMEOUT"
    status_code = 504

    def __init__(self, provider_id: Optional[str] = None, timeout: Optional[float] = None):
        self.timeout = timeout
        suffix = f" after {timeout}s" if timeout is not None else ""
        super().__init__(
            f'Request to provider "{provider_id or "unknown"}" timed out{suffix}',
            provider_id=provider_id,
        )


class ResponseError(TransportException):
    """Raised for a non-success response that will not be retried.

    Either the response was not retryable, or it was and the retry policy
    ran out of attempts. The final response is kept on ``response``.
    """
    code = "INVALID_REQUEST"

    def __init__(
        self,
        message: str,
        *,
        response: Optional[httpx.Response] = None,
        provider_id: Optional[str] = None,
        details: Any = None,
    ):
        self.response = response
        if response is not None:
            self.status_code = response.status_code
        super().__init__(message, provider_id=provider_id, details=details)


class BadApiKeyError(ResponseError):
    """401/403 from the provider. Maps to HTTP 401 Unauthorized."""
    code = "BAD_API_KEY"
    status_code = 401


class RateLimitError(ResponseError):
    """429 from the provider after all attempts were used.

    ``retry_after`` holds the provider's Retry-After hint in seconds, if any.
    """
    code = "RATE_LIMIT"
    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        response: Optional[httpx.Response] = None,
        provider_id: Optional[str] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, response=response, provider_id=provider_id)


class ProviderDownError(ResponseError):
    """5xx from the provider after all attempts were used."""
    code = "PROVIDER_DOWN"
    status_code = 503


class InvalidRequestError(ResponseError):
    """Any other 4xx response. Never retried by the default policy."""
    code = "INVALID_REQUEST"
    status_code = 400


class ParsingError(TransportException):
    """Raised when a buffered response body cannot be decoded."""
    code = "PARSING_ERROR"
    status_code = 502


class StreamInterruptedError(TransportException):
    """Raised from a stream when the connection fails mid-flight.

    Values already yielded by the stream remain valid. Streams are never
    retried once they have started.
    """
    code = "STREAM_INTERRUPTED"
    status_code = 502
