"""HTTP client with rate limiting, retries and SSE streaming.

``HttpClient`` is the entry point of the transport layer. For every request
it waits for the request's rate-limit key (if any), runs the attempt loop
under the request's ``RetryPolicy`` and either returns the buffered response
or hands the body to the SSE decoder. Retrying and throttling only happen
before a response is accepted; once a stream is returned, failures surface
from the stream itself and are never retried.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Hashable, Optional, Union

import httpx

from aiu_transport.core.clock import Clock, default_clock
from aiu_transport.core.config import settings
from aiu_transport.core.http_client import create_http_client
from aiu_transport.core.logging import get_log_context, get_logger
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
)
from aiu_transport.ratelimit import KeyedRateLimiter
from aiu_transport.retry import RetryPolicy, execute_with_retry, parse_retry_after
from aiu_transport.streaming.sse import DONE_SENTINEL, SSEJSONStream, SSEStream

logger = get_logger(__name__)


@dataclass
class RequestOptions:
    """Everything needed to send one request.

    Attributes:
        url: Absolute request URL
        method: HTTP method
        headers: Fully formed request headers; they override client defaults
        body: JSON-serializable body, sent as application/json
        content: Raw body sent as-is (takes precedence over ``body``)
        rate_limit_key: Key of the token bucket to wait on before sending
        retry_policy: Overrides the client's policy for this request
        stream: Return a decoded SSE stream instead of the buffered response
        decode_json: For streams, yield JSON payloads rather than raw events
        sentinel: For JSON streams, data value that ends the stream
        timeout: Whole-request timeout in seconds; the pooled client's
            granular timeouts apply when unset
        response_type: ``json``, ``text`` or ``bytes`` for ``HttpClient.request``
        provider_id: Provider name used in errors and logs
    """
    url: str
    method: str = "GET"
    headers: Optional[Dict[str, str]] = None
    body: Any = None
    content: Optional[Union[bytes, str]] = None
    rate_limit_key: Optional[Hashable] = None
    retry_policy: Optional[RetryPolicy] = None
    stream: bool = False
    decode_json: bool = True
    sentinel: Optional[str] = DONE_SENTINEL
    timeout: Optional[float] = None
    response_type: Optional[str] = None
    provider_id: Optional[str] = None


@dataclass
class HttpClientOptions:
    """Client-wide defaults, taken from ``Settings`` unless given."""
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy.from_settings)
    user_agent: str = field(default_factory=lambda: settings.user_agent)
    default_headers: Dict[str, str] = field(default_factory=dict)


class HttpClient:
    """Resilient HTTP client shared by provider adapters.

    Accepts an external ``httpx.AsyncClient`` for connection pooling, or
    creates (and later closes) its own on first use.

    Args:
        options: Client-wide defaults
        http_client: Optional shared HTTP client, never closed by this object
        rate_limiter: Optional registry consulted for ``rate_limit_key``
        clock: Clock used for backoff waits and latency measurement

    Example:
        >>> async with HttpClient(rate_limiter=limiter) as client:
        ...     async with await client.stream(url, method="POST", body=payload,
        ...                                    rate_limit_key="openrouter") as chunks:
        ...         async for chunk in chunks:
        ...             print(chunk["choices"][0]["delta"])
    """

    def __init__(
        self,
        options: Optional[HttpClientOptions] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[KeyedRateLimiter] = None,
        clock: Optional[Clock] = None,
    ):
        self.options = options or HttpClientOptions()
        self.rate_limiter = rate_limiter
        self._http_client = http_client
        self._owns_client = http_client is None
        self._clock = clock or default_clock

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = create_http_client()
        return self._http_client

    def _build_headers(self, options: RequestOptions) -> Dict[str, str]:
        headers = {"User-Agent": self.options.user_agent}
        headers.update(self.options.default_headers)
        if options.headers:
            headers.update(options.headers)
        return headers

    def _build_request(self, client: httpx.AsyncClient, options: RequestOptions) -> httpx.Request:
        # Without a per-request timeout the pooled client's granular timeouts apply
        timeout = options.timeout if options.timeout is not None else httpx.USE_CLIENT_DEFAULT
        if options.content is not None:
            return client.build_request(
                options.method,
                options.url,
                headers=self._build_headers(options),
                content=options.content,
                timeout=timeout,
            )
        return client.build_request(
            options.method,
            options.url,
            headers=self._build_headers(options),
            json=options.body,
            timeout=timeout,
        )

    async def send(self, options: RequestOptions) -> Union[httpx.Response, SSEStream, SSEJSONStream[Any]]:
        """Send a request, retrying per policy, and return its result.

        Returns:
            The buffered ``httpx.Response`` for plain requests; for streaming
            requests an ``SSEJSONStream`` (or an ``SSEStream`` when
            ``decode_json`` is False) that must be closed by the caller

        Raises:
            ResponseError: Non-success response that was not (or no longer) retried
            RequestTimeoutError: The last attempt timed out
            NetworkError: The last attempt failed at the transport level
        """
        client = self._get_client()
        log_context = get_log_context(
            provider=options.provider_id, method=options.method, url=options.url
        )

        if options.rate_limit_key is not None and self.rate_limiter is not None:
            # No deadline here; callers bound the wait with their own cancellation
            await self.rate_limiter.consume(options.rate_limit_key)

        policy = options.retry_policy or self.options.retry_policy
        started = self._clock.now()

        async def attempt_once(attempt: int) -> httpx.Response:
            request = self._build_request(client, options)
            return await client.send(request, stream=options.stream)

        try:
            response = await execute_with_retry(
                attempt_once,
                policy,
                clock=self._clock,
                label=f"{options.method} {options.url}",
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(options.provider_id, options.timeout) from e
        except httpx.TransportError as e:
            raise NetworkError(options.provider_id, e) from e

        duration_ms = round((self._clock.now() - started) * 1000, 2)
        if not response.is_success:
            if options.stream:
                try:
                    await response.aread()
                except httpx.TransportError as e:
                    raise NetworkError(options.provider_id, e) from e
                finally:
                    await response.aclose()
            error = self._error_from_response(response, options.provider_id)
            logger.warning(
                f"Request failed: {error.message}",
                extra={**log_context, "status_code": response.status_code, "duration_ms": duration_ms},
            )
            raise error

        logger.debug(
            "Request completed",
            extra={**log_context, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        if not options.stream:
            return response
        return self._open_stream(response, options)

    def _open_stream(
        self, response: httpx.Response, options: RequestOptions
    ) -> Union[SSEStream, SSEJSONStream[Any]]:
        events = SSEStream(
            _iter_body(response, options.provider_id), on_close=response.aclose
        )
        if not options.decode_json:
            return events
        return SSEJSONStream(events, sentinel=options.sentinel)

    async def request(self, url: str, **kwargs: Any) -> Any:
        """Send a buffered request and return the parsed body.

        The body is parsed according to ``response_type`` or, when absent,
        the response content type: audio and octet-stream as bytes, JSON as
        decoded JSON, anything else as text.

        Raises:
            ParsingError: If a JSON body cannot be decoded
        """
        options = RequestOptions(url=url, **kwargs)
        options.stream = False
        response = await self.send(options)
        return self._parse_body(response, options)  # type: ignore[arg-type]

    async def stream(self, url: str, **kwargs: Any) -> SSEJSONStream[Any]:
        """Send a streaming request and return its JSON payloads."""
        options = RequestOptions(url=url, **kwargs)
        options.stream = True
        options.decode_json = True
        return await self.send(options)  # type: ignore[return-value]

    async def stream_events(self, url: str, **kwargs: Any) -> SSEStream:
        """Send a streaming request and return its raw SSE events."""
        options = RequestOptions(url=url, **kwargs)
        options.stream = True
        options.decode_json = False
        return await self.send(options)  # type: ignore[return-value]

    @staticmethod
    def _detect_content_type(response: httpx.Response) -> str:
        content_type = response.headers.get("Content-Type", "")
        if "audio/" in content_type or "application/octet-stream" in content_type:
            return "bytes"
        if "application/json" in content_type:
            return "json"
        return "text"

    def _parse_body(self, response: httpx.Response, options: RequestOptions) -> Any:
        kind = options.response_type or self._detect_content_type(response)
        if kind == "bytes":
            return response.content
        if kind == "text":
            return response.text
        try:
            return response.json()
        except ValueError as e:
            provider = options.provider_id or "unknown"
            raise ParsingError(
                f'Failed to parse response from provider "{provider}": {e}',
                provider_id=options.provider_id,
            ) from e

    @staticmethod
    def _extract_error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.reason_phrase
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if body.get("message"):
                return str(body["message"])
        return response.reason_phrase

    def _error_from_response(
        self, response: httpx.Response, provider_id: Optional[str]
    ) -> ResponseError:
        provider = provider_id or "unknown"
        status = response.status_code
        message = self._extract_error_message(response)

        if status in (401, 403):
            return BadApiKeyError(
                f'Invalid API key for provider "{provider}": {message}',
                response=response,
                provider_id=provider_id,
            )
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            suffix = f" (retry after {retry_after:g}s)" if retry_after else ""
            return RateLimitError(
                f'Rate limit exceeded for provider "{provider}"{suffix}',
                retry_after=retry_after,
                response=response,
                provider_id=provider_id,
            )
        if status >= 500:
            return ProviderDownError(
                f'Provider "{provider}" is unavailable (status: {status})',
                response=response,
                provider_id=provider_id,
            )
        return InvalidRequestError(
            f'Request to provider "{provider}" failed with status {status}: {message}',
            response=response,
            provider_id=provider_id,
        )

    async def aclose(self) -> None:
        """Close the underlying client if this object created it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


async def _iter_body(response: httpx.Response, provider_id: Optional[str]) -> AsyncIterator[bytes]:
    """Yield the raw body, reporting connection failures as interruptions."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.TransportError as e:
        provider = provider_id or "unknown"
        raise StreamInterruptedError(
            f'Stream from provider "{provider}" was interrupted: {e}',
            provider_id=provider_id,
        ) from e
