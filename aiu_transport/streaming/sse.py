"""Server-Sent Events decoding.

The decoder is split in two layers:

- ``SSEDecoder`` is a push parser. It is fed raw chunks exactly as they
  come off the wire and returns the events completed by each chunk, so a
  line (or a multi-byte character) split across reads is reassembled.
- ``SSEStream`` / ``SSEJSONStream`` pull chunks from an async byte source
  and expose the decoded events, or their JSON payloads, as async iterators
  with an explicit ``aclose()``.
"""

import codecs
import json
import re
from collections import deque
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Generic,
    List,
    Optional,
    TypeVar,
    Union,
)

from aiu_transport.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DONE_SENTINEL = "[DONE]"

_RETRY_RE = re.compile(r"\s*[+-]?\d+")


@dataclass
class SSEEvent:
    """A single dispatched SSE record.

    ``data`` holds every ``data:`` line of the record joined with ``\\n``.
    """
    data: str
    event: Optional[str] = None
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Incremental SSE parser.

    Keeps the unterminated tail of the input and the fields of the event
    being accumulated between calls to ``feed``. An event is dispatched on a
    blank line, but only if a ``data`` field was seen since the previous
    dispatch; blank lines between records never produce empty events.
    """

    def __init__(self) -> None:
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._reset_event()

    def _reset_event(self) -> None:
        self._data: Optional[str] = None
        self._event: Optional[str] = None
        self._id: Optional[str] = None
        self._retry: Optional[int] = None

    def feed(self, chunk: Union[bytes, str]) -> List[SSEEvent]:
        """Consume one chunk and return the events it completed, in order."""
        if isinstance(chunk, str):
            text = chunk
        else:
            text = self._text_decoder.decode(chunk)
        self._buffer += text

        lines = self._buffer.split("\n")
        # The last fragment has no newline yet
        self._buffer = lines.pop()

        events: List[SSEEvent] = []
        for line in lines:
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[SSEEvent]:
        """Finish the session once the source is exhausted.

        An unterminated final line is discarded. An event whose data was set
        by complete lines but never followed by a blank line is dispatched.
        """
        self._text_decoder.decode(b"", final=True)
        self._buffer = ""
        event = self._dispatch()
        return [event] if event is not None else []

    def _dispatch(self) -> Optional[SSEEvent]:
        if self._data is None:
            return None
        event = SSEEvent(data=self._data, event=self._event, id=self._id, retry=self._retry)
        self._reset_event()
        return event

    def _process_line(self, line: str) -> Optional[SSEEvent]:
        if line.endswith("\r"):
            line = line[:-1]

        if line.strip() == "":
            return self._dispatch()

        # Comment
        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if not sep:
            return None
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data = value if self._data is None else f"{self._data}\n{value}"
        elif field == "id":
            self._id = value
        elif field == "retry":
            # Only the leading integer counts; a value without one is ignored
            match = _RETRY_RE.match(value)
            if match:
                self._retry = int(match.group())
        return None


class SSEStream:
    """Async iterator of ``SSEEvent`` decoded from an async byte source.

    Single pass and not restartable. The stream reads from the source only
    when it has no decoded event left to hand out. ``aclose()`` (or leaving
    an ``async with`` block) stops iteration and releases the source; it is
    safe to call more than once.

    Args:
        source: Async iterable of raw chunks (bytes or str)
        on_close: Optional coroutine function run once when the stream closes
    """

    def __init__(
        self,
        source: AsyncIterable[Union[bytes, str]],
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._source = source
        self._iterator: Optional[AsyncIterator[Union[bytes, str]]] = None
        self._on_close = on_close
        self._decoder = SSEDecoder()
        self._pending: Deque[SSEEvent] = deque()
        self._exhausted = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "SSEStream":
        return self

    async def __anext__(self) -> SSEEvent:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if self._pending:
                return self._pending.popleft()
            if self._exhausted:
                await self.aclose()
                raise StopAsyncIteration

            if self._iterator is None:
                self._iterator = self._source.__aiter__()
            try:
                chunk = await self._iterator.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                self._pending.extend(self._decoder.flush())
                continue
            except Exception:
                await self.aclose()
                raise
            self._pending.extend(self._decoder.feed(chunk))

    async def aclose(self) -> None:
        """Stop iteration and release the byte source."""
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        try:
            target = self._iterator if self._iterator is not None else self._source
            close = getattr(target, "aclose", None)
            if close is not None:
                await close()
        finally:
            if self._on_close is not None:
                await self._on_close()

    async def __aenter__(self) -> "SSEStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class SSEJSONStream(Generic[T]):
    """Async iterator of JSON payloads carried in SSE ``data`` fields.

    Iteration ends as soon as an event's data equals ``sentinel``; no
    further event is read, but the source stays open until ``aclose()``.
    Payloads that are not valid JSON are skipped.

    Args:
        events: The event stream to decode
        sentinel: Data value that ends the stream, or None to disable
    """

    def __init__(self, events: SSEStream, sentinel: Optional[str] = DONE_SENTINEL):
        self.events = events
        self.sentinel = sentinel
        self._done = False

    def __aiter__(self) -> "SSEJSONStream[T]":
        return self

    async def __anext__(self) -> T:
        while True:
            if self._done:
                raise StopAsyncIteration
            event = await self.events.__anext__()
            if self.sentinel is not None and event.data == self.sentinel:
                self._done = True
                raise StopAsyncIteration
            try:
                return json.loads(event.data)
            except json.JSONDecodeError:
                preview = event.data if len(event.data) <= 100 else event.data[:100] + "..."
                logger.debug(f"Skipping SSE event with non-JSON data: {preview!r}")

    @property
    def closed(self) -> bool:
        return self.events.closed

    async def aclose(self) -> None:
        self._done = True
        await self.events.aclose()

    async def __aenter__(self) -> "SSEJSONStream[T]":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def parse_sse(
    source: AsyncIterable[Union[bytes, str]],
    on_close: Optional[Callable[[], Awaitable[None]]] = None,
) -> SSEStream:
    """Decode an async byte source into ``SSEEvent`` records."""
    return SSEStream(source, on_close=on_close)


def parse_sse_json(
    source: AsyncIterable[Union[bytes, str]],
    sentinel: Optional[str] = DONE_SENTINEL,
    on_close: Optional[Callable[[], Awaitable[None]]] = None,
) -> SSEJSONStream[Any]:
    """Decode an async byte source into the JSON values of its events."""
    return SSEJSONStream(SSEStream(source, on_close=on_close), sentinel=sentinel)


def encode_event(event: SSEEvent) -> str:
    """Serialize an event to SSE wire text, terminated by a blank line.

    Raises:
        ValueError: If a field contains a carriage return, or ``event``/``id``
            contain a newline
    """
    lines: List[str] = []
    for name, value in (("event", event.event), ("id", event.id)):
        if value is None:
            continue
        if "\n" in value or "\r" in value:
            raise ValueError(f"SSE field {name!r} cannot contain line breaks")
        lines.append(f"{name}: {value}")
    if event.retry is not None:
        lines.append(f"retry: {event.retry}")
    if "\r" in event.data:
        raise ValueError("SSE data cannot contain carriage returns")
    lines.extend(f"data: {line}" for line in event.data.split("\n"))
    return "\n".join(lines) + "\n\n"
