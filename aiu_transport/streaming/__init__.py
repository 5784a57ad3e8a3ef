"""Streaming response decoding (Server-Sent Events)."""

from aiu_transport.streaming.sse import (
    DONE_SENTINEL,
    SSEDecoder,
    SSEEvent,
    SSEJSONStream,
    SSEStream,
    encode_event,
    parse_sse,
    parse_sse_json,
)

__all__ = [
    "DONE_SENTINEL",
    "SSEDecoder",
    "SSEEvent",
    "SSEJSONStream",
    "SSEStream",
    "encode_event",
    "parse_sse",
    "parse_sse_json",
]
