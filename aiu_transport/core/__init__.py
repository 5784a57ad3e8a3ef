"""Core utilities for the transport layer."""

from aiu_transport.core.clock import Clock, FakeClock, MonotonicClock, default_clock
from aiu_transport.core.config import Settings, settings
from aiu_transport.core.http_client import create_http_client
from aiu_transport.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "Clock",
    "FakeClock",
    "MonotonicClock",
    "default_clock",
    "Settings",
    "settings",
    "create_http_client",
    "get_logger",
    "get_log_context",
    "setup_logging",
]
