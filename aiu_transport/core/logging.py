"""Structured logging configuration for the transport layer.

This module configures Python's standard logging module with a plain text,
a structured text or a JSON format. The library itself only calls
``get_logger``; applications opt in to the handlers with ``setup_logging``.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from aiu_transport.core.config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems. Request context fields are lifted to the top level; any other
    custom attribute ends up under "extra".
    """

    # Contextual fields for request tracking
    CONTEXT_FIELDS = [
        "request_id",      # Caller supplied request identifier
        "provider",        # Provider the request is addressed to
        "method",          # HTTP method
        "url",             # Request URL
        "status_code",     # HTTP response status
        "attempt",         # 1-based attempt number
        "duration_ms",     # Request duration in milliseconds
        "rate_limit_key",  # Token bucket key the request was throttled on
    ]

    # LogRecord attributes that are never copied into "extra"
    RESERVED_ATTRS = frozenset((
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "timestamp", "logger", "level", "source", "taskName",
    ))

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {}

        record.message = record.getMessage()

        log_data["timestamp"] = datetime.now().astimezone().isoformat()
        log_data["level"] = record.levelname
        log_data["logger"] = record.name
        log_data["message"] = record.message

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        for field in self.CONTEXT_FIELDS:
            if hasattr(record, field):
                value = getattr(record, field)
                if value is not None and value != "-":
                    log_data[field] = value

        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    Adds default values for request_id, provider and the other contextual
    fields if not already present, so format strings never fail.
    """

    CONTEXT_DEFAULTS = {
        "request_id": None,
        "provider": None,
        "method": None,
        "url": None,
        "status_code": None,
        "attempt": None,
        "duration_ms": None,
        "rate_limit_key": None,
    }

    def filter(self, record: logging.LogRecord) -> bool:
        """Add context fields to log record if not present.

        Args:
            record: Log record to enrich

        Returns:
            True to allow the record through
        """
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()

    formatters = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - provider=%(provider)s - method=%(method)s - url=%(url)s - attempt=%(attempt)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "aiu_transport.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "aiu_transport.core.logging.ContextFilter",
            },
        },
        "handlers": handlers,
        "loggers": {
            "aiu_transport": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "httpx": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging() -> None:
    """Configure logging for applications embedding the transport."""
    logging.config.dictConfig(get_logging_config())

    # Reduce noise from the connection pool
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str = "aiu_transport") -> logging.Logger:
    """Get a logger instance with the specified name.

    Args:
        name: Logger name, defaults to "aiu_transport"

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    provider: Optional[str] = None,
    method: Optional[str] = None,
    url: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for use with the extra parameter.

    Args:
        request_id: Request identifier
        provider: Provider name
        method: HTTP method
        url: Request URL
        **extra: Additional custom fields

    Returns:
        Dictionary suitable for passing as extra= parameter to logging calls

    Example:
        >>> logger.warning(
        ...     "Retrying request",
        ...     extra=get_log_context(provider="openrouter", attempt=2)
        ... )
    """
    context = {
        "request_id": request_id,
        "provider": provider,
        "method": method,
        "url": url,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
