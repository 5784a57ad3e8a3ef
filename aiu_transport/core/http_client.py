"""Factory for the pooled httpx client used by ``HttpClient``."""

from typing import Any, Optional

import httpx

from aiu_transport.core.config import settings


def create_http_client(
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """Create a new HTTP client with default pool settings.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        timeout: Single timeout value (overrides all granular timeouts)
        transport: Optional custom transport (e.g. ``httpx.MockTransport``)
        **kwargs: Override default settings. Can include:
            - connect_timeout, read_timeout, write_timeout, pool_timeout
            - max_connections, max_keepalive_connections, keepalive_expiry

    Returns:
        A new httpx.AsyncClient instance with granular timeout configuration.
    """
    if timeout is not None:
        client_timeout = httpx.Timeout(timeout)
    else:
        # - connect: Time to establish socket connection
        # - read: Time between received chunks (streams idle between events)
        # - write: Time to send request data
        # - pool: Time to acquire connection from pool
        client_timeout = httpx.Timeout(
            connect=kwargs.get("connect_timeout", settings.httpx_connect_timeout),
            read=kwargs.get("read_timeout", settings.httpx_read_timeout),
            write=kwargs.get("write_timeout", settings.httpx_write_timeout),
            pool=kwargs.get("pool_timeout", settings.httpx_pool_timeout),
        )

    limits = httpx.Limits(
        max_connections=kwargs.get("max_connections", settings.httpx_max_connections),
        max_keepalive_connections=kwargs.get(
            "max_keepalive_connections", settings.httpx_max_keepalive_connections
        ),
        keepalive_expiry=kwargs.get("keepalive_expiry", settings.httpx_keepalive_expiry),
    )

    config: dict[str, Any] = {"timeout": client_timeout, "limits": limits}
    if transport is not None:
        config["transport"] = transport
    return httpx.AsyncClient(**config)
