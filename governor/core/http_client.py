"""HTTP client construction for the httpx transport."""

import httpx

from governor.core.config import settings


def create_http_client(**kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client with default settings.

    Note: The returned client should be closed when done:
        async with create_http_client() as client:
            # use client
            pass

    Args:
        **kwargs: Override default settings. Can include:
            - base_url: Base URL prefixed to relative request URLs
            - timeout: Single timeout value (overrides all granular timeouts)
            - connect_timeout: Connection timeout
            - read_timeout: Read timeout
            - write_timeout: Write timeout
            - pool_timeout: Pool acquisition timeout
            - max_connections: Maximum connections
            - max_keepalive_connections: Maximum keepalive connections
            - keepalive_expiry: Keepalive expiration time

    Returns:
        A new httpx.AsyncClient instance with granular timeout configuration.
    """
    timeout_override = kwargs.get("timeout")
    if timeout_override is not None:
        timeout = httpx.Timeout(timeout_override)
    else:
        timeout = httpx.Timeout(
            connect=kwargs.get("connect_timeout", settings.httpx_connect_timeout),
            read=kwargs.get("read_timeout", settings.httpx_read_timeout),
            write=kwargs.get("write_timeout", settings.httpx_write_timeout),
            pool=kwargs.get("pool_timeout", settings.httpx_pool_timeout),
        )

    config = {
        "timeout": timeout,
        "limits": httpx.Limits(
            max_connections=kwargs.get(
                "max_connections", settings.httpx_max_connections
            ),
            max_keepalive_connections=kwargs.get(
                "max_keepalive_connections", settings.httpx_max_keepalive_connections
            ),
            keepalive_expiry=kwargs.get(
                "keepalive_expiry", settings.httpx_keepalive_expiry
            ),
        ),
    }
    if kwargs.get("base_url"):
        config["base_url"] = kwargs["base_url"]
    return httpx.AsyncClient(**config)
