from contextlib import asynccontextmanager
from typing import Optional

import httpx

from governor.core.http_client import create_http_client
from governor.exceptions import TransportError, TransportTimeoutError
from governor.transport.base import Transport, TransportRequest, TransportResponse


class HttpxTransport(Transport):
    """Transport backed by ``httpx.AsyncClient``.

    Accepts an external client for connection pooling, or creates its own
    from settings if one is not provided. A client passed in is never
    closed by the transport.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = "",
    ):
        """Initialize the transport.

        Args:
            http_client: Optional shared HTTP client for connection pooling
            base_url: Base URL used when the transport creates its own client
        """
        self._http_client = http_client
        self._owns_client = http_client is None
        self.base_url = base_url.rstrip('/')

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = create_http_client(base_url=self.base_url)
        return self._http_client

    @asynccontextmanager
    async def _translate_errors(self):
        """Map httpx failures onto the governor's transport errors."""
        try:
            yield
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"Request timed out: {e}", cause=e) from e
        except httpx.TransportError as e:
            raise TransportError(f"{type(e).__name__}: {e}", cause=e) from e

    async def send(
        self, request: TransportRequest, timeout: Optional[float] = None
    ) -> TransportResponse:
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        async with self._translate_errors():
            response = await self.http_client.request(
                request.method,
                request.url,
                headers=request.headers,
                params=request.params,
                json=request.json,
                content=request.content,
                **kwargs,
            )
        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
