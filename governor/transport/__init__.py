"""Transports that carry governed calls to the remote API."""

from governor.transport.base import Transport, TransportRequest, TransportResponse
from governor.transport.httpx_transport import HttpxTransport
from governor.transport.mock import MockTransport, make_response

__all__ = [
    "Transport",
    "TransportRequest",
    "TransportResponse",
    "HttpxTransport",
    "MockTransport",
    "make_response",
]
