import json as jsonlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass
class TransportRequest:
    """An outbound request, independent of the HTTP library used to send it."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    content: Optional[bytes] = None


@dataclass
class TransportResponse:
    """A remote response: status code, headers and raw body.

    Header lookups through ``header`` are case-insensitive.
    """
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""

    def __post_init__(self) -> None:
        self._lower_headers = {k.lower(): v for k, v in self.headers.items()}

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._lower_headers.get(name.lower(), default)

    def json(self) -> Any:
        return jsonlib.loads(self.content)


class Transport(ABC):
    """Base class for transports that carry governed calls to the remote.

    A transport only moves bytes: it never retries, rate limits or
    interprets status codes. Network-level failures must be raised as
    ``TransportError`` (timeouts as ``TransportTimeoutError``); error
    statuses are returned as normal responses.
    """

    @abstractmethod
    async def send(
        self, request: TransportRequest, timeout: Optional[float] = None
    ) -> TransportResponse:
        """Send a request and return the response.

        Args:
            request: The request to send
            timeout: Request timeout in seconds

        Returns:
            The remote response, whatever its status
        """
        pass

    async def aclose(self) -> None:
        """Release any resources held by the transport."""
        return None
