"""Mock transport for testing purposes.

This transport replays scripted outcomes without making network calls.
It's useful for tests and local development against a simulated remote.
"""

import asyncio
import json
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from governor.transport.base import Transport, TransportRequest, TransportResponse

Outcome = Union[TransportResponse, BaseException, int]


def make_response(
    status_code: int = 200,
    body: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> TransportResponse:
    """Build a response with an optional JSON body."""
    content = json.dumps(body).encode() if body is not None else b""
    return TransportResponse(status_code=status_code, headers=headers or {}, content=content)


class MockTransport(Transport):
    """Mock transport that returns scripted outcomes in order.

    Features:
    - Outcomes may be responses, bare status codes or exceptions to raise
    - Optional simulated latency, so cancellation and timeouts can be tested
    - Records every request together with the clock reading at send time
    - Falls back to ``default`` once the script is exhausted
    """

    def __init__(
        self,
        outcomes: Optional[List[Outcome]] = None,
        default: Outcome = 200,
        delay: float = 0.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the mock transport.

        Args:
            outcomes: Scripted outcomes, consumed one per request
            default: Outcome used after the script runs out
            delay: Simulated response latency in seconds
            clock: Optional time source used to timestamp recorded requests
        """
        self._outcomes: Deque[Outcome] = deque(outcomes or [])
        self.default = default
        self.delay = delay
        self._clock = clock
        self.requests: List[TransportRequest] = []
        self.sent_at: List[float] = []
        self.closed = False

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def enqueue(self, *outcomes: Outcome) -> None:
        self._outcomes.extend(outcomes)

    async def send(
        self, request: TransportRequest, timeout: Optional[float] = None
    ) -> TransportResponse:
        self.requests.append(request)
        if self._clock is not None:
            self.sent_at.append(self._clock())
        outcome = self._outcomes.popleft() if self._outcomes else self.default
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, int):
            return make_response(outcome)
        return outcome

    async def aclose(self) -> None:
        self.closed = True
