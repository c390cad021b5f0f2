"""Outbound request governor.

This package provides:
- Per-key rate windows (sliding window, Redis-shared or header driven)
- A FIFO queue per key for calls waiting on capacity
- Circuit breaking per downstream target (CircuitBreaker)
- Retries with exponential backoff and jitter (BackoffPolicy, with_retry)
- The Governor, which composes all of the above around a Transport
"""

from governor.breaker import CircuitBreaker, CircuitState
from governor.core.clock import Clock
from governor.exceptions import (
    CallCancelledError,
    CircuitOpenError,
    GovernorClosedError,
    GovernorError,
    MaxRetriesExceededError,
    RateLimitExceeded,
    RemoteError,
    TransportError,
    TransportTimeoutError,
)
from governor.models import Call, GovernorOptions
from governor.policies import BackoffPolicy, with_retry
from governor.ratelimit import RateWindow
from governor.services import Governor, get_governor, reset_governor
from governor.transport import (
    HttpxTransport,
    MockTransport,
    Transport,
    TransportRequest,
    TransportResponse,
)

__all__ = [
    # Governor
    "Governor",
    "get_governor",
    "reset_governor",
    "Call",
    "GovernorOptions",
    "Clock",
    # Components
    "BackoffPolicy",
    "with_retry",
    "CircuitBreaker",
    "CircuitState",
    "RateWindow",
    # Transports
    "Transport",
    "TransportRequest",
    "TransportResponse",
    "HttpxTransport",
    "MockTransport",
    # Exceptions
    "GovernorError",
    "RateLimitExceeded",
    "CircuitOpenError",
    "TransportError",
    "TransportTimeoutError",
    "RemoteError",
    "CallCancelledError",
    "MaxRetriesExceededError",
    "GovernorClosedError",
]
