"""Rate window data models."""

from dataclasses import dataclass, field
from typing import Any, Optional

UNKNOWN = -1


@dataclass
class RateWindowState:
    """Per-key rate window state.

    Attributes:
        limit: Capacity of one window
        remaining: Capacity left, or UNKNOWN (-1) before anything is known.
            Known values never drop below 0.
        reset_at: Epoch seconds at which capacity is expected back
        updated_at: Epoch seconds of the last update
        source: Who wrote the state last: 'local' (own accounting) or
            'server' (response headers). The server is authoritative.
    """
    limit: int
    remaining: int = UNKNOWN
    reset_at: float = 0.0
    updated_at: float = 0.0
    source: str = field(default="local")

    def update(
        self,
        now: float,
        remaining: Optional[int] = None,
        limit: Optional[int] = None,
        reset_at: Optional[float] = None,
        source: str = "local",
    ) -> None:
        """Overwrite the given fields, keeping the state invariants."""
        if limit is not None and limit > 0:
            self.limit = limit
        if remaining is not None:
            self.remaining = max(0, remaining)
        if reset_at is not None:
            self.reset_at = max(reset_at, now)
        self.updated_at = now
        self.source = source

    def is_server_blocked(self, now: float) -> bool:
        """True while the server has reported no capacity until reset_at."""
        return self.source == "server" and self.remaining == 0 and now < self.reset_at

    def to_dict(self, now: float) -> dict:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at,
            "is_limited": self.remaining == 0 and now < self.reset_at,
            "source": self.source,
        }


@dataclass
class Reservation:
    """Capacity taken by one admission; handed back on cancellation."""
    strategy: Any
    member: Optional[str] = None


@dataclass
class AdmitResult:
    """Result of an admission check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    reservation: Optional[Reservation] = None

    def retry_after(self, now: float) -> float:
        return max(0.0, self.reset_at - now)
