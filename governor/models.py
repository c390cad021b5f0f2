"""Calls, per-key options and retry bookkeeping."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from governor.core.config import Settings, settings
from governor.policies.backoff import BackoffPolicy
from governor.transport.base import TransportRequest


class GovernorOptions(BaseModel):
    """Per-key governor options. Durations are in seconds.

    Defaults mirror the documented ones: 100 calls per 60s window, 3 retries
    from 1s up to 30s with jitter, and a breaker that opens after 5
    consecutive failures for 60s.
    """

    model_config = ConfigDict(frozen=True)

    limit: int = Field(default=100, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    strategy: Literal["sliding_window", "header"] = "sliding_window"
    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=30.0, gt=0)
    exponential_base: float = Field(default=2.0, ge=1)
    jitter_enabled: bool = True
    request_timeout: float = Field(default=30.0, gt=0)
    queue_enabled: bool = True
    max_queue_size: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "GovernorOptions":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must not be smaller than base_delay")
        return self

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "GovernorOptions":
        """Build options from the environment-backed settings."""
        s = source or settings
        return cls(
            limit=s.rate_limit,
            window_seconds=s.window_seconds,
            strategy=s.strategy,
            failure_threshold=s.failure_threshold,
            recovery_timeout=s.recovery_timeout,
            max_retries=s.max_retries,
            base_delay=s.base_delay,
            max_delay=s.max_delay,
            exponential_base=s.exponential_base,
            jitter_enabled=s.jitter,
            request_timeout=s.request_timeout,
            queue_enabled=s.queue_enabled,
            max_queue_size=s.max_queue_size,
        )

    def backoff_policy(self, rng=None) -> BackoffPolicy:
        policy = BackoffPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
            jitter=self.jitter_enabled,
        )
        if rng is not None:
            policy.rng = rng
        return policy


@dataclass
class Call:
    """One unit of outbound work.

    Exactly one of ``request`` (sent through the governor's transport) or
    ``func`` (an async callable) must be given.

    Attributes:
        request: Request to send through the injected transport
        func: Async callable producing the result
        cancel_event: Setting this event aborts the call wherever it is
        timeout: Per-attempt timeout in seconds; defaults to the key's
            request_timeout
        enqueued_at: Set by the governor when the call is submitted
    """
    request: Optional[TransportRequest] = None
    func: Optional[Callable[[], Awaitable[Any]]] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    timeout: Optional[float] = None
    enqueued_at: Optional[float] = None

    def __post_init__(self) -> None:
        if (self.request is None) == (self.func is None):
            raise ValueError("Call needs exactly one of 'request' or 'func'")

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()


@dataclass
class RetryContext:
    """Attempt bookkeeping for one call; discarded when the call resolves."""
    attempts: int = 0
    last_error: Optional[BaseException] = field(default=None)

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)
