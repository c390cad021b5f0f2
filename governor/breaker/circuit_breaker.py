"""Circuit breaker for a downstream target.

State machine:

- CLOSED: every call is admitted. Consecutive failures are counted; at
  ``failure_threshold`` the breaker opens for ``recovery_timeout`` seconds.
  A success resets the count.
- OPEN: calls are rejected with ``CircuitOpenError`` until
  ``next_attempt_at``, after which one probe call is admitted (HALF_OPEN).
- HALF_OPEN: exactly one probe is in flight; other callers are rejected.
  Probe success closes the breaker, probe failure re-opens it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from governor.core.clock import Clock
from governor.core.logging import get_logger, get_log_context
from governor.exceptions import CircuitOpenError

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitStats:
    """Cumulative counters, reported for observability only."""
    total_requests: int = 0
    total_failures: int = 0
    total_successes: int = 0
    total_rejections: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return round(self.total_successes / self.total_requests, 4)


class CircuitBreaker:
    """Tracks the health of one target and decides whether to admit attempts.

    Callers serialize access per key; the breaker holds no lock of its own.
    """

    def __init__(
        self,
        key: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Optional[Clock] = None,
    ):
        """Initialize the circuit breaker.

        Args:
            key: Name of the protected target, used in errors and logs
            failure_threshold: Consecutive failures that open the circuit
            recovery_timeout: Seconds to stay OPEN before probing
            clock: Time source
        """
        self.key = key
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock or Clock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at: Optional[float] = None
        self.next_attempt_at: Optional[float] = None
        self.stats = CircuitStats()
        self._probe_in_flight = False

    def configure(self, failure_threshold: int, recovery_timeout: float) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

    def is_open(self) -> bool:
        """True if an attempt made now would be rejected."""
        if self.state == CircuitState.OPEN:
            return self.clock.now() < (self.next_attempt_at or 0.0)
        if self.state == CircuitState.HALF_OPEN:
            return self._probe_in_flight
        return False

    def _reject(self) -> CircuitOpenError:
        self.stats.total_requests += 1
        self.stats.total_rejections += 1
        return CircuitOpenError(self.key, self.next_attempt_at)

    def check(self) -> None:
        """Fast-fail if the circuit is open, without admitting anything.

        Raises:
            CircuitOpenError: If an attempt made now would be rejected
        """
        if self.is_open():
            raise self._reject()

    def acquire(self) -> None:
        """Admit one attempt, moving OPEN to HALF_OPEN once recovery is due.

        Raises:
            CircuitOpenError: If the attempt is rejected
        """
        if self.state == CircuitState.OPEN:
            if self.clock.now() < (self.next_attempt_at or 0.0):
                raise self._reject()
            self.state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
            logger.info(
                f"Circuit '{self.key}' HALF_OPEN, admitting probe",
                extra=get_log_context(key=self.key, circuit_state=self.state.value),
            )

        if self.state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise self._reject()
            self._probe_in_flight = True

        self.stats.total_requests += 1

    def release(self) -> None:
        """Give back an admitted attempt that never reached the target.

        Counts as neither success nor failure. A released probe lets the
        next caller probe instead.
        """
        self.stats.total_requests = max(0, self.stats.total_requests - 1)
        if self.state == CircuitState.HALF_OPEN:
            self._probe_in_flight = False

    def record_success(self) -> None:
        self.stats.total_successes += 1
        if self.state == CircuitState.HALF_OPEN:
            self._close()
        elif self.state == CircuitState.CLOSED:
            self.failure_count = 0

    def record_failure(self) -> bool:
        """Record a failed attempt.

        Returns:
            True if this failure opened the circuit
        """
        now = self.clock.now()
        self.stats.total_failures += 1
        self.failure_count += 1
        self.last_failure_at = now

        if self.state == CircuitState.HALF_OPEN:
            self._open(now)
            return True
        if self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._open(now)
            return True
        return False

    def _open(self, now: float) -> None:
        self.state = CircuitState.OPEN
        self.next_attempt_at = now + self.recovery_timeout
        self._probe_in_flight = False
        logger.warning(
            f"Circuit '{self.key}' OPEN after {self.failure_count} consecutive failures; "
            f"next attempt in {self.recovery_timeout:.2f}s",
            extra=get_log_context(key=self.key, circuit_state=self.state.value),
        )

    def _close(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.next_attempt_at = None
        self._probe_in_flight = False
        logger.info(
            f"Circuit '{self.key}' CLOSED",
            extra=get_log_context(key=self.key, circuit_state=self.state.value),
        )

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_rate": self.stats.success_rate,
            "total_requests": self.stats.total_requests,
            "total_failures": self.stats.total_failures,
            "total_successes": self.stats.total_successes,
            "total_rejections": self.stats.total_rejections,
            "last_failure_at": self.last_failure_at,
            "next_attempt_at": self.next_attempt_at,
        }
