"""Per-key rate window.

Wraps an admission strategy with the key's ``RateWindowState`` and applies
server feedback. A server's explicit back-off (``remaining=0`` until a
reset, or a 429 ``retry-after``) overrides whatever the local strategy
would decide.
"""

from typing import Any, Mapping, Optional

from governor.core.clock import Clock
from governor.core.logging import get_logger, get_log_context
from governor.ratelimit.headers import RateLimitHeaders, parse_rate_limit_headers
from governor.ratelimit.models import AdmitResult, RateWindowState, Reservation
from governor.ratelimit.strategies import (
    HeaderDrivenStrategy,
    RateWindowStrategy,
    RedisSlidingWindowStrategy,
    SlidingWindowStrategy,
)

logger = get_logger(__name__)


def build_strategy(
    key: str,
    strategy: str,
    limit: int,
    window_seconds: float,
    counter_store: Optional[Any] = None,
    key_prefix: str = "sliding_window",
) -> RateWindowStrategy:
    """Select the admission strategy for a key.

    Args:
        key: The rate-limit key
        strategy: 'sliding_window' or 'header'
        limit: Maximum admissions per window
        window_seconds: Window size in seconds
        counter_store: Optional Redis client; makes the sliding window shared
        key_prefix: Redis key prefix

    Returns:
        The strategy instance
    """
    if strategy == "header":
        return HeaderDrivenStrategy(limit)
    if strategy != "sliding_window":
        raise ValueError(f"Unknown rate window strategy: {strategy}")
    if counter_store is not None:
        return RedisSlidingWindowStrategy(
            counter_store, key, limit, window_seconds, key_prefix=key_prefix
        )
    return SlidingWindowStrategy(limit, window_seconds)


class RateWindow:
    """Tracks remaining capacity and reset time for one key."""

    def __init__(self, key: str, strategy: RateWindowStrategy, clock: Optional[Clock] = None):
        self.key = key
        self.strategy = strategy
        self.clock = clock or Clock()
        self.state = RateWindowState(limit=strategy.limit)

    def replace_strategy(self, strategy: RateWindowStrategy) -> None:
        self.strategy = strategy
        self.state.limit = strategy.limit

    async def admit(self) -> AdmitResult:
        """Check for capacity and, when allowed, reserve one unit of it."""
        now = self.clock.now()
        if self.state.is_server_blocked(now):
            return AdmitResult(
                allowed=False,
                limit=self.state.limit,
                remaining=0,
                reset_at=self.state.reset_at,
            )
        return await self.strategy.admit(self.state, now)

    async def release(self, reservation: Optional[Reservation]) -> None:
        """Return capacity reserved by an admission that did not run."""
        if reservation is None:
            return
        await reservation.strategy.release(self.state, reservation)

    def apply_headers(self, headers: Mapping[str, str]) -> RateLimitHeaders:
        """Overwrite the state from a response's rate-limit headers."""
        now = self.clock.now()
        parsed = parse_rate_limit_headers(headers, now)
        if not parsed.empty:
            self.state.update(
                now,
                remaining=parsed.remaining,
                limit=parsed.limit,
                reset_at=parsed.reset_at,
                source="server",
            )
        return parsed

    def apply_retry_after(self, retry_after: Optional[float], reset_at: Optional[float] = None) -> None:
        """Block the window after a 429 until the server's retry time.

        Args:
            retry_after: Seconds from the ``retry-after`` header
            reset_at: Reset time from the other headers, used when
                ``retry-after`` is absent
        """
        now = self.clock.now()
        if retry_after is not None:
            block_until = now + retry_after
        elif reset_at is not None:
            block_until = reset_at
        else:
            return
        self.state.update(now, remaining=0, reset_at=block_until, source="server")
        logger.warning(
            f"Remote rejected '{self.key}' with 429; blocked for {block_until - now:.2f}s",
            extra=get_log_context(key=self.key, delay=block_until - now),
        )

    def snapshot(self) -> dict:
        return self.state.to_dict(self.clock.now())
