"""Admission strategies behind the rate window.

Three interchangeable strategies share one contract, ``admit(state, now)``:

- ``SlidingWindowStrategy``: in-process sliding-window counting
- ``RedisSlidingWindowStrategy``: the same algorithm against a shared
  counter store, degrading to in-process counting when it is unavailable
- ``HeaderDrivenStrategy``: trusts server-reported headers and decrements
  optimistically between responses

Strategies are per key and are not locked: callers serialize access per key.
"""

import math
import uuid
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Optional, Tuple

import redis

from governor.core.logging import get_logger
from governor.ratelimit.models import UNKNOWN, AdmitResult, RateWindowState, Reservation
from governor.ratelimit.redis_lua import SLIDING_WINDOW_SCRIPT

logger = get_logger(__name__)

REDIS_EXCEPTIONS = (redis.RedisError, OSError)


def _unique_member(now: float) -> str:
    """Admission id; the random suffix keeps same-instant admissions distinct."""
    return f"{now:.6f}-{uuid.uuid4().hex[:12]}"


class RateWindowStrategy(ABC):
    """Abstract base class for admission strategies."""

    name: str = "abstract"

    def __init__(self, limit: int):
        self.limit = limit

    @abstractmethod
    async def admit(self, state: RateWindowState, now: float) -> AdmitResult:
        """Check, and when allowed record, one admission.

        Args:
            state: The key's rate window state, updated in place
            now: Current epoch seconds

        Returns:
            AdmitResult with the allowed flag and capacity metadata
        """
        pass

    @abstractmethod
    async def release(self, state: RateWindowState, reservation: Reservation) -> None:
        """Hand back capacity taken by an admission that never ran."""
        pass


class SlidingWindowStrategy(RateWindowStrategy):
    """In-memory sliding window over the trailing ``window_seconds``.

    The reported ``reset_at`` is ``now + window_seconds``: an upper bound,
    not the exact moment the oldest admission expires.
    """

    name = "sliding_window"

    def __init__(self, limit: int, window_seconds: float):
        super().__init__(limit)
        self.window_seconds = window_seconds
        self._entries: Deque[Tuple[float, str]] = deque()

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._entries and self._entries[0][0] <= cutoff:
            self._entries.popleft()

    def count(self, now: float) -> int:
        self._evict(now)
        return len(self._entries)

    async def admit(self, state: RateWindowState, now: float) -> AdmitResult:
        current = self.count(now)
        reset_at = now + self.window_seconds

        if current >= self.limit:
            state.update(now, remaining=0, limit=self.limit, reset_at=reset_at)
            return AdmitResult(
                allowed=False, limit=self.limit, remaining=0, reset_at=reset_at
            )

        member = _unique_member(now)
        self._entries.append((now, member))
        remaining = self.limit - current - 1
        state.update(now, remaining=remaining, limit=self.limit, reset_at=reset_at)
        return AdmitResult(
            allowed=True,
            limit=self.limit,
            remaining=remaining,
            reset_at=reset_at,
            reservation=Reservation(strategy=self, member=member),
        )

    async def release(self, state: RateWindowState, reservation: Reservation) -> None:
        for entry in self._entries:
            if entry[1] == reservation.member:
                self._entries.remove(entry)
                break
        else:
            return
        if state.remaining != UNKNOWN:
            state.remaining = min(self.limit, state.remaining + 1)


class RedisSlidingWindowStrategy(RateWindowStrategy):
    """Sliding window kept in a Redis sorted set shared across processes.

    Uses a Lua script so the whole check-and-record runs atomically.
    Any Redis failure degrades the admission to in-process counting.
    """

    name = "redis_sliding_window"

    def __init__(
        self,
        redis_client: Any,
        key: str,
        limit: int,
        window_seconds: float,
        key_prefix: str = "sliding_window",
        fallback: Optional[SlidingWindowStrategy] = None,
    ):
        """Initialize the Redis strategy.

        Args:
            redis_client: A ``redis.asyncio`` client
            key: The rate-limit key
            limit: Maximum admissions per window
            window_seconds: Window size in seconds
            key_prefix: Prefix of the Redis key (``{prefix}:{key}``)
            fallback: In-process strategy used while Redis is unavailable
        """
        super().__init__(limit)
        self._redis = redis_client
        self.window_seconds = window_seconds
        self.redis_key = f"{key_prefix}:{key}"
        self.ttl = max(1, math.ceil(window_seconds))
        self._fallback = fallback or SlidingWindowStrategy(limit, window_seconds)

    async def admit(self, state: RateWindowState, now: float) -> AdmitResult:
        member = _unique_member(now)
        try:
            result = await self._redis.eval(
                SLIDING_WINDOW_SCRIPT,
                1,  # Number of keys
                self.redis_key,  # KEYS[1]
                now,  # ARGV[1]
                self.window_seconds,  # ARGV[2]
                self.limit,  # ARGV[3]
                member,  # ARGV[4]
                self.ttl,  # ARGV[5]
            )
        except REDIS_EXCEPTIONS as e:
            logger.warning(
                f"Counter store unavailable for {self.redis_key}: {e}. "
                "Using in-process sliding window."
            )
            return await self._fallback.admit(state, now)

        allowed = bool(int(result[0]))
        count = int(result[1])
        reset_at = now + self.window_seconds
        remaining = max(0, self.limit - count)
        state.update(now, remaining=remaining, limit=self.limit, reset_at=reset_at)
        return AdmitResult(
            allowed=allowed,
            limit=self.limit,
            remaining=remaining,
            reset_at=reset_at,
            reservation=Reservation(strategy=self, member=member) if allowed else None,
        )

    async def release(self, state: RateWindowState, reservation: Reservation) -> None:
        try:
            await self._redis.zrem(self.redis_key, reservation.member)
        except REDIS_EXCEPTIONS as e:
            logger.warning(f"Failed to release admission in {self.redis_key}: {e}")
            return
        if state.remaining != UNKNOWN:
            state.remaining = min(self.limit, state.remaining + 1)


class HeaderDrivenStrategy(RateWindowStrategy):
    """Admission driven by server-reported remaining capacity.

    ``admit`` is a pure check on ``remaining`` that decrements optimistically;
    the next response overwrites the state (last write wins). Unknown
    capacity is admitted until the server reports otherwise.
    """

    name = "header"

    async def admit(self, state: RateWindowState, now: float) -> AdmitResult:
        if state.remaining == 0 and now >= state.reset_at:
            # The server's window has rolled over since it last reported.
            state.remaining = state.limit if state.limit > 0 else UNKNOWN

        if state.remaining == UNKNOWN:
            return AdmitResult(
                allowed=True,
                limit=state.limit,
                remaining=UNKNOWN,
                reset_at=state.reset_at,
                reservation=Reservation(strategy=self),
            )

        if state.remaining > 0:
            state.remaining -= 1
            return AdmitResult(
                allowed=True,
                limit=state.limit,
                remaining=state.remaining,
                reset_at=state.reset_at,
                reservation=Reservation(strategy=self),
            )

        return AdmitResult(
            allowed=False, limit=state.limit, remaining=0, reset_at=state.reset_at
        )

    async def release(self, state: RateWindowState, reservation: Reservation) -> None:
        if state.remaining != UNKNOWN:
            state.remaining = min(state.limit, state.remaining + 1)
