"""Parsing of server-reported rate-limit headers.

Recognized headers (case-insensitive):

- ``x-ratelimit-remaining``: integer capacity left
- ``x-ratelimit-limit``: integer window capacity
- ``x-ratelimit-reset``: epoch seconds, epoch milliseconds, delta seconds
  or an ISO 8601 / HTTP date
- ``retry-after``: delta seconds or an HTTP date
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Mapping, Optional

from governor.core.logging import get_logger

logger = get_logger(__name__)

REMAINING_HEADER = "x-ratelimit-remaining"
LIMIT_HEADER = "x-ratelimit-limit"
RESET_HEADER = "x-ratelimit-reset"
RETRY_AFTER_HEADER = "retry-after"

# Numeric reset values below this are deltas, above EPOCH_MS_THRESHOLD are milliseconds.
DELTA_THRESHOLD = 1_000_000_000
EPOCH_MS_THRESHOLD = 1_000_000_000_000


@dataclass
class RateLimitHeaders:
    remaining: Optional[int] = None
    limit: Optional[int] = None
    reset_at: Optional[float] = None
    retry_after: Optional[float] = None

    @property
    def empty(self) -> bool:
        return self.remaining is None and self.limit is None and self.reset_at is None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value.strip()))
    except ValueError:
        logger.debug(f"Ignoring malformed rate-limit header value: {value!r}")
        return None


def _parse_date(value: str) -> Optional[float]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def parse_reset(value: Optional[str], now: float) -> Optional[float]:
    """Parse an ``x-ratelimit-reset`` value into epoch seconds."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        number = float(value)
    except ValueError:
        reset_at = _parse_date(value)
        if reset_at is None:
            logger.debug(f"Ignoring malformed reset header: {value!r}")
        return reset_at
    if number >= EPOCH_MS_THRESHOLD:
        return number / 1000.0
    if number < DELTA_THRESHOLD:
        return now + number
    return number


def parse_retry_after(value: Optional[str], now: float) -> Optional[float]:
    """Parse a ``retry-after`` value into a delay in seconds."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        retry_at = _parse_date(value)
        if retry_at is None:
            logger.debug(f"Ignoring malformed retry-after header: {value!r}")
            return None
        return max(0.0, retry_at - now)


def parse_rate_limit_headers(headers: Mapping[str, str], now: float) -> RateLimitHeaders:
    """Extract rate-limit information from a response's headers.

    Args:
        headers: Response headers (any mapping; lookup is case-insensitive)
        now: Current epoch seconds, used to resolve relative values

    Returns:
        RateLimitHeaders with None for every header that is absent or malformed
    """
    lowered = {str(k).lower(): str(v) for k, v in headers.items()}
    return RateLimitHeaders(
        remaining=_parse_int(lowered.get(REMAINING_HEADER)),
        limit=_parse_int(lowered.get(LIMIT_HEADER)),
        reset_at=parse_reset(lowered.get(RESET_HEADER), now),
        retry_after=parse_retry_after(lowered.get(RETRY_AFTER_HEADER), now),
    )
