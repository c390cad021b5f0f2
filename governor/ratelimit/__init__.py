"""Rate windows for outbound calls.

Tracks remaining capacity per key, either by local sliding-window counting
(in-process or shared through Redis) or from server-reported headers.
"""

from governor.ratelimit.headers import RateLimitHeaders, parse_rate_limit_headers
from governor.ratelimit.models import UNKNOWN, AdmitResult, RateWindowState, Reservation
from governor.ratelimit.strategies import (
    HeaderDrivenStrategy,
    RateWindowStrategy,
    RedisSlidingWindowStrategy,
    SlidingWindowStrategy,
)
from governor.ratelimit.window import RateWindow, build_strategy

__all__ = [
    # Models
    "UNKNOWN",
    "AdmitResult",
    "RateWindowState",
    "Reservation",
    "RateLimitHeaders",
    "parse_rate_limit_headers",
    # Strategies
    "RateWindowStrategy",
    "SlidingWindowStrategy",
    "RedisSlidingWindowStrategy",
    "HeaderDrivenStrategy",
    # Window
    "RateWindow",
    "build_strategy",
]
