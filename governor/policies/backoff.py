"""Exponential backoff with jitter and retry eligibility.

This module provides a configurable backoff policy and a decorator that
retries transient failures using it.
"""

import asyncio
import functools
import random
import socket
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

from governor.core.logging import get_logger
from governor.exceptions import (
    CallCancelledError,
    MaxRetriesExceededError,
    RemoteError,
    TransportError,
)

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

RETRYABLE_STATUSES = frozenset({408, 429})


def is_retryable_status(status: int) -> bool:
    """Status >= 500, 408 and 429 are transient; every other status is terminal."""
    return status >= 500 or status in RETRYABLE_STATUSES


@dataclass
class BackoffPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Delay before the first retry in seconds (default: 1.0)
        max_delay: Upper bound for any delay in seconds (default: 30.0)
        exponential_base: Base for exponential calculation (default: 2.0)
        jitter: Scale each delay by a uniform factor in [0.5, 1.0]
        rng: Random source used for jitter; inject a seeded one for
            reproducible delays
        retryable_exceptions: Exception types that are always retryable

    Example:
        >>> policy = BackoffPolicy(base_delay=1.0, jitter=False)
        >>> policy.calculate_delay(attempt=2)
        4.0
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)
    retryable_exceptions: Tuple[Type[BaseException], ...] = (
        TransportError,
        httpx.TimeoutException,
        httpx.NetworkError,
        asyncio.TimeoutError,
        ConnectionError,
        socket.gaierror,
    )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt.

        delay = min(base_delay * (exponential_base ^ attempt), max_delay),
        then scaled by a jitter factor in [0.5, 1.0] when jitter is enabled.

        Args:
            attempt: The retry attempt number (0-indexed)

        Returns:
            Delay in seconds, never above max_delay
        """
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay *= self.rng.uniform(0.5, 1.0)
        return delay

    def is_retryable(self, exception: BaseException) -> bool:
        """Check if an exception should trigger a retry.

        Cancellation is never retryable. Error statuses are retryable only
        for 5xx, 408 and 429.
        """
        if isinstance(exception, (CallCancelledError, asyncio.CancelledError)):
            return False
        if isinstance(exception, RemoteError):
            return is_retryable_status(exception.status)
        if isinstance(exception, httpx.HTTPStatusError):
            return is_retryable_status(exception.response.status_code)
        return isinstance(exception, self.retryable_exceptions)

    async def execute(self, func: Callable[[], Awaitable[Any]], name: Optional[str] = None) -> Any:
        """Run ``func`` with retries, sleeping between attempts.

        Raises:
            MaxRetriesExceededError: If every attempt failed with a retryable error
            Exception: The first non-retryable error, unchanged
        """
        name = name or getattr(func, "__name__", "call")
        for attempt in range(self.max_retries + 1):
            try:
                return await func()
            except Exception as e:
                if not self.is_retryable(e):
                    logger.debug(
                        f"Non-retryable exception in {name}: {type(e).__name__}: {e}"
                    )
                    raise

                if attempt >= self.max_retries:
                    logger.warning(
                        f"Max retries ({self.max_retries}) exceeded for {name}: "
                        f"{type(e).__name__}: {e}"
                    )
                    raise MaxRetriesExceededError(e, attempt + 1) from e

                delay = self.calculate_delay(attempt)
                logger.warning(
                    f"Retry {attempt + 1}/{self.max_retries} for {name} "
                    f"after {type(e).__name__}: {e}. Waiting {delay:.2f}s..."
                )
                await asyncio.sleep(delay)


def with_retry(policy: Optional[BackoffPolicy] = None) -> Callable[[F], F]:
    """Decorator that adds retry logic with exponential backoff.

    Args:
        policy: BackoffPolicy configuration. Uses defaults if not provided.

    Returns:
        Decorated function with retry logic

    Example:
        >>> @with_retry(policy=BackoffPolicy(max_retries=3))
        ... async def fetch_invoice(client, invoice_id):
        ...     return await client.get(f"/invoices/{invoice_id}")
    """
    retry_policy = policy or BackoffPolicy()

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await retry_policy.execute(
                lambda: func(*args, **kwargs), name=func.__name__
            )

        return wrapper  # type: ignore

    return decorator
