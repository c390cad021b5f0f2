"""Retry policies."""

from governor.policies.backoff import (
    BackoffPolicy,
    is_retryable_status,
    with_retry,
)

__all__ = ["BackoffPolicy", "is_retryable_status", "with_retry"]
