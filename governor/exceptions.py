"""Custom exceptions for the governor."""

from typing import Any, Optional


class GovernorError(Exception):
    """Base class for governor exceptions with an HTTP status code.

    All custom exceptions inherit from this class and define their
    specific status_code, so services that surface governor failures over
    HTTP can map them consistently.
    """
    status_code: int = 500

    def __init__(self, message: str = "Governor error"):
        self.message = message
        super().__init__(message)


class RateLimitExceeded(GovernorError):
    """Raised when no capacity is available and the call cannot be queued.

    Only surfaced when queuing is disabled or the queue is full.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        key: str,
        reset_at: Optional[float] = None,
        retry_after: Optional[float] = None,
        detail: Optional[str] = None,
    ):
        self.key = key
        self.reset_at = reset_at
        self.retry_after = retry_after
        message = detail or f"Rate limit exceeded for '{key}'."
        if retry_after is not None:
            message += f" Retry after {retry_after:.2f}s."
        super().__init__(message)


class CircuitOpenError(GovernorError):
    """Raised when the circuit for a key is open and the call is fast-failed.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, key: str, next_attempt_at: Optional[float] = None):
        self.key = key
        self.next_attempt_at = next_attempt_at
        super().__init__(f"Circuit breaker for '{key}' is OPEN")


class TransportError(GovernorError):
    """Network-level failure (connection reset, DNS failure, ...).

    Always retryable. Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502

    def __init__(self, message: str = "Transport error", cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class TransportTimeoutError(TransportError):
    """The transport call exceeded its timeout. Retryable.

    Maps to HTTP 504 Gateway Timeout.
    """
    status_code = 504


class RemoteError(GovernorError):
    """The remote answered with an error status (>= 400).

    Attributes:
        status: The remote status code
        response: The response object, when available
    """

    def __init__(self, status: int, response: Any = None, detail: Optional[str] = None):
        self.status = status
        self.status_code = status
        self.response = response
        super().__init__(detail or f"Remote returned status {status}")


class CallCancelledError(GovernorError):
    """The caller cancelled the call. Terminal, never counted as a failure.

    Maps to HTTP 499 Client Closed Request.
    """
    status_code = 499

    def __init__(self, detail: str = "Call was cancelled"):
        super().__init__(detail)


class MaxRetriesExceededError(GovernorError):
    """Retryable failures persisted through the whole retry budget.

    Attributes:
        last_error: The last error encountered
        attempts: Number of attempts made
    """

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        self.status_code = getattr(last_error, "status_code", 500)
        super().__init__(
            f"Call failed after {attempts} attempts. Last error: {last_error}"
        )


class GovernorClosedError(GovernorError):
    """The governor was closed while the call was pending."""
    status_code = 503

    def __init__(self, detail: str = "Governor is closed"):
        super().__init__(detail)
