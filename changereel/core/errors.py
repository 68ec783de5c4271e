"""Error taxonomy shared by services, handlers and the scheduler."""

from typing import Any, Optional


class ChangeReelError(Exception):
    """Base exception for pipeline errors."""

    retryable: bool = True

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class JobValidationError(ChangeReelError, ValueError):
    """Raised when job data does not match the shape its type requires."""

    retryable = False


class NonRetryableError(ChangeReelError):
    """Raised for failures that retrying cannot fix."""

    retryable = False


class TransientExternalError(ChangeReelError):
    """Raised for network, 5xx and rate-limit failures from external APIs."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.retry_after = retry_after


class NotFoundError(TransientExternalError):
    """Raised when the source-control API reports a missing resource."""

    retryable = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, status_code=404, details=details)


class AuthError(ChangeReelError):
    """Raised when a credential is invalid or expired."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class CapacityError(ChangeReelError):
    """Raised when a local limiter is at capacity; wait and retry the same request."""

    def __init__(
        self,
        message: str,
        retry_after_ms: int,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.retry_after_ms = retry_after_ms


class RequestTooLargeError(NonRetryableError):
    """Raised when a request needs more tokens than a limiter bucket can ever hold."""

    pass


class RateLimitConfigError(ValueError):
    """Raised when a rate limit category is not configured."""

    pass
