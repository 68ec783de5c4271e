"""Custom exceptions for LLM providers."""

from changereel.core.errors import (
    AuthError,
    ChangeReelError,
    NonRetryableError,
    TransientExternalError,
)


class LLMProviderError(ChangeReelError):
    """Base exception for LLM provider errors."""

    pass


class RateLimitError(LLMProviderError, TransientExternalError):
    """Raised when LLM API rate limit is exceeded."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status_code=429, retry_after=retry_after)


class ServiceUnavailableError(LLMProviderError, TransientExternalError):
    """Raised on 5xx responses and connection failures."""

    pass


class APIError(LLMProviderError, TransientExternalError):
    """Raised when LLM API returns an unclassified error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, status_code=status_code)


class LLMTimeoutError(LLMProviderError, TransientExternalError):
    """Raised when LLM API request times out."""

    pass


class AuthenticationError(LLMProviderError, AuthError):
    """Raised when the API key is rejected."""

    pass


class QuotaExceededError(LLMProviderError, NonRetryableError):
    """Raised when LLM API quota is exhausted."""

    pass


class ContextLengthError(LLMProviderError, NonRetryableError):
    """Raised when the prompt exceeds the model's context window."""

    pass


class OutputTokenLimitError(LLMProviderError, NonRetryableError):
    """Raised when the model stops before producing any summary text."""

    pass


class InvalidResponseError(LLMProviderError):
    """Raised when LLM returns an unparseable response."""

    def __init__(self, message: str, raw_response: str | None = None):
        super().__init__(message)
        self.raw_response = raw_response
