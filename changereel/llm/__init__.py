"""LLM provider abstraction for change summaries."""

from changereel.llm.base import BaseLLMProvider
from changereel.llm.errors import (
    AuthenticationError,
    ContextLengthError,
    InvalidResponseError,
    LLMProviderError,
    OutputTokenLimitError,
    QuotaExceededError,
    RateLimitError,
    ServiceUnavailableError,
)
from changereel.llm.factory import create_llm_provider
from changereel.llm.models import ChangeType, Completion, SummaryContext, SummaryResult
from changereel.llm.rate_limiter import RateLimitCategory, RateLimiter
from changereel.llm.summarization import SummarizationService

__all__ = [
    "AuthenticationError",
    "BaseLLMProvider",
    "ChangeType",
    "Completion",
    "ContextLengthError",
    "InvalidResponseError",
    "LLMProviderError",
    "OutputTokenLimitError",
    "QuotaExceededError",
    "RateLimitCategory",
    "RateLimitError",
    "RateLimiter",
    "ServiceUnavailableError",
    "SummarizationService",
    "SummaryContext",
    "SummaryResult",
    "create_llm_provider",
]
