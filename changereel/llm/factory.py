"""Factory for creating LLM provider instances."""

from typing import TYPE_CHECKING

from changereel.core.config import Settings
from changereel.core.logging import get_logger
from changereel.llm.errors import LLMProviderError
from changereel.llm.rate_limiter import RateLimiter

if TYPE_CHECKING:
    from changereel.llm.base import BaseLLMProvider

logger = get_logger(__name__)


def create_llm_provider(settings: Settings, rate_limiter: RateLimiter) -> "BaseLLMProvider":
    """
    Build the configured LLM provider.

    Args:
        settings: Application settings selecting provider, model and key
        rate_limiter: Limiter the provider consults before each call

    Returns:
        Configured LLM provider instance

    Raises:
        LLMProviderError: If provider configuration is invalid
    """
    try:
        config = settings.get_llm_config()
    except ValueError as e:
        logger.error(f"LLM provider configuration error: {e}")
        raise LLMProviderError(f"Configuration error: {e}") from e

    provider_name = config["provider"]
    model = config["model"]
    logger.info(f"Initializing LLM provider: {provider_name} with model: {model}")

    if provider_name == "openai":
        from changereel.llm.openai_provider import OpenAIProvider

        provider = OpenAIProvider(
            model=model,
            api_key=config["api_key"],
            rate_limiter=rate_limiter,
            max_tokens=settings.llm_max_tokens,
        )
    elif provider_name == "anthropic":
        from changereel.llm.anthropic_provider import AnthropicProvider

        provider = AnthropicProvider(
            model=model,
            api_key=config["api_key"],
            rate_limiter=rate_limiter,
            max_tokens=settings.llm_max_tokens,
        )
    else:
        raise LLMProviderError(f"Unknown provider: {provider_name}")

    logger.info(f"LLM provider {provider_name} initialized successfully")
    return provider
