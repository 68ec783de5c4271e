"""OpenAI GPT provider implementation."""

import asyncio

import openai
from openai import OpenAI

from changereel.core.logging import get_logger
from changereel.llm.base import BaseLLMProvider
from changereel.llm.errors import (
    APIError,
    AuthenticationError,
    ContextLengthError,
    LLMProviderError,
    LLMTimeoutError,
    QuotaExceededError,
    RateLimitError,
    ServiceUnavailableError,
)
from changereel.llm.models import Completion
from changereel.llm.rate_limiter import RateLimiter

logger = get_logger(__name__)

# USD per 1M tokens (check https://openai.com/pricing)
OPENAI_PRICING = {
    "gpt-4o": {"input": 2.50, "output": 10.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4-turbo": {"input": 10.0, "output": 30.0},
    "gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
}


class OpenAIProvider(BaseLLMProvider):
    """OpenAI GPT provider for change summaries."""

    def __init__(self, model: str, api_key: str, rate_limiter: RateLimiter, max_tokens: int = 1500):
        """
        Initialize OpenAI provider.

        Args:
            model: Model identifier (e.g., "gpt-4o-mini")
            api_key: OpenAI API key
            rate_limiter: Limiter consulted before every call
            max_tokens: Output token budget for summaries
        """
        super().__init__(model, api_key, rate_limiter, max_tokens)
        self.client = OpenAI(api_key=api_key, timeout=60.0)
        self.provider_name = "openai"

    async def _complete(self, system: str, prompt: str, max_tokens: int) -> Completion:
        try:
            result = await self._call_openai(system, prompt, max_tokens)
        except openai.APITimeoutError as e:
            raise LLMTimeoutError(f"OpenAI request timed out: {e}") from e
        except openai.APIConnectionError as e:
            raise ServiceUnavailableError(f"OpenAI connection failed: {e}") from e
        except openai.RateLimitError as e:
            logger.error(f"OpenAI rate limit exceeded: {e}")
            if "quota" in str(e).lower():
                raise QuotaExceededError(f"OpenAI quota exceeded: {e}") from e
            retry_after = e.response.headers.get("retry-after") if e.response else None
            raise RateLimitError(
                f"OpenAI rate limit exceeded: {e}",
                retry_after=float(retry_after) if retry_after else None,
            ) from e
        except openai.AuthenticationError as e:
            raise AuthenticationError(f"OpenAI rejected the API key: {e}", status_code=401) from e
        except openai.BadRequestError as e:
            message = str(e).lower()
            if "context_length" in message or "maximum context" in message or "token" in message:
                raise ContextLengthError(f"OpenAI context length exceeded: {e}") from e
            raise APIError(f"OpenAI rejected the request: {e}", status_code=400) from e
        except openai.APIStatusError as e:
            logger.error(f"OpenAI API error: {e}")
            if e.status_code >= 500:
                raise ServiceUnavailableError(
                    f"OpenAI service unavailable: {e}", status_code=e.status_code
                ) from e
            raise APIError(f"OpenAI API error: {e}", status_code=e.status_code) from e
        except LLMProviderError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in OpenAI provider: {e}", exc_info=True)
            raise APIError(f"Unexpected error: {e}") from e

        choice = result.choices[0] if result.choices else None
        usage = result.usage
        return Completion(
            text=(choice.message.content or "") if choice else "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason if choice else None,
        )

    async def _call_openai(self, system: str, prompt: str, max_tokens: int):
        """Run the blocking SDK call in the default executor."""

        def _sync_call():
            return self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                max_completion_tokens=max_tokens,
            )

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _sync_call)

    def get_cost_estimate(self, input_tokens: int, output_tokens: int) -> float:
        pricing = OPENAI_PRICING.get(self.model, OPENAI_PRICING["gpt-4o"])
        input_cost = (input_tokens / 1_000_000) * pricing["input"]
        output_cost = (output_tokens / 1_000_000) * pricing["output"]
        return input_cost + output_cost
