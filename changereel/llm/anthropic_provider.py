"""Anthropic Claude provider implementation."""

import asyncio

import anthropic
from anthropic import Anthropic

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

# Claude pricing (USD per 1M tokens)
CLAUDE_INPUT_COST_PER_1M = 3.0
CLAUDE_OUTPUT_COST_PER_1M = 15.0


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude provider for change summaries."""

    def __init__(self, model: str, api_key: str, rate_limiter: RateLimiter, max_tokens: int = 1500):
        super().__init__(model, api_key, rate_limiter, max_tokens)
        self.client = Anthropic(api_key=api_key, timeout=60.0)
        self.provider_name = "anthropic"

    async def _complete(self, system: str, prompt: str, max_tokens: int) -> Completion:
        try:
            result = await self._call_claude(system, prompt, max_tokens)
        except anthropic.APITimeoutError as e:
            raise LLMTimeoutError(f"Claude request timed out: {e}") from e
        except anthropic.APIConnectionError as e:
            raise ServiceUnavailableError(f"Claude connection failed: {e}") from e
        except anthropic.RateLimitError as e:
            logger.error(f"Claude rate limit exceeded: {e}")
            retry_after = e.response.headers.get("retry-after") if e.response else None
            raise RateLimitError(
                f"Claude rate limit exceeded: {e}",
                retry_after=float(retry_after) if retry_after else None,
            ) from e
        except anthropic.AuthenticationError as e:
            raise AuthenticationError(f"Claude rejected the API key: {e}", status_code=401) from e
        except anthropic.BadRequestError as e:
            if "prompt is too long" in str(e).lower() or "token" in str(e).lower():
                raise ContextLengthError(f"Claude context length exceeded: {e}") from e
            raise APIError(f"Claude rejected the request: {e}", status_code=400) from e
        except anthropic.APIStatusError as e:
            logger.error(f"Claude API error: {e}")
            if e.status_code == 402:
                raise QuotaExceededError(f"Claude quota exceeded: {e}") from e
            if e.status_code >= 500:
                raise ServiceUnavailableError(
                    f"Claude service unavailable: {e}", status_code=e.status_code
                ) from e
            raise APIError(f"Claude API error: {e}", status_code=e.status_code) from e
        except LLMProviderError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in Claude provider: {e}", exc_info=True)
            raise APIError(f"Unexpected error: {e}") from e

        text = "".join(
            block.text for block in result.content if getattr(block, "type", "") == "text"
        )
        return Completion(
            text=text,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            finish_reason="length" if result.stop_reason == "max_tokens" else result.stop_reason,
        )

    async def _call_claude(self, system: str, prompt: str, max_tokens: int):
        """Run the blocking SDK call in the default executor."""

        def _sync_call():
            return self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _sync_call)

    def get_cost_estimate(self, input_tokens: int, output_tokens: int) -> float:
        input_cost = (input_tokens / 1_000_000) * CLAUDE_INPUT_COST_PER_1M
        output_cost = (output_tokens / 1_000_000) * CLAUDE_OUTPUT_COST_PER_1M
        return input_cost + output_cost
