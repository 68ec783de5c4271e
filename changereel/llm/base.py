"""Base abstract class for LLM providers."""

import time
from abc import ABC, abstractmethod
from typing import Optional

from changereel.core.errors import CapacityError
from changereel.core.logging import get_logger
from changereel.llm.errors import InvalidResponseError, OutputTokenLimitError
from changereel.llm.models import ChangeType, Completion, SummaryContext
from changereel.llm.rate_limiter import RateLimitCategory, RateLimiter, estimate_tokens

logger = get_logger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are a changelog assistant that creates concise, clear summaries of code changes."
)
CHANGE_TYPE_SYSTEM_PROMPT = (
    "You are a code change categorization assistant. "
    "Respond with only one word: feature, fix, refactor, or chore."
)
CHANGE_TYPE_MAX_TOKENS = 10


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Subclasses implement a single ``_complete`` call; this class owns prompt
    building, rate limiting and response validation.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        rate_limiter: RateLimiter,
        max_tokens: int = 1500,
    ):
        """
        Initialize LLM provider.

        Args:
            model: Model identifier
            api_key: API key for the provider
            rate_limiter: Limiter consulted before every call
            max_tokens: Output token budget for summaries
        """
        self.model = model
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.max_tokens = max_tokens
        self.provider_name = self.__class__.__name__.replace("Provider", "").lower()

    @abstractmethod
    async def _complete(self, system: str, prompt: str, max_tokens: int) -> Completion:
        """
        Send one chat completion.

        Raises:
            LLMProviderError: Mapped provider failure
        """
        pass

    @abstractmethod
    def get_cost_estimate(self, input_tokens: int, output_tokens: int) -> float:
        """
        Calculate estimated cost for token usage.

        Args:
            input_tokens: Number of input tokens
            output_tokens: Number of output tokens

        Returns:
            Estimated cost in USD
        """
        pass

    async def generate_summary(
        self, diff_text: str, context: Optional[SummaryContext] = None
    ) -> Completion:
        """
        Summarise a diff in plain English.

        Returns:
            Completion whose text is the stripped summary

        Raises:
            CapacityError: If the local rate limiter rejects the call
            RequestTooLargeError: If the prompt can never fit the token bucket
            OutputTokenLimitError: If the model returned no text
            LLMProviderError: For provider failures
        """
        prompt = self.build_summary_prompt(diff_text, context)
        self._admit(RateLimitCategory.SUMMARIZATION, prompt, self.max_tokens)

        logger.info(
            f"Calling {self.provider_name} with model {self.model}, "
            f"diff length: {len(diff_text)} chars"
        )
        completion, execution_time = await self._time_execution(
            self._complete(SUMMARY_SYSTEM_PROMPT, prompt, self.max_tokens)
        )
        cost = self.get_cost_estimate(completion.input_tokens, completion.output_tokens)
        logger.info(
            f"{self.provider_name} summary completed: {completion.total_tokens} tokens, "
            f"cost: ${cost:.4f}, time: {execution_time:.2f}s",
            finish_reason=completion.finish_reason,
        )

        summary = completion.text.strip()
        if not summary:
            raise OutputTokenLimitError(
                "No summary generated from model response. "
                f"finish_reason={completion.finish_reason or 'unknown'}; "
                f"completion_tokens={completion.output_tokens}; max_tokens={self.max_tokens}",
                details={
                    "finish_reason": completion.finish_reason,
                    "completion_tokens": completion.output_tokens,
                    "max_tokens": self.max_tokens,
                    "model": self.model,
                },
            )
        return completion.model_copy(update={"text": summary})

    async def detect_change_type(self, diff_text: str, summary: str) -> ChangeType:
        """
        Classify a change as feature, fix, refactor or chore.

        Raises:
            InvalidResponseError: If the model answers with anything else
        """
        prompt = self.build_change_type_prompt(diff_text, summary)
        self._admit(RateLimitCategory.CHANGE_DETECTION, prompt, CHANGE_TYPE_MAX_TOKENS)

        completion = await self._complete(
            CHANGE_TYPE_SYSTEM_PROMPT, prompt, CHANGE_TYPE_MAX_TOKENS
        )
        answer = completion.text.strip().lower().rstrip(".")
        try:
            return ChangeType(answer)
        except ValueError:
            raise InvalidResponseError(
                f'Invalid change type returned by model: "{answer}". '
                "Expected one of: feature, fix, refactor, chore",
                raw_response=completion.text,
            ) from None

    def build_summary_prompt(
        self, diff_text: str, context: Optional[SummaryContext] = None
    ) -> str:
        prompt_parts = [
            "Summarize the following code changes for a non-technical audience.",
            "Focus on user-facing or functional impact and keep it to one short paragraph.",
            "",
        ]
        if context:
            metadata = [
                f"{label}: {value}"
                for label, value in (
                    ("Repository", context.repository),
                    ("Branch", context.branch),
                    ("Author", context.author),
                    ("Commit message", context.commit_message),
                )
                if value
            ]
            if metadata:
                prompt_parts.extend(["Metadata:", *metadata, ""])
            if context.custom_context:
                prompt_parts.extend([context.custom_context, ""])

        prompt_parts.extend(["Diff:", "```diff", diff_text, "```"])
        return "\n".join(prompt_parts)

    def build_change_type_prompt(self, diff_text: str, summary: str) -> str:
        return "\n".join(
            [
                "Classify this change as feature, fix, refactor, or chore.",
                "",
                f"Summary: {summary}",
                "",
                "Diff:",
                diff_text,
            ]
        )

    def _admit(self, category: RateLimitCategory, prompt: str, max_output_tokens: int) -> None:
        tokens = estimate_tokens(prompt, max_output_tokens)
        result = self.rate_limiter.check_rate_limit(category, tokens)
        if not result.allowed:
            logger.warning(
                "Local rate limit reached",
                category=category.value,
                estimated_tokens=tokens,
                retry_after_ms=result.retry_after_ms,
            )
            raise CapacityError(
                f"Rate limit exceeded for {category.value}",
                retry_after_ms=result.retry_after_ms or 1000,
                details={"category": category.value, "estimated_tokens": tokens},
            )

    async def _time_execution(self, coro):
        """
        Execute a coroutine and measure execution time.

        Args:
            coro: Coroutine to execute

        Returns:
            Tuple of (result, execution_time_in_seconds)
        """
        start_time = time.time()
        result = await coro
        execution_time = time.time() - start_time
        return result, execution_time
