"""Diff summarisation on top of an LLM provider."""

import asyncio
import re
import time
from typing import List, Optional

from pydantic import BaseModel, Field

from changereel.core.errors import NonRetryableError
from changereel.core.logging import get_logger
from changereel.github.diff_parser import (
    CleanDiffOptions,
    clean_diff,
    parse_unified_diff,
    render_unified_diff,
)
from changereel.github.noise_filter import FilterPresets, NoiseFilter, NoiseFilterConfig
from changereel.llm.base import BaseLLMProvider
from changereel.llm.models import SummaryContext, SummaryMetadata, SummaryResult

logger = get_logger(__name__)

DIFF_MARKERS = ("@@", "+++", "---", "diff --git")
HEADER_PREFIXES = ("diff --git", "@@", "+++", "---", "index ")
TRUNCATION_NOTICE = "... (diff truncated for length)"


class SummarizationConfig(BaseModel):
    """Preprocessing knobs applied before a diff reaches the model."""

    max_diff_length: int = Field(default=8000, gt=0)
    exclude_patterns: List[str] = Field(
        default_factory=lambda: [
            "package-lock.json",
            "yarn.lock",
            "pnpm-lock.yaml",
            ".lock",
            "dist/",
            "build/",
            "node_modules/",
            ".git/",
            "coverage/",
            "__pycache__/",
            ".DS_Store",
            "Thumbs.db",
        ]
    )
    custom_context: str = (
        "Focus on functional changes that would be relevant to users and developers."
    )
    noise_filter: NoiseFilterConfig = Field(default_factory=FilterPresets.for_summary)
    clean_options: CleanDiffOptions = Field(
        default_factory=lambda: CleanDiffOptions(max_context_lines=50)
    )


class SummarizationService:
    """Validates, filters and truncates diffs, then asks the provider for a summary."""

    def __init__(self, provider: BaseLLMProvider, config: Optional[SummarizationConfig] = None):
        self.provider = provider
        self.config = config or SummarizationConfig()

    def update_config(self, **changes) -> None:
        self.config = self.config.model_copy(update=changes)

    async def process_diff(
        self, diff: str, context: Optional[SummaryContext] = None
    ) -> SummaryResult:
        """
        Summarise one diff and classify its change type.

        Raises:
            NonRetryableError: If the diff is not usable
            LLMProviderError / CapacityError: Propagated from the provider
        """
        start_time = time.time()
        if not self.validate_diff(diff):
            raise NonRetryableError("Invalid diff content provided")

        processed = self.preprocess_diff(diff)
        context = context or SummaryContext()
        if not context.custom_context:
            context = context.model_copy(update={"custom_context": self.config.custom_context})

        completion = await self.provider.generate_summary(processed, context)
        summary = completion.text
        change_type = await self.provider.detect_change_type(processed, summary)

        result = SummaryResult(
            summary=summary,
            change_type=change_type,
            confidence=self.calculate_confidence(processed, summary),
            metadata=SummaryMetadata(
                diff_length=len(processed),
                processing_time_ms=int((time.time() - start_time) * 1000),
                tokens_used=completion.total_tokens,
            ),
        )
        logger.info(
            "Diff summarised",
            change_type=change_type.value,
            confidence=result.confidence,
            diff_length=len(processed),
            tokens_used=completion.total_tokens,
        )
        return result

    async def process_multiple_diffs(
        self, diffs: List[str], context: Optional[SummaryContext] = None
    ) -> List[SummaryResult]:
        """Summarise diffs one at a time, pausing briefly between calls."""
        results = []
        for index, diff in enumerate(diffs):
            if index:
                await asyncio.sleep(0.1)
            results.append(await self.process_diff(diff, context))
        return results

    @staticmethod
    def validate_diff(diff: str) -> bool:
        if not diff or not isinstance(diff, str):
            return False
        trimmed = diff.strip()
        if len(trimmed) < 10:
            return False
        return any(marker in trimmed for marker in DIFF_MARKERS)

    def preprocess_diff(self, diff: str) -> str:
        """
        Prepare diff text for the model.

        Parsed diffs go through the noise filter and then clean_diff. Text the
        parser cannot structure, or a diff the filter empties completely, falls
        back to line-based pattern exclusion. The result is truncated to
        max_diff_length.
        """
        text = diff.strip()
        files = parse_unified_diff(text)
        if files:
            filtered = NoiseFilter(self.config.noise_filter).filter(files)
            cleaned = clean_diff(filtered.files, self.config.clean_options)
            rendered = render_unified_diff(cleaned)
            if rendered.strip():
                text = rendered
            else:
                text = self._exclude_noise_files(text)
                logger.debug(
                    "Noise filter removed every file, using pattern exclusion",
                    removed=filtered.stats.removed_files,
                )
        else:
            text = self._exclude_noise_files(text)

        if len(text) > self.config.max_diff_length:
            text = self._truncate(text, self.config.max_diff_length)
        return text

    def _exclude_noise_files(self, diff: str) -> str:
        patterns = [
            re.compile(re.escape(p).replace(r"\*", ".*")) for p in self.config.exclude_patterns
        ]
        kept = []
        skipping = False
        for line in diff.split("\n"):
            if line.startswith("diff --git"):
                skipping = any(p.search(line) for p in patterns)
            if not skipping:
                kept.append(line)
        return "\n".join(kept)

    @staticmethod
    def _truncate(diff: str, max_length: int) -> str:
        """Keep every header line, then fill with content lines up to max_length."""
        lines = diff.split("\n")
        important = [line for line in lines if line.startswith(HEADER_PREFIXES)]
        regular = [line for line in lines if not line.startswith(HEADER_PREFIXES)]

        result = "\n".join(important)
        for line in regular:
            if len(result) + 1 + len(line) > max_length:
                result += "\n" + TRUNCATION_NOTICE
                break
            result += "\n" + line
        return result

    @staticmethod
    def calculate_confidence(diff: str, summary: str) -> float:
        confidence = 0.5
        if len(diff) > 500:
            confidence += 0.2
        if len(diff) > 2000:
            confidence += 0.1
        if "@@" in diff and "+++" in diff and "---" in diff:
            confidence += 0.2
        if len(summary) < 20 or len(summary) > 200:
            confidence -= 0.1
        return round(max(0.0, min(1.0, confidence)), 2)
