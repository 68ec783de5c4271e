"""Policy-driven removal of low-signal diff content."""

import re
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from changereel.core.logging import get_logger
from changereel.github.diff_parser import has_extension, with_hunks
from changereel.models.diff import DiffHunk, ParsedDiffFile

logger = get_logger(__name__)


class FilterReason(str, Enum):
    BINARY = "binary"
    GENERATED = "generated"
    LARGE_FILE = "large-file"
    EXCLUDED_EXTENSION = "excluded-extension"
    EXCLUDED_PATTERN = "excluded-pattern"
    DEV_ARTIFACT = "dev-artifact"
    DEPENDENCY_FILE = "dependency-file"
    TEST_FILE = "test-file"
    DOC_FILE = "doc-file"
    CUSTOM_FILTER = "custom-filter"


def _compile(*patterns: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# Filename heuristics, one table per reason.
HEURISTIC_PATTERNS: dict[FilterReason, tuple[re.Pattern, ...]] = {
    FilterReason.DEV_ARTIFACT: _compile(
        r"\.log$",
        r"\.cache",
        r"\.tmp$",
        r"\.temp$",
        r"\.DS_Store$",
        r"Thumbs\.db$",
        r"\.env\.local$",
        r"\.env\.development$",
        r"\.env\.production$",
        r"\.swp$",
        r"\.swo$",
        r"~$",
        r"(^|/)__pycache__/",
        r"\.pyc$",
        r"(^|/)\.idea/",
        r"(^|/)\.vscode/",
    ),
    FilterReason.DEPENDENCY_FILE: _compile(
        r"(^|/)package-lock\.json$",
        r"(^|/)yarn\.lock$",
        r"(^|/)pnpm-lock\.yaml$",
        r"(^|/)composer\.lock$",
        r"(^|/)Gemfile\.lock$",
        r"(^|/)Cargo\.lock$",
        r"(^|/)poetry\.lock$",
        r"(^|/)Pipfile\.lock$",
        r"(^|/)go\.sum$",
        r"(^|/)node_modules/",
        r"(^|/)vendor/",
    ),
    FilterReason.TEST_FILE: _compile(
        r"\.test\.",
        r"\.spec\.",
        r"(^|/)__tests__/",
        r"(^|/)tests?/",
        r"(^|/)spec/",
        r"(^|/)test_[^/]*\.py$",
        r"_test\.(py|go)$",
    ),
    FilterReason.DOC_FILE: _compile(
        r"\.md$",
        r"\.mdx$",
        r"\.rst$",
        r"\.txt$",
        r"(^|/)docs?/",
        r"(^|/)README",
        r"(^|/)CHANGELOG",
        r"(^|/)LICENSE",
    ),
}

FilePredicate = Callable[[ParsedDiffFile], bool]


class NoiseFilterConfig(BaseModel):
    """
    Filter policy. The defaults remove nothing.

    ``custom_filters`` are predicates returning True for files to drop.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    remove_whitespace_changes: bool = False
    remove_binary_files: bool = False
    remove_generated_files: bool = False
    remove_dev_artifacts: bool = False
    remove_dependency_files: bool = False
    remove_test_files: bool = False
    remove_doc_files: bool = False
    max_file_size: Optional[int] = Field(default=None, ge=0, description="Max changed lines")
    max_hunk_size: Optional[int] = Field(default=None, ge=0, description="Max lines per hunk")
    min_content_ratio: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    excluded_extensions: List[str] = Field(default_factory=list)
    excluded_patterns: List[str] = Field(default_factory=list)
    custom_filters: List[FilePredicate] = Field(default_factory=list)


class RemovedFile(BaseModel):
    filename: str
    reason: FilterReason
    size: int


class FilterStats(BaseModel):
    original_files: int = 0
    filtered_files: int = 0
    removed_files: int = 0
    original_lines: int = 0
    filtered_lines: int = 0
    removed_lines: int = 0
    filter_reasons: dict[str, int] = Field(default_factory=dict)


class FilterResult(BaseModel):
    files: List[ParsedDiffFile]
    removed_files: List[RemovedFile] = Field(default_factory=list)
    stats: FilterStats = Field(default_factory=FilterStats)


class NoiseFilter:
    """
    Two-pass filter over parsed diff files.

    Pass one drops whole files using an ordered rule table where the first
    matching reason wins. Pass two trims whitespace-only changes and
    low-value hunks from the surviving files.
    """

    def __init__(self, config: Optional[NoiseFilterConfig] = None):
        self.config = config or NoiseFilterConfig()
        self._patterns = [re.compile(p) for p in self.config.excluded_patterns]
        self._rules: list[tuple[FilterReason, FilePredicate]] = self._build_rules()

    def _build_rules(self) -> list[tuple[FilterReason, FilePredicate]]:
        c = self.config
        rules: list[tuple[FilterReason, FilePredicate]] = []
        if c.remove_binary_files:
            rules.append((FilterReason.BINARY, lambda f: f.is_binary))
        if c.remove_generated_files:
            rules.append((FilterReason.GENERATED, lambda f: f.is_generated))
        if c.max_file_size is not None:
            limit = c.max_file_size
            rules.append((FilterReason.LARGE_FILE, lambda f: f.stats.changes > limit))
        if c.excluded_extensions:
            exts = list(c.excluded_extensions)
            rules.append(
                (
                    FilterReason.EXCLUDED_EXTENSION,
                    lambda f: any(has_extension(f.filename, ext) for ext in exts),
                )
            )
        if self._patterns:
            rules.append(
                (
                    FilterReason.EXCLUDED_PATTERN,
                    lambda f: any(p.search(f.filename) for p in self._patterns),
                )
            )
        for enabled, reason in (
            (c.remove_dev_artifacts, FilterReason.DEV_ARTIFACT),
            (c.remove_dependency_files, FilterReason.DEPENDENCY_FILE),
            (c.remove_test_files, FilterReason.TEST_FILE),
            (c.remove_doc_files, FilterReason.DOC_FILE),
        ):
            if enabled:
                rules.append((reason, self._heuristic(HEURISTIC_PATTERNS[reason])))
        for predicate in c.custom_filters:
            rules.append((FilterReason.CUSTOM_FILTER, self._guarded(predicate)))
        return rules

    @staticmethod
    def _heuristic(patterns: tuple[re.Pattern, ...]) -> FilePredicate:
        return lambda f: any(p.search(f.filename) for p in patterns)

    @staticmethod
    def _guarded(predicate: FilePredicate) -> FilePredicate:
        def check(file: ParsedDiffFile) -> bool:
            try:
                return bool(predicate(file))
            except Exception as e:
                logger.warning(
                    "Custom diff filter raised, keeping file",
                    filename=file.filename,
                    error=str(e),
                )
                return False

        return check

    def exclusion_reason(self, file: ParsedDiffFile) -> Optional[FilterReason]:
        """First rule that matches ``file``, or None to keep it."""
        for reason, matches in self._rules:
            if matches(file):
                return reason
        return None

    def filter(self, files: List[ParsedDiffFile]) -> FilterResult:
        """
        Filter parsed files.

        Args:
            files: Parsed diff files; not modified

        Returns:
            FilterResult with surviving files, removal records and stats
        """
        stats = FilterStats(
            original_files=len(files),
            original_lines=sum(f.line_count for f in files),
        )
        kept: List[ParsedDiffFile] = []
        removed: List[RemovedFile] = []

        for file in files:
            reason = self.exclusion_reason(file)
            if reason is not None:
                removed.append(
                    RemovedFile(filename=file.filename, reason=reason, size=file.stats.changes)
                )
                stats.filter_reasons[reason.value] = stats.filter_reasons.get(reason.value, 0) + 1
                continue
            kept.append(self._filter_content(file))

        stats.filtered_files = len(kept)
        stats.removed_files = len(removed)
        stats.filtered_lines = sum(f.line_count for f in kept)
        stats.removed_lines = stats.original_lines - stats.filtered_lines

        if removed:
            logger.debug(
                "Noise filter removed files",
                removed=len(removed),
                reasons=stats.filter_reasons,
            )
        return FilterResult(files=kept, removed_files=removed, stats=stats)

    def _filter_content(self, file: ParsedDiffFile) -> ParsedDiffFile:
        c = self.config
        if (
            not c.remove_whitespace_changes
            and c.max_hunk_size is None
            and c.min_content_ratio is None
        ):
            return file

        hunks: List[DiffHunk] = []
        changed = False
        for hunk in file.hunks:
            kept = self._filter_hunk(hunk)
            if kept is not hunk:
                changed = True
            if kept is not None:
                hunks.append(kept)

        return with_hunks(file, hunks) if changed else file

    def _filter_hunk(self, hunk: DiffHunk) -> Optional[DiffHunk]:
        """Return the hunk, a trimmed copy, or None to drop it."""
        c = self.config
        lines = hunk.lines
        if c.remove_whitespace_changes:
            lines = [line for line in lines if not (line.is_change and line.is_whitespace_only)]
            if not any(line.is_change for line in lines):
                return None

        if c.max_hunk_size is not None and len(lines) > c.max_hunk_size:
            return None

        if c.min_content_ratio is not None and lines:
            # Context lines count as content; only blank lines dilute the ratio.
            meaningful = sum(1 for line in lines if not line.is_whitespace_only)
            if meaningful / len(lines) < c.min_content_ratio:
                return None

        if len(lines) == len(hunk.lines):
            return hunk
        return hunk.model_copy(update={"lines": lines})


class FilterPresets:
    """Named configurations over the same filter engine."""

    @staticmethod
    def minimal() -> NoiseFilterConfig:
        return NoiseFilterConfig(remove_binary_files=True, max_file_size=10000)

    @staticmethod
    def balanced() -> NoiseFilterConfig:
        return NoiseFilterConfig(
            remove_whitespace_changes=True,
            remove_binary_files=True,
            remove_generated_files=True,
            remove_dev_artifacts=True,
            max_file_size=2000,
            max_hunk_size=100,
            min_content_ratio=0.1,
            excluded_extensions=["map", "min.js", "min.css"],
        )

    @staticmethod
    def aggressive() -> NoiseFilterConfig:
        return NoiseFilterConfig(
            remove_whitespace_changes=True,
            remove_binary_files=True,
            remove_generated_files=True,
            remove_dev_artifacts=True,
            remove_dependency_files=True,
            max_file_size=500,
            max_hunk_size=50,
            min_content_ratio=0.2,
            excluded_extensions=["map", "min.js", "min.css", "lock", "log"],
            excluded_patterns=[
                r"^dist/",
                r"^build/",
                r"^coverage/",
                r"\.generated\.",
                r"\.cache/",
                r"node_modules/",
            ],
        )

    @staticmethod
    def code_review() -> NoiseFilterConfig:
        return NoiseFilterConfig(
            remove_whitespace_changes=True,
            remove_binary_files=True,
            remove_generated_files=True,
            remove_dev_artifacts=True,
            remove_dependency_files=True,
            max_file_size=1000,
            min_content_ratio=0.15,
            excluded_extensions=["map", "lock"],
            excluded_patterns=[r"^test/", r"^spec/", r"\.test\.", r"\.spec\."],
        )

    @staticmethod
    def for_summary() -> NoiseFilterConfig:
        """
        Balanced with dependency files and build output excluded.

        There are no size limits: the summariser truncates by length instead,
        so a large change is shortened rather than dropped.
        """
        return FilterPresets.balanced().model_copy(
            update={
                "remove_dependency_files": True,
                "max_file_size": None,
                "max_hunk_size": None,
                "excluded_patterns": list(FilterPresets.aggressive().excluded_patterns),
            }
        )


def filter_diff(
    files: List[ParsedDiffFile], config: Optional[NoiseFilterConfig] = None
) -> FilterResult:
    """Filter with a one-off NoiseFilter."""
    return NoiseFilter(config).filter(files)
