"""Unified diff parsing, cleaning and summarisation."""

import re
from pathlib import PurePosixPath
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from changereel.core.logging import get_logger
from changereel.models.diff import (
    BothSides,
    DiffHunk,
    DiffLine,
    DiffStats,
    DiffSummary,
    DiffSummaryStats,
    FileStatus,
    LineType,
    NewSide,
    OldSide,
    ParsedDiffFile,
    SignificantFile,
)

logger = get_logger(__name__)

LARGE_FILE_THRESHOLD = 1000
SIGNIFICANT_CHANGE_THRESHOLD = 10
MAX_SIGNIFICANT_FILES = 10

FILE_HEADER_RE = re.compile(r"^diff --git a/(.+) b/(.+)$")
HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")
WHITESPACE_ONLY_RE = re.compile(r"^\s*$")
NO_NEWLINE_MARKER = "\\ No newline at end of file"

FILE_TYPES = {
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "java": "java",
    "cpp": "cpp",
    "c": "c",
    "go": "go",
    "rs": "rust",
    "php": "php",
    "rb": "ruby",
    "css": "css",
    "scss": "scss",
    "html": "html",
    "md": "markdown",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "xml": "xml",
    "sql": "sql",
    "sh": "shell",
    "dockerfile": "docker",
}

GENERATED_FILE_PATTERNS = [
    re.compile(p)
    for p in (
        r"\.min\.(js|css)$",
        r"bundle\.(js|css)$",
        r"\.generated\.",
        r"^dist/",
        r"^build/",
        r"node_modules/",
        r"package-lock\.json$",
        r"yarn\.lock$",
        r"composer\.lock$",
        r"Gemfile\.lock$",
        r"\.map$",
        r"coverage/",
    )
]


class CleanDiffOptions(BaseModel):
    """Declarative limits applied by clean_diff."""

    remove_whitespace_only: bool = False
    remove_binary_files: bool = False
    remove_generated_files: bool = False
    large_file_threshold: Optional[int] = LARGE_FILE_THRESHOLD
    max_context_lines: Optional[int] = 50
    exclude_extensions: List[str] = Field(default_factory=list)
    exclude_patterns: List[str] = Field(default_factory=list)


def get_file_extension(filename: str) -> str:
    """Return the lower-cased text after the last dot of the basename, or ''."""
    name = PurePosixPath(filename).name
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def has_extension(filename: str, extension: str) -> bool:
    """Match single (``map``) and compound (``min.js``) extensions."""
    return filename.lower().endswith("." + extension.lower().lstrip("."))


def get_file_type(filename: str) -> str:
    name = PurePosixPath(filename).name.lower()
    ext = name.rsplit(".", 1)[-1] if "." in name else name
    return FILE_TYPES.get(ext, ext or "unknown")


def is_generated_file(filename: str) -> bool:
    return any(pattern.search(filename) for pattern in GENERATED_FILE_PATTERNS)


def calculate_stats(hunks: Iterable[DiffHunk]) -> DiffStats:
    additions = deletions = context_lines = 0
    for hunk in hunks:
        for line in hunk.lines:
            if line.type == LineType.ADD:
                additions += 1
            elif line.type == LineType.DELETE:
                deletions += 1
            elif line.type == LineType.CONTEXT:
                context_lines += 1
    return DiffStats(
        additions=additions,
        deletions=deletions,
        changes=additions + deletions,
        context_lines=context_lines,
    )


def with_hunks(file: ParsedDiffFile, hunks: List[DiffHunk]) -> ParsedDiffFile:
    """Copy of ``file`` carrying new hunks and freshly computed stats."""
    stats = calculate_stats(hunks)
    return file.model_copy(
        update={
            "hunks": hunks,
            "stats": stats,
            "is_large_file": stats.changes > LARGE_FILE_THRESHOLD,
        }
    )


class _FileBuilder:
    """Mutable parse state for the file currently being read."""

    def __init__(self, old_path: str, new_path: str):
        self.filename = new_path
        self.old_path: Optional[str] = old_path
        self.previous_filename: Optional[str] = None
        self.status = FileStatus.MODIFIED
        self.is_binary = False
        self.hunks: List[DiffHunk] = []
        self.hunk: Optional[DiffHunk] = None
        self.in_hunks = False
        self.old_line = 0
        self.new_line = 0
        self.old_remaining = 0
        self.new_remaining = 0

    def start_hunk(self, line: str) -> None:
        match = HUNK_HEADER_RE.match(line)
        self.in_hunks = True
        if not match:
            logger.debug("Skipping malformed hunk header", header=line[:80])
            self.hunk = None
            return
        old_start = int(match.group(1))
        old_lines = int(match.group(2)) if match.group(2) is not None else 1
        new_start = int(match.group(3))
        new_lines = int(match.group(4)) if match.group(4) is not None else 1
        self.hunk = DiffHunk(
            header=line,
            old_start=old_start,
            old_lines=old_lines,
            new_start=new_start,
            new_lines=new_lines,
            context=match.group(5).strip(),
        )
        self.hunks.append(self.hunk)
        self.old_line = old_start
        self.new_line = new_start
        self.old_remaining = old_lines
        self.new_remaining = new_lines

    def add_line(self, line: str) -> None:
        hunk = self.hunk
        if hunk is None:
            return

        if line.startswith("\\"):
            if hunk.lines:
                hunk.lines[-1].type = LineType.NO_NEWLINE
            return

        marker, content = (line[0], line[1:]) if line else (" ", "")
        if not line and (self.old_remaining <= 0 or self.new_remaining <= 0):
            # Blank trailing line outside the hunk's declared range
            return

        if marker == "+":
            numbers = NewSide(new=self.new_line)
            line_type = LineType.ADD
            self.new_line += 1
            self.new_remaining -= 1
        elif marker == "-":
            numbers = OldSide(old=self.old_line)
            line_type = LineType.DELETE
            self.old_line += 1
            self.old_remaining -= 1
        elif marker == " ":
            numbers = BothSides(old=self.old_line, new=self.new_line)
            line_type = LineType.CONTEXT
            self.old_line += 1
            self.new_line += 1
            self.old_remaining -= 1
            self.new_remaining -= 1
        else:
            logger.debug("Skipping unrecognised diff line", line=line[:80])
            return

        hunk.lines.append(
            DiffLine(
                type=line_type,
                content=content,
                numbers=numbers,
                is_whitespace_only=bool(WHITESPACE_ONLY_RE.match(content)),
            )
        )

    def handle_header(self, line: str) -> None:
        if line.startswith("new file mode"):
            self.status = FileStatus.ADDED
        elif line.startswith("deleted file mode"):
            self.status = FileStatus.DELETED
        elif line.startswith("rename from "):
            self.status = FileStatus.RENAMED
            self.previous_filename = line[len("rename from "):]
        elif line.startswith("rename to "):
            self.filename = line[len("rename to "):]
        elif line.startswith("copy from "):
            self.status = FileStatus.COPIED
            self.previous_filename = line[len("copy from "):]
        elif line.startswith("copy to "):
            self.filename = line[len("copy to "):]
        elif line.startswith("Binary files") or line.startswith("GIT binary patch"):
            self.is_binary = True
        elif line.startswith("--- "):
            path = line[4:].strip()
            self.old_path = None if path == "/dev/null" else _strip_prefix(path, "a/")
        elif line.startswith("+++ "):
            path = line[4:].strip()
            if path == "/dev/null":
                if self.old_path:
                    self.filename = self.old_path
            else:
                self.filename = _strip_prefix(path, "b/")

    def build(self) -> ParsedDiffFile:
        hunks = [] if self.is_binary else [h for h in self.hunks if h.lines]
        status = self.status
        if status == FileStatus.MODIFIED and not hunks and not self.is_binary:
            status = FileStatus.UNCHANGED
        stats = calculate_stats(hunks)
        return ParsedDiffFile(
            filename=self.filename,
            previous_filename=self.previous_filename,
            status=status,
            file_type=get_file_type(self.filename),
            is_binary=self.is_binary,
            is_generated=is_generated_file(self.filename),
            is_large_file=stats.changes > LARGE_FILE_THRESHOLD,
            stats=stats,
            hunks=hunks,
        )


def _strip_prefix(path: str, prefix: str) -> str:
    return path[len(prefix):] if path.startswith(prefix) else path


def parse_unified_diff(diff_text: str) -> List[ParsedDiffFile]:
    """
    Parse unified diff text into structured files.

    Never raises: malformed lines are skipped and a file whose state cannot
    be built is dropped, so one corrupt section does not hide the rest.

    Args:
        diff_text: Raw ``git diff`` output

    Returns:
        Parsed files in the order they appear; empty for blank input
    """
    if not diff_text or not diff_text.strip():
        return []

    files: List[ParsedDiffFile] = []
    current: Optional[_FileBuilder] = None

    def finish() -> None:
        if current is None:
            return
        try:
            files.append(current.build())
        except Exception as e:
            logger.warning("Dropping unparseable diff file", filename=current.filename, error=str(e))

    for raw_line in diff_text.split("\n"):
        line = raw_line[:-1] if raw_line.endswith("\r") else raw_line
        try:
            if line.startswith("diff --git "):
                finish()
                match = FILE_HEADER_RE.match(line)
                current = _FileBuilder(match.group(1), match.group(2)) if match else None
                if current is None:
                    logger.debug("Skipping malformed file header", header=line[:80])
                continue

            if current is None or current.is_binary:
                if current is not None and not current.in_hunks:
                    current.handle_header(line)
                continue

            if line.startswith("@@"):
                current.start_hunk(line)
            elif current.in_hunks:
                current.add_line(line)
            else:
                current.handle_header(line)
        except Exception as e:
            logger.debug("Skipping diff line after parse error", error=str(e), line=line[:80])

    finish()
    return files


def clean_diff(
    files: List[ParsedDiffFile], options: Optional[CleanDiffOptions] = None
) -> List[ParsedDiffFile]:
    """
    Apply declarative exclusion and truncation limits.

    Pure: input files are not modified. Stats are recomputed on every file
    whose lines change.
    """
    options = options or CleanDiffOptions()
    patterns = [re.compile(p) for p in options.exclude_patterns]
    cleaned: List[ParsedDiffFile] = []

    for file in files:
        if options.remove_binary_files and file.is_binary:
            continue
        if options.remove_generated_files and file.is_generated:
            continue
        if (
            options.large_file_threshold is not None
            and file.stats.changes > options.large_file_threshold
        ):
            continue
        if any(has_extension(file.filename, ext) for ext in options.exclude_extensions):
            continue
        if any(p.search(file.filename) for p in patterns):
            continue

        if options.remove_whitespace_only or options.max_context_lines is not None:
            hunks = []
            for hunk in file.hunks:
                lines = [
                    line
                    for line in hunk.lines
                    if not (options.remove_whitespace_only and line.is_whitespace_only)
                ]
                if options.max_context_lines is not None:
                    lines = lines[: options.max_context_lines]
                hunks.append(hunk.model_copy(update={"lines": lines}))
            cleaned.append(with_hunks(file, hunks))
        else:
            cleaned.append(file)

    return cleaned


def summarize_diff(files: List[ParsedDiffFile]) -> DiffSummary:
    """Aggregate counts and rank the most significant files."""
    summary = DiffSummary(total_files=len(files))
    stats = DiffSummaryStats()
    significant: List[SignificantFile] = []

    for file in files:
        if file.status.value in summary.files_by_type:
            summary.files_by_type[file.status.value] += 1

        ext = get_file_extension(file.filename) or "none"
        summary.files_by_extension[ext] = summary.files_by_extension.get(ext, 0) + 1

        stats.additions += file.stats.additions
        stats.deletions += file.stats.deletions
        stats.changes += file.stats.changes
        if file.is_binary:
            stats.binary_files += 1
        if file.is_large_file:
            stats.large_files += 1
        if file.is_generated:
            stats.generated_files += 1

        if file.stats.changes > SIGNIFICANT_CHANGE_THRESHOLD:
            significant.append(
                SignificantFile(
                    filename=file.filename, changes=file.stats.changes, status=file.status
                )
            )

    significant.sort(key=lambda f: f.changes, reverse=True)
    summary.stats = stats
    summary.significant_files = significant[:MAX_SIGNIFICANT_FILES]
    return summary


def extract_context(
    file: ParsedDiffFile, line_number: int, context_size: int = 3
) -> List[DiffLine]:
    """Lines surrounding a new-side line number, or [] if it is not in any hunk."""
    for hunk in file.hunks:
        for index, line in enumerate(hunk.lines):
            if line.new_line_number == line_number:
                start = max(index - context_size, 0)
                return hunk.lines[start : index + context_size + 1]
    return []


def _line_prefix(line: DiffLine) -> str:
    if isinstance(line.numbers, NewSide):
        return "+"
    if isinstance(line.numbers, OldSide):
        return "-"
    return " "


def render_unified_diff(files: List[ParsedDiffFile]) -> str:
    """Serialise parsed files back into unified diff text."""
    out: List[str] = []
    for file in files:
        old_name = file.previous_filename or file.filename
        out.append(f"diff --git a/{old_name} b/{file.filename}")
        if file.status == FileStatus.ADDED:
            out.append("new file mode 100644")
        elif file.status == FileStatus.DELETED:
            out.append("deleted file mode 100644")
        elif file.status == FileStatus.RENAMED and file.previous_filename:
            out.append(f"rename from {file.previous_filename}")
            out.append(f"rename to {file.filename}")
        elif file.status == FileStatus.COPIED and file.previous_filename:
            out.append(f"copy from {file.previous_filename}")
            out.append(f"copy to {file.filename}")

        if file.is_binary:
            out.append(f"Binary files a/{old_name} and b/{file.filename} differ")
            continue
        if not file.hunks:
            continue

        out.append("--- /dev/null" if file.status == FileStatus.ADDED else f"--- a/{old_name}")
        out.append("+++ /dev/null" if file.status == FileStatus.DELETED else f"+++ b/{file.filename}")
        for hunk in file.hunks:
            old_count = sum(1 for line in hunk.lines if line.old_line_number is not None)
            new_count = sum(1 for line in hunk.lines if line.new_line_number is not None)
            suffix = f" {hunk.context}" if hunk.context else ""
            out.append(
                f"@@ -{hunk.old_start},{old_count} +{hunk.new_start},{new_count} @@{suffix}"
            )
            for line in hunk.lines:
                out.append(_line_prefix(line) + line.content)
                if line.type == LineType.NO_NEWLINE:
                    out.append(NO_NEWLINE_MARKER)
    return "\n".join(out)


def parse_for_display(diff_text: str, **overrides) -> List[ParsedDiffFile]:
    """Parse and lightly clean a diff for human display."""
    options = CleanDiffOptions(
        remove_whitespace_only=True,
        max_context_lines=20,
    ).model_copy(update=overrides)
    return clean_diff(parse_unified_diff(diff_text), options)


def parse_for_ai(diff_text: str) -> List[ParsedDiffFile]:
    """Parse and aggressively clean a diff for model input."""
    return clean_diff(
        parse_unified_diff(diff_text),
        CleanDiffOptions(
            remove_whitespace_only=True,
            remove_binary_files=True,
            remove_generated_files=True,
            large_file_threshold=500,
            max_context_lines=10,
            exclude_extensions=["map", "lock"],
        ),
    )


def get_quick_summary(diff_text: str) -> str:
    summary = summarize_diff(parse_unified_diff(diff_text))
    return (
        f"{summary.total_files} files changed, "
        f"{summary.stats.additions} insertions(+), "
        f"{summary.stats.deletions} deletions(-)"
    )
