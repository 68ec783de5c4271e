"""Structured representation of parsed unified diffs."""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class FileStatus(str, Enum):
    ADDED = "added"
    DELETED = "deleted"
    MODIFIED = "modified"
    RENAMED = "renamed"
    COPIED = "copied"
    UNCHANGED = "unchanged"


class LineType(str, Enum):
    ADD = "add"
    DELETE = "delete"
    CONTEXT = "context"
    NO_NEWLINE = "no-newline"


class BothSides(BaseModel):
    """Line numbers of a context line, present in both versions."""

    side: Literal["both"] = "both"
    old: int
    new: int


class NewSide(BaseModel):
    """Line number of an added line in the new version."""

    side: Literal["new"] = "new"
    new: int


class OldSide(BaseModel):
    """Line number of a deleted line in the old version."""

    side: Literal["old"] = "old"
    old: int


LineNumbers = Annotated[Union[BothSides, NewSide, OldSide], Field(discriminator="side")]


class DiffLine(BaseModel):
    """A single line within a hunk."""

    type: LineType
    content: str
    numbers: LineNumbers
    is_whitespace_only: bool = False

    @property
    def old_line_number(self) -> Optional[int]:
        return getattr(self.numbers, "old", None)

    @property
    def new_line_number(self) -> Optional[int]:
        return getattr(self.numbers, "new", None)

    @property
    def is_change(self) -> bool:
        """True for lines that add or delete content."""
        if self.type == LineType.NO_NEWLINE:
            return not isinstance(self.numbers, BothSides)
        return self.type in (LineType.ADD, LineType.DELETE)


class DiffHunk(BaseModel):
    """A contiguous change region of a file."""

    header: str
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    context: str = ""
    lines: List[DiffLine] = Field(default_factory=list)


class DiffStats(BaseModel):
    """Line counts for one file; changes is always additions + deletions."""

    additions: int = 0
    deletions: int = 0
    changes: int = 0
    context_lines: int = 0


class ParsedDiffFile(BaseModel):
    """One file's change record."""

    filename: str
    previous_filename: Optional[str] = None
    status: FileStatus = FileStatus.MODIFIED
    file_type: str = "unknown"
    is_binary: bool = False
    is_generated: bool = False
    is_large_file: bool = False
    stats: DiffStats = Field(default_factory=DiffStats)
    hunks: List[DiffHunk] = Field(default_factory=list)

    @property
    def line_count(self) -> int:
        return sum(len(hunk.lines) for hunk in self.hunks)

    class Config:
        json_schema_extra = {
            "example": {
                "filename": "src/app.py",
                "status": "modified",
                "file_type": "python",
                "stats": {"additions": 2, "deletions": 1, "changes": 3, "context_lines": 4},
                "hunks": [],
            }
        }


class SignificantFile(BaseModel):
    filename: str
    changes: int
    status: FileStatus


class DiffSummaryStats(BaseModel):
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    binary_files: int = 0
    large_files: int = 0
    generated_files: int = 0


class DiffSummary(BaseModel):
    """Aggregate view over a set of parsed files."""

    total_files: int = 0
    files_by_type: dict[str, int] = Field(
        default_factory=lambda: {"added": 0, "deleted": 0, "modified": 0, "renamed": 0}
    )
    files_by_extension: dict[str, int] = Field(default_factory=dict)
    stats: DiffSummaryStats = Field(default_factory=DiffSummaryStats)
    significant_files: List[SignificantFile] = Field(default_factory=list)
