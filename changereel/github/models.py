"""Data models for GitHub lookups."""

from typing import List, Optional

from pydantic import BaseModel, Field


class CommitAuthor(BaseModel):
    name: str = ""
    email: Optional[str] = None
    date: Optional[str] = None


class CommitInfo(BaseModel):
    """Commit metadata returned by the commit service."""

    sha: str
    message: str = ""
    author: CommitAuthor = Field(default_factory=CommitAuthor)
    parents: List[str] = Field(default_factory=list)
    url: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "sha": "a1b2c3d",
                "message": "Fix login redirect",
                "author": {"name": "Octo Cat", "email": "octo@example.com"},
                "parents": ["9f8e7d6"],
            }
        }


class FileChange(BaseModel):
    """Per-file entry of a comparison."""

    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: Optional[str] = None
    previous_filename: Optional[str] = None


class DiffStatsSummary(BaseModel):
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0
    total_changes: int = 0


class DiffData(BaseModel):
    """Comparison between two refs."""

    base_sha: str
    head_sha: str
    files: List[FileChange] = Field(default_factory=list)
    stats: DiffStatsSummary = Field(default_factory=DiffStatsSummary)
    truncated: bool = False
