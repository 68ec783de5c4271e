"""Data models for LLM providers."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ChangeType(str, Enum):
    FEATURE = "feature"
    FIX = "fix"
    REFACTOR = "refactor"
    CHORE = "chore"


class SummaryContext(BaseModel):
    """Optional metadata sent alongside a diff."""

    commit_message: Optional[str] = None
    author: Optional[str] = None
    branch: Optional[str] = None
    repository: Optional[str] = None
    custom_context: Optional[str] = None


class Completion(BaseModel):
    """Raw text completion and usage returned by a provider."""

    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class SummaryMetadata(BaseModel):
    diff_length: int = 0
    processing_time_ms: int = 0
    template_used: str = "diff_summary"
    tokens_used: int = 0


class SummaryResult(BaseModel):
    """Result of summarising one diff."""

    summary: str = Field(..., description="Plain-English summary of the change")
    change_type: ChangeType
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    metadata: SummaryMetadata = Field(default_factory=SummaryMetadata)

    class Config:
        json_schema_extra = {
            "example": {
                "summary": "Users can now reset their password from the login page.",
                "change_type": "feature",
                "confidence": 0.9,
                "metadata": {"diff_length": 1834, "processing_time_ms": 2120},
            }
        }
