"""Job data models for the processing queue."""

import re
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class JobType(str, Enum):
    """Closed set of job kinds the scheduler can dispatch."""

    FETCH_DIFF = "fetch_diff"
    GENERATE_SUMMARY = "generate_summary"
    SEND_EMAIL = "send_email"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def utcnow() -> datetime:
    return datetime.now(UTC)


class Job(BaseModel):
    """Persisted unit of deferred work."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: JobType
    status: JobStatus = JobStatus.PENDING
    priority: int = Field(default=0, ge=0, le=100)
    data: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    scheduled_for: datetime = Field(default_factory=utcnow)
    retry_after: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    error_message: Optional[str] = None
    error_details: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    class Config:
        json_schema_extra = {
            "example": {
                "id": "550e8400-e29b-41d4-a716-446655440000",
                "type": "fetch_diff",
                "status": "pending",
                "priority": 50,
                "data": {
                    "commit_id": "c-1",
                    "repository_owner": "octo",
                    "repository_name": "app",
                    "commit_sha": "a1b2c3d",
                },
                "attempts": 0,
                "max_attempts": 3,
            }
        }


class JobDependency(BaseModel):
    job_id: str
    depends_on_job_id: str
    created_at: datetime = Field(default_factory=utcnow)


class JobResult(BaseModel):
    """Outcome reported by a handler."""

    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_details: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    retryable: bool = True


class QueueStats(BaseModel):
    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    oldest_pending_job: Optional[datetime] = None


# Per-type payloads


class FetchDiffData(BaseModel):
    commit_id: str = Field(..., min_length=1)
    repository_owner: str = Field(..., min_length=1)
    repository_name: str = Field(..., min_length=1)
    commit_sha: str = Field(..., min_length=1)
    base_sha: Optional[str] = None


class GenerateSummaryData(BaseModel):
    commit_id: str = Field(..., min_length=1)
    diff_content: Optional[str] = None
    commit_message: Optional[str] = None
    author: Optional[str] = None
    branch: Optional[str] = None
    repository: Optional[str] = None


class TemplateType(str, Enum):
    SINGLE_COMMIT = "single_commit"
    DIGEST = "digest"
    WEEKLY_SUMMARY = "weekly_summary"


class SendEmailData(BaseModel):
    commit_ids: List[str] = Field(..., min_length=1)
    recipients: List[str] = Field(..., min_length=1)
    template_type: TemplateType
    template_data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("commit_ids")
    @classmethod
    def commit_ids_not_blank(cls, value: List[str]) -> List[str]:
        if any(not commit_id.strip() for commit_id in value):
            raise ValueError("commit_ids must be non-empty strings")
        return value

    @field_validator("recipients")
    @classmethod
    def recipients_are_emails(cls, value: List[str]) -> List[str]:
        cleaned = [email.strip() for email in value]
        invalid = [email for email in cleaned if not EMAIL_RE.match(email)]
        if invalid:
            raise ValueError(f"invalid recipient addresses: {', '.join(invalid)}")
        return cleaned
