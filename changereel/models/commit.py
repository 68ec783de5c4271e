"""Commit record read and updated by job handlers."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Commit(BaseModel):
    """Stored commit and its generated summary."""

    id: str
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    repository_owner: Optional[str] = None
    repository_name: Optional[str] = None
    sha: str
    author: Optional[str] = None
    message: Optional[str] = None
    branch: Optional[str] = None
    timestamp: Optional[datetime] = None
    summary: Optional[str] = None
    change_type: Optional[str] = None
    email_sent: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "id": "7d1c6c9e-6f1e-4c1b-9d9a-0c8f0b8d2e11",
                "project_name": "octo/app",
                "sha": "a1b2c3d4e5f6",
                "author": "Octo Cat",
                "message": "Fix login redirect",
                "summary": "Signing in now returns you to the page you came from.",
                "change_type": "fix",
            }
        }
