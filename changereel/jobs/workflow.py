"""Job chains created for incoming commits."""

import uuid
from datetime import datetime
from typing import Any, List, Optional

from changereel.core.logging import get_logger
from changereel.db.commits import CommitRepository
from changereel.jobs.scheduler import JobScheduler
from changereel.models.commit import Commit
from changereel.models.job import JobType, TemplateType

logger = get_logger(__name__)

FETCH_DIFF_PRIORITY = 50
GENERATE_SUMMARY_PRIORITY = 40
SEND_EMAIL_PRIORITY = 30


async def create_commit_workflow(
    scheduler: JobScheduler,
    commit: Commit,
    repository_owner: str,
    repository_name: str,
    recipients: Optional[List[str]] = None,
) -> List[str]:
    """
    Enqueue fetch_diff -> generate_summary -> send_email for one commit.

    The email job is only created when there are recipients.

    Returns:
        Ids of the created jobs in chain order
    """
    fetch_job = await scheduler.enqueue(
        JobType.FETCH_DIFF,
        {
            "commit_id": commit.id,
            "repository_owner": repository_owner,
            "repository_name": repository_name,
            "commit_sha": commit.sha,
        },
        priority=FETCH_DIFF_PRIORITY,
    )
    summary_job = await scheduler.enqueue(
        JobType.GENERATE_SUMMARY,
        {
            "commit_id": commit.id,
            "commit_message": commit.message,
            "author": commit.author,
            "branch": commit.branch,
            "repository": f"{repository_owner}/{repository_name}",
        },
        priority=GENERATE_SUMMARY_PRIORITY,
        depends_on=[fetch_job.id],
    )
    job_ids = [fetch_job.id, summary_job.id]

    if recipients:
        email_job = await scheduler.enqueue(
            JobType.SEND_EMAIL,
            {
                "commit_ids": [commit.id],
                "recipients": recipients,
                "template_type": TemplateType.SINGLE_COMMIT.value,
                "template_data": {"project_name": commit.project_name},
            },
            priority=SEND_EMAIL_PRIORITY,
            depends_on=[summary_job.id],
        )
        job_ids.append(email_job.id)

    logger.info("Commit workflow created", commit_id=commit.id, sha=commit.sha, jobs=len(job_ids))
    return job_ids


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


async def enqueue_push_event(
    scheduler: JobScheduler,
    commits: CommitRepository,
    payload: dict[str, Any],
    recipients: Optional[List[str]] = None,
    project_id: Optional[str] = None,
) -> List[str]:
    """
    Record each commit of a GitHub push payload and start its workflow.

    Returns:
        Ids of every job created, across all commits
    """
    repository = payload.get("repository") or {}
    owner_info = repository.get("owner") or {}
    owner = owner_info.get("login") or owner_info.get("name") or ""
    name = repository.get("name") or ""
    ref = payload.get("ref") or ""
    branch = ref.removeprefix("refs/heads/") or None
    project_name = repository.get("full_name") or f"{owner}/{name}"

    if not owner or not name:
        logger.warning("Push payload without repository, ignoring")
        return []

    job_ids: List[str] = []
    for entry in payload.get("commits") or []:
        sha = entry.get("id")
        if not sha:
            continue
        commit = await commits.save_commit(
            Commit(
                id=str(uuid.uuid4()),
                project_id=project_id,
                project_name=project_name,
                repository_owner=owner,
                repository_name=name,
                sha=sha,
                author=(entry.get("author") or {}).get("name"),
                message=entry.get("message"),
                branch=branch,
                timestamp=_parse_timestamp(entry.get("timestamp")),
            )
        )
        job_ids.extend(
            await create_commit_workflow(scheduler, commit, owner, name, recipients)
        )

    logger.info("Push event enqueued", repository=project_name, jobs=len(job_ids))
    return job_ids
