"""Render and deliver commit summary emails."""

from changereel.core.errors import NonRetryableError
from changereel.core.logging import get_logger
from changereel.db.commits import CommitRepository
from changereel.email.client import EmailClient, EmailMessage
from changereel.email.templates import render_email
from changereel.jobs.handlers.base import JobHandler
from changereel.models.job import Job, JobResult, JobType, SendEmailData

logger = get_logger(__name__)


class SendEmailHandler(JobHandler[SendEmailData]):
    job_type = JobType.SEND_EMAIL
    payload_model = SendEmailData

    def __init__(self, email_client: EmailClient, commits: CommitRepository, sender: str):
        self.email_client = email_client
        self.commits = commits
        self.sender = sender

    async def handle(self, job: Job, payload: SendEmailData) -> JobResult:
        """
        Send one email covering every commit in the payload.

        Raises:
            NonRetryableError: If a commit is missing or has no summary yet
            TransientExternalError: If delivery fails
        """
        commits = []
        for commit_id, commit in zip(
            payload.commit_ids, await self.commits.get_commits(payload.commit_ids)
        ):
            if commit is None:
                raise NonRetryableError(f"Commit not found: {commit_id}")
            if not commit.summary:
                raise NonRetryableError(f"Commit {commit_id} has no summary")
            commits.append(commit)

        project_name = (
            payload.template_data.get("project_name")
            or commits[0].project_name
            or "your project"
        )
        subject, html = render_email(
            payload.template_type.value, project_name, commits, payload.template_data
        )

        response = await self.email_client.send_email(
            EmailMessage(
                to=payload.recipients,
                sender=self.sender,
                subject=subject,
                html=html,
                headers={"X-Job-Id": job.id},
            )
        )
        await self.commits.mark_email_sent(payload.commit_ids)

        logger.info(
            "Summary email sent",
            job_id=job.id,
            email_id=response.id,
            commits=len(commits),
            recipients=len(payload.recipients),
        )
        return JobResult(
            success=True,
            data={
                "email_id": response.id,
                "recipients": payload.recipients,
                "commit_ids": payload.commit_ids,
                "subject": subject,
            },
        )
