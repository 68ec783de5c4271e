"""Summarise a commit's diff and store the result on the commit."""

from typing import Optional

from changereel.core.errors import NonRetryableError
from changereel.core.logging import get_logger
from changereel.db.commits import CommitRepository
from changereel.jobs.handlers.base import JobHandler
from changereel.llm.models import SummaryContext
from changereel.llm.summarization import SummarizationService
from changereel.models.job import GenerateSummaryData, Job, JobResult, JobType

logger = get_logger(__name__)


class GenerateSummaryHandler(JobHandler[GenerateSummaryData]):
    job_type = JobType.GENERATE_SUMMARY
    payload_model = GenerateSummaryData

    def __init__(self, summarization: SummarizationService, commits: CommitRepository):
        self.summarization = summarization
        self.commits = commits

    async def handle(self, job: Job, payload: GenerateSummaryData) -> JobResult:
        diff = payload.diff_content or self._diff_from_context(job)
        if not diff:
            return JobResult(
                success=False,
                error="No diff content available for summary generation",
                retryable=False,
            )

        result = await self.summarization.process_diff(
            diff,
            SummaryContext(
                commit_message=payload.commit_message,
                author=payload.author,
                branch=payload.branch,
                repository=payload.repository,
            ),
        )

        try:
            await self.commits.update_summary(
                payload.commit_id, result.summary, result.change_type.value
            )
        except KeyError as e:
            raise NonRetryableError(f"Commit not found: {payload.commit_id}") from e

        logger.info(
            "Summary stored",
            job_id=job.id,
            commit_id=payload.commit_id,
            change_type=result.change_type.value,
        )
        return JobResult(
            success=True,
            data={
                "summary": result.summary,
                "commit_id": payload.commit_id,
                "change_type": result.change_type.value,
                "confidence": result.confidence,
                "tokens_used": result.metadata.tokens_used,
            },
            metadata={"processing_time_ms": result.metadata.processing_time_ms},
        )

    @staticmethod
    def _diff_from_context(job: Job) -> Optional[str]:
        previous = job.context.get("previous_job_result") or {}
        return (previous.get("data") or {}).get("diff_content")
