"""Fetch the unified diff for a commit."""

from changereel.core.errors import NotFoundError
from changereel.core.logging import get_logger
from changereel.github.models import DiffData
from changereel.github.services import (
    EMPTY_TREE_SHA,
    CommitService,
    DiffService,
    synthesize_unified_diff,
)
from changereel.jobs.handlers.base import JobHandler
from changereel.models.job import FetchDiffData, Job, JobResult, JobType

logger = get_logger(__name__)


class FetchDiffHandler(JobHandler[FetchDiffData]):
    """
    Resolves the diff between a commit and its base.

    The base is ``base_sha`` when given, else the first parent, else the
    empty tree for root commits. A missing comparison falls back to the empty
    tree so the whole commit is shown.
    """

    job_type = JobType.FETCH_DIFF
    payload_model = FetchDiffData

    def __init__(self, commit_service: CommitService, diff_service: DiffService):
        self.commit_service = commit_service
        self.diff_service = diff_service

    async def handle(self, job: Job, payload: FetchDiffData) -> JobResult:
        owner = payload.repository_owner
        repo = payload.repository_name
        head = payload.commit_sha

        base = payload.base_sha or await self._resolve_base(owner, repo, head)
        try:
            diff = await self.diff_service.get_diff(owner, repo, base, head)
        except NotFoundError:
            if base == EMPTY_TREE_SHA:
                raise
            logger.warning(
                "Comparison not found, falling back to empty tree",
                job_id=job.id,
                base=base,
                head=head,
            )
            base = EMPTY_TREE_SHA
            diff = await self.diff_service.get_diff(owner, repo, base, head)

        diff_content = await self.diff_service.get_raw_diff(owner, repo, base, head)
        if not diff_content.strip():
            diff_content = synthesize_unified_diff(diff.files)

        logger.info(
            "Diff fetched",
            job_id=job.id,
            commit_id=payload.commit_id,
            files_changed=diff.stats.files_changed,
            diff_length=len(diff_content),
        )
        return JobResult(
            success=True,
            data=self._result_data(payload, diff, diff_content),
            metadata={"base_sha": base},
        )

    async def _resolve_base(self, owner: str, repo: str, sha: str) -> str:
        commit = await self.commit_service.get_commit(owner, repo, sha)
        return commit.parents[0] if commit.parents else EMPTY_TREE_SHA

    @staticmethod
    def _result_data(payload: FetchDiffData, diff: DiffData, diff_content: str) -> dict:
        return {
            "diff_content": diff_content,
            "files_changed": diff.stats.files_changed,
            "additions": diff.stats.additions,
            "deletions": diff.stats.deletions,
            "commit_sha": payload.commit_sha,
        }
