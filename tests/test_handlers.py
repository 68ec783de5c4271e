"""Tests for the job handlers and the handler table."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from changereel.core.errors import JobValidationError, NonRetryableError, NotFoundError
from changereel.email.client import SendEmailResponse
from changereel.github.models import CommitInfo, DiffData, DiffStatsSummary, FileChange
from changereel.github.services import EMPTY_TREE_SHA
from changereel.jobs.handlers import (
    FetchDiffHandler,
    GenerateSummaryHandler,
    HandlerTable,
    SendEmailHandler,
)
from changereel.llm.models import ChangeType, SummaryMetadata, SummaryResult
from changereel.models.job import (
    FetchDiffData,
    GenerateSummaryData,
    Job,
    JobType,
    SendEmailData,
)
from tests.conftest import FETCH_DATA, SIMPLE_DIFF, ScriptedHandler


def make_diff(base: str, files=()) -> DiffData:
    return DiffData(
        base_sha=base,
        head_sha="a1b2c3d",
        files=list(files),
        stats=DiffStatsSummary(files_changed=1, additions=2, deletions=1, total_changes=3),
    )


@pytest.fixture
def commit_service():
    service = MagicMock()
    service.get_commit = AsyncMock(
        return_value=CommitInfo(sha="a1b2c3d", parents=["p1", "p2"])
    )
    return service


@pytest.fixture
def diff_service():
    service = MagicMock()
    service.get_diff = AsyncMock(side_effect=lambda owner, repo, base, head: make_diff(base))
    service.get_raw_diff = AsyncMock(return_value=SIMPLE_DIFF)
    return service


@pytest.fixture
def fetch(commit_service, diff_service) -> FetchDiffHandler:
    return FetchDiffHandler(commit_service, diff_service)


def fetch_job(**overrides) -> Job:
    return Job(type=JobType.FETCH_DIFF, data={**FETCH_DATA, **overrides})


class TestFetchDiffHandler:
    """Base resolution and diff retrieval."""

    async def test_uses_first_parent(self, fetch, diff_service):
        job = fetch_job()

        result = await fetch.handle(job, fetch.validate(job.data))

        diff_service.get_diff.assert_awaited_once_with("octo", "app", "p1", "a1b2c3d")
        assert result.success
        assert result.metadata == {"base_sha": "p1"}
        assert result.data == {
            "diff_content": SIMPLE_DIFF,
            "files_changed": 1,
            "additions": 2,
            "deletions": 1,
            "commit_sha": "a1b2c3d",
        }

    async def test_explicit_base_skips_commit_lookup(self, fetch, commit_service):
        job = fetch_job(base_sha="b0b0b0")

        result = await fetch.handle(job, fetch.validate(job.data))

        commit_service.get_commit.assert_not_awaited()
        assert result.metadata["base_sha"] == "b0b0b0"

    async def test_root_commit_diffs_against_empty_tree(self, fetch, commit_service):
        commit_service.get_commit.return_value = CommitInfo(sha="a1b2c3d", parents=[])
        job = fetch_job()

        result = await fetch.handle(job, fetch.validate(job.data))

        assert result.metadata["base_sha"] == EMPTY_TREE_SHA

    async def test_missing_comparison_falls_back_to_empty_tree(self, fetch, diff_service):
        diff_service.get_diff.side_effect = [NotFoundError("Not Found"), make_diff(EMPTY_TREE_SHA)]
        job = fetch_job()

        result = await fetch.handle(job, fetch.validate(job.data))

        assert result.metadata["base_sha"] == EMPTY_TREE_SHA
        diff_service.get_raw_diff.assert_awaited_once_with("octo", "app", EMPTY_TREE_SHA, "a1b2c3d")

    async def test_missing_empty_tree_comparison_raises(self, fetch, diff_service):
        diff_service.get_diff.side_effect = NotFoundError("Not Found")
        job = fetch_job(base_sha=EMPTY_TREE_SHA)

        with pytest.raises(NotFoundError):
            await fetch.handle(job, fetch.validate(job.data))

    async def test_blank_raw_diff_is_synthesised_from_patches(self, fetch, diff_service):
        patch = "@@ -1 +1 @@\n-old\n+new"
        diff_service.get_raw_diff.return_value = ""
        diff_service.get_diff.side_effect = lambda owner, repo, base, head: make_diff(
            base, [FileChange(filename="a.txt", patch=patch)]
        )
        job = fetch_job()

        result = await fetch.handle(job, fetch.validate(job.data))

        assert result.data["diff_content"].startswith("diff --git a/a.txt b/a.txt")
        assert result.data["diff_content"].endswith(patch)


@pytest.fixture
def summarization():
    service = MagicMock()
    service.process_diff = AsyncMock(
        return_value=SummaryResult(
            summary="Greeting text now says Hello World.",
            change_type=ChangeType.FEATURE,
            confidence=0.9,
            metadata=SummaryMetadata(tokens_used=321, processing_time_ms=12),
        )
    )
    return service


class TestGenerateSummaryHandler:
    async def test_reads_diff_from_previous_job(self, summarization, commit_repo):
        handler = GenerateSummaryHandler(summarization, commit_repo)
        job = Job(
            type=JobType.GENERATE_SUMMARY,
            data={"commit_id": "c-1", "commit_message": "Say hello"},
            context={"previous_job_result": {"success": True, "data": {"diff_content": SIMPLE_DIFF}}},
        )

        result = await handler.handle(job, handler.validate(job.data))

        diff, context = summarization.process_diff.await_args.args
        assert diff == SIMPLE_DIFF
        assert context.commit_message == "Say hello"
        assert result.data == {
            "summary": "Greeting text now says Hello World.",
            "commit_id": "c-1",
            "change_type": "feature",
            "confidence": 0.9,
            "tokens_used": 321,
        }
        stored = await commit_repo.get_commit("c-1")
        assert stored.summary == "Greeting text now says Hello World."
        assert stored.change_type == "feature"

    async def test_payload_diff_takes_precedence(self, summarization, commit_repo):
        handler = GenerateSummaryHandler(summarization, commit_repo)
        job = Job(
            type=JobType.GENERATE_SUMMARY,
            data={"commit_id": "c-1", "diff_content": "inline diff"},
            context={"previous_job_result": {"data": {"diff_content": SIMPLE_DIFF}}},
        )

        await handler.handle(job, handler.validate(job.data))

        assert summarization.process_diff.await_args.args[0] == "inline diff"

    async def test_missing_diff_is_a_permanent_failure(self, summarization, commit_repo):
        handler = GenerateSummaryHandler(summarization, commit_repo)
        job = Job(type=JobType.GENERATE_SUMMARY, data={"commit_id": "c-1"})

        result = await handler.handle(job, handler.validate(job.data))

        assert not result.success
        assert not result.retryable
        summarization.process_diff.assert_not_awaited()

    async def test_unknown_commit_raises(self, summarization, commit_repo):
        handler = GenerateSummaryHandler(summarization, commit_repo)
        job = Job(
            type=JobType.GENERATE_SUMMARY,
            data={"commit_id": "missing", "diff_content": SIMPLE_DIFF},
        )

        with pytest.raises(NonRetryableError):
            await handler.handle(job, handler.validate(job.data))


@pytest.fixture
def email_client():
    client = MagicMock()
    client.send_email = AsyncMock(return_value=SendEmailResponse(id="em-1", status="sent"))
    return client


def email_job(**overrides) -> Job:
    data = {
        "commit_ids": ["c-1"],
        "recipients": ["dev@example.com"],
        "template_type": "single_commit",
        **overrides,
    }
    return Job(type=JobType.SEND_EMAIL, data=data)


class TestSendEmailHandler:
    async def test_sends_and_marks_commits(self, email_client, commit_repo):
        await commit_repo.update_summary("c-1", "Login redirect fixed.", "fix")
        handler = SendEmailHandler(email_client, commit_repo, sender="reel@example.com")
        job = email_job()

        result = await handler.handle(job, handler.validate(job.data))

        message = email_client.send_email.await_args.args[0]
        assert message.to == ["dev@example.com"]
        assert message.sender == "reel@example.com"
        assert message.subject == "There's a Bugfix in octo/app"
        assert "Login redirect fixed." in message.html
        assert message.headers == {"X-Job-Id": job.id}
        assert result.data["email_id"] == "em-1"
        assert (await commit_repo.get_commit("c-1")).email_sent

    async def test_template_project_name_wins(self, email_client, commit_repo):
        await commit_repo.update_summary("c-1", "New dashboard.", "feature")
        handler = SendEmailHandler(email_client, commit_repo, sender="reel@example.com")
        job = email_job(template_data={"project_name": "Dashboard"})

        result = await handler.handle(job, handler.validate(job.data))

        assert result.data["subject"] == "There's a New Feature in Dashboard"

    async def test_commit_without_summary_raises(self, email_client, commit_repo):
        handler = SendEmailHandler(email_client, commit_repo, sender="reel@example.com")
        job = email_job()

        with pytest.raises(NonRetryableError):
            await handler.handle(job, handler.validate(job.data))
        email_client.send_email.assert_not_awaited()

    def test_invalid_recipient_rejected(self, email_client, commit_repo):
        handler = SendEmailHandler(email_client, commit_repo, sender="reel@example.com")

        with pytest.raises(JobValidationError):
            handler.validate(email_job(recipients=["nobody"]).data)


class TestHandlerTable:
    def test_register_and_get(self):
        handler = ScriptedHandler(JobType.FETCH_DIFF, FetchDiffData)
        table = HandlerTable([handler])

        assert table.get(JobType.FETCH_DIFF) is handler
        assert JobType.FETCH_DIFF in table
        assert len(table) == 1

    def test_missing_handler(self):
        with pytest.raises(JobValidationError):
            HandlerTable().get(JobType.SEND_EMAIL)

    def test_duplicate_and_mismatched_registration(self):
        table = HandlerTable([ScriptedHandler(JobType.FETCH_DIFF, FetchDiffData)])

        with pytest.raises(ValueError):
            table.register(ScriptedHandler(JobType.FETCH_DIFF, FetchDiffData))
        with pytest.raises(ValueError):
            table.register(
                ScriptedHandler(JobType.GENERATE_SUMMARY, GenerateSummaryData),
                job_type=JobType.SEND_EMAIL,
            )

    def test_validate_wraps_pydantic_errors(self):
        handler = ScriptedHandler(JobType.SEND_EMAIL, SendEmailData)

        with pytest.raises(JobValidationError) as exc_info:
            handler.validate({"commit_ids": [], "recipients": [], "template_type": "x"})

        assert len(exc_info.value.details["errors"]) == 3
