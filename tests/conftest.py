"""Shared fixtures: sample diffs, fake clocks, an in-memory store and scripted handlers."""

from datetime import UTC, datetime, timedelta
from typing import Any, Optional, Type

import pytest
from pydantic import BaseModel

from changereel.db.commits import InMemoryCommitRepository
from changereel.jobs.handlers.base import HandlerTable, JobHandler
from changereel.jobs.scheduler import JobScheduler, SchedulerConfig
from changereel.jobs.store import InMemoryJobStore
from changereel.models.commit import Commit
from changereel.models.job import (
    FetchDiffData,
    GenerateSummaryData,
    Job,
    JobResult,
    JobType,
    SendEmailData,
)

# Built line by line so the whitespace-only context line survives editors.
SIMPLE_DIFF = "\n".join(
    [
        "diff --git a/src/utils.js b/src/utils.js",
        "index 1234567..abcdefg 100644",
        "--- a/src/utils.js",
        "+++ b/src/utils.js",
        "@@ -1,5 +1,7 @@",
        " function hello() {",
        "-  console.log('Hello');",
        "+  console.log('Hello World');",
        "+  console.log('New line');",
        " }",
        " ",
        " module.exports = { hello };",
    ]
)

MULTI_FILE_DIFF = "\n".join(
    [
        "diff --git a/README.md b/README.md",
        "new file mode 100644",
        "index 0000000..1234567",
        "--- /dev/null",
        "+++ b/README.md",
        "@@ -0,0 +1,3 @@",
        "+# Test Project",
        "+",
        "+A simple test project.",
        "diff --git a/src/index.js b/src/index.js",
        "deleted file mode 100644",
        "index abcdefg..0000000",
        "--- a/src/index.js",
        "+++ /dev/null",
        "@@ -1,2 +0,0 @@",
        "-console.log('Hello');",
        "-process.exit(0);",
    ]
)

BINARY_DIFF = "\n".join(
    [
        "diff --git a/image.png b/image.png",
        "index 1234567..abcdefg 100644",
        "GIT binary patch",
        "Binary files a/image.png and b/image.png differ",
    ]
)

RENAME_DIFF = "\n".join(
    [
        "diff --git a/old-name.js b/new-name.js",
        "similarity index 100%",
        "rename from old-name.js",
        "rename to new-name.js",
    ]
)

ONE_LINE_FIX_DIFF = "\n".join(
    [
        "diff --git a/src/app.py b/src/app.py",
        "index 3333333..4444444 100644",
        "--- a/src/app.py",
        "+++ b/src/app.py",
        "@@ -10,6 +10,7 @@ def main(args):",
        "     config = load_config()",
        "     logger = get_logger()",
        "     args = normalize(args)",
        "+    validate_input(args)",
        "     result = run(args)",
        "     report(result)",
        "     return result",
    ]
)


def added_file_diff(filename: str, count: int) -> str:
    """Diff text for a new file of ``count`` added lines."""
    return "\n".join(
        [
            f"diff --git a/{filename} b/{filename}",
            "new file mode 100644",
            "--- /dev/null",
            f"+++ b/{filename}",
            f"@@ -0,0 +1,{count} @@",
            *(f"+value_{n} = {n}" for n in range(count)),
        ]
    )


LOCKFILE_DIFF = "\n".join(
    [
        "diff --git a/package-lock.json b/package-lock.json",
        "index 1111111..2222222 100644",
        "--- a/package-lock.json",
        "+++ b/package-lock.json",
        "@@ -1,3 +1,3 @@",
        " {",
        '-  "version": "1.0.0",',
        '+  "version": "1.0.1",',
        " }",
    ]
)


class FakeClock:
    """Settable UTC clock for the scheduler."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeTimer:
    """Settable epoch-seconds clock for the cache and rate limiter."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class ScriptedHandler(JobHandler):
    """Handler that plays back queued outcomes: JobResults, exceptions or coroutine functions."""

    def __init__(self, job_type: JobType, payload_model: Type[BaseModel], outcomes=()):
        self.job_type = job_type
        self.payload_model = payload_model
        self.outcomes = list(outcomes)
        self.calls: list[Job] = []

    async def handle(self, job: Job, payload: Any) -> JobResult:
        self.calls.append(job)
        outcome = self.outcomes.pop(0) if self.outcomes else JobResult(success=True, data={})
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome(job, payload)
        return outcome


FETCH_DATA = {
    "commit_id": "c-1",
    "repository_owner": "octo",
    "repository_name": "app",
    "commit_sha": "a1b2c3d",
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def fetch_handler() -> ScriptedHandler:
    return ScriptedHandler(JobType.FETCH_DIFF, FetchDiffData)


@pytest.fixture
def summary_handler() -> ScriptedHandler:
    return ScriptedHandler(JobType.GENERATE_SUMMARY, GenerateSummaryData)


@pytest.fixture
def email_handler() -> ScriptedHandler:
    return ScriptedHandler(JobType.SEND_EMAIL, SendEmailData)


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(
        max_concurrent_jobs=5,
        retry_delay_ms=1000,
        max_retry_delay_ms=30000,
        retry_jitter_ms=0,
        job_timeout_ms=300000,
    )


@pytest.fixture
def scheduler(
    store, fetch_handler, summary_handler, email_handler, scheduler_config, clock
) -> JobScheduler:
    handlers = HandlerTable([fetch_handler, summary_handler, email_handler])
    return JobScheduler(store, handlers, scheduler_config, clock=clock)


@pytest.fixture
def commit() -> Commit:
    return Commit(
        id="c-1",
        project_name="octo/app",
        repository_owner="octo",
        repository_name="app",
        sha="a1b2c3d",
        author="Octo Cat",
        message="Fix login redirect",
        branch="main",
    )


@pytest.fixture
def commit_repo(commit) -> InMemoryCommitRepository:
    return InMemoryCommitRepository([commit])
