#!/usr/bin/env python3
"""Manual trigger script - enqueue the summary workflow for one commit."""

import asyncio
import sys
import uuid

from changereel.core.config import settings
from changereel.core.logging import setup_logging
from changereel.db.commits import PostgresCommitRepository
from changereel.db.connection import close_db_pool, get_db_pool
from changereel.jobs.postgres_store import PostgresJobStore
from changereel.jobs.setup import build_scheduler
from changereel.jobs.workflow import create_commit_workflow
from changereel.models.commit import Commit

setup_logging()


async def trigger_commit(repo_full_name: str, sha: str, recipients: list[str]) -> bool:
    owner, _, name = repo_full_name.partition("/")
    print(f"\n{'='*60}")
    print(f"Manual trigger: {repo_full_name} @ {sha}")
    print(f"{'='*60}\n")

    pool = await get_db_pool()
    runtime = build_scheduler(
        settings,
        PostgresJobStore(pool),
        PostgresCommitRepository(pool),
        start_cache_cleanup=False,
    )
    try:
        commits = PostgresCommitRepository(pool)
        commit = await commits.save_commit(
            Commit(
                id=str(uuid.uuid4()),
                project_name=repo_full_name,
                repository_owner=owner,
                repository_name=name,
                sha=sha,
            )
        )
        print(f"Commit record: {commit.id}")

        job_ids = await create_commit_workflow(
            runtime.scheduler, commit, owner, name, recipients or None
        )
        for job_id in job_ids:
            print(f"  enqueued {job_id}")
        print("\nThe worker will process these jobs automatically.\n")
        return True
    except Exception as e:
        print(f"\nFailed to trigger workflow: {e}")
        return False
    finally:
        await runtime.aclose()
        await close_db_pool()


if __name__ == "__main__":
    if len(sys.argv) < 3 or "/" not in sys.argv[1]:
        print("Usage: python scripts/trigger_commit.py <owner/repo> <sha> [recipient ...]")
        print("Example: python scripts/trigger_commit.py octo/app a1b2c3d dev@example.com")
        sys.exit(1)

    success = asyncio.run(trigger_commit(sys.argv[1], sys.argv[2], sys.argv[3:]))
    sys.exit(0 if success else 1)
