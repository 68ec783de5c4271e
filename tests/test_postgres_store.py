"""Tests for the PostgreSQL job store queries, against a mocked pool."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from changereel.db.migrations import MIGRATIONS_DIR
from changereel.jobs.postgres_store import PostgresJobStore


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.fetch = AsyncMock(
        return_value=[{"depends_on_job_id": "job-a"}, {"depends_on_job_id": "job-b"}]
    )
    return conn


@pytest.fixture
def pool(conn):
    pool = MagicMock()

    @asynccontextmanager
    async def acquire():
        yield conn

    pool.acquire = acquire
    return pool


class TestDependencyOrder:
    async def test_edges_have_a_total_order(self, pool, conn):
        store = PostgresJobStore(pool)

        deps = await store.get_dependencies("job-c")

        assert deps == ["job-a", "job-b"]
        sql, job_id = conn.fetch.call_args.args
        assert job_id == "job-c"
        assert "ORDER BY created_at, depends_on_job_id" in sql

    def test_edge_timestamps_advance_within_a_transaction(self):
        migrations = "\n".join(
            path.read_text() for path in sorted(MIGRATIONS_DIR.glob("*.sql"))
        )

        assert "ALTER COLUMN created_at SET DEFAULT clock_timestamp()" in migrations
