"""PostgreSQL job store backed by an asyncpg pool."""

import json
from datetime import datetime
from typing import Any, Iterable, List, Optional

from asyncpg import Pool, Record

from changereel.core.logging import get_logger
from changereel.jobs.store import JobStore
from changereel.models.job import Job, JobDependency, JobStatus, JobType, QueueStats

logger = get_logger(__name__)

JSON_COLUMNS = ("data", "context", "error_details")

READY_JOBS_SQL = """
    SELECT j.*
    FROM jobs j
    WHERE j.status = 'pending'
      AND j.scheduled_for <= $1
      AND (j.retry_after IS NULL OR j.retry_after <= $1)
      AND (j.expires_at IS NULL OR j.expires_at > $1)
      AND NOT EXISTS (
          SELECT 1
          FROM job_dependencies d
          JOIN jobs dep ON dep.id = d.depends_on_job_id
          WHERE d.job_id = j.id AND dep.status <> 'completed'
      )
    ORDER BY j.priority DESC, j.scheduled_for ASC
    LIMIT $2
"""


def _dump(value: Optional[dict]) -> Optional[str]:
    return json.dumps(value, default=str) if value is not None else None


def _row_to_job(row: Record) -> Job:
    record = dict(row)
    for column in JSON_COLUMNS:
        if isinstance(record.get(column), str):
            record[column] = json.loads(record[column])
    return Job.model_validate(record)


class PostgresJobStore(JobStore):
    """Job store whose claim is a conditional UPDATE ... RETURNING."""

    def __init__(self, pool: Pool):
        self.pool = pool

    async def create_job(self, job: Job, depends_on: Iterable[str] = ()) -> Job:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    INSERT INTO jobs (
                        id, type, status, priority, data, context, attempts, max_attempts,
                        scheduled_for, retry_after, expires_at, created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7, $8, $9, $10, $11, $12, $12)
                    RETURNING *
                    """,
                    job.id,
                    job.type.value,
                    job.status.value,
                    job.priority,
                    _dump(job.data),
                    _dump(job.context),
                    job.attempts,
                    job.max_attempts,
                    job.scheduled_for,
                    job.retry_after,
                    job.expires_at,
                    job.created_at,
                )
                for dep_id in dict.fromkeys(depends_on):
                    await conn.execute(
                        "INSERT INTO job_dependencies (job_id, depends_on_job_id) VALUES ($1, $2)",
                        job.id,
                        dep_id,
                    )
        return _row_to_job(row)

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM jobs WHERE id = $1", job_id)
        return _row_to_job(row) if row else None

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 100,
    ) -> List[Job]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM jobs
                WHERE ($1::text IS NULL OR status = $1)
                  AND ($2::text IS NULL OR type = $2)
                ORDER BY created_at DESC
                LIMIT $3
                """,
                status.value if status else None,
                job_type.value if job_type else None,
                limit,
            )
        return [_row_to_job(row) for row in rows]

    async def add_dependency(self, job_id: str, depends_on_job_id: str) -> JobDependency:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO job_dependencies (job_id, depends_on_job_id)
                VALUES ($1, $2)
                RETURNING job_id, depends_on_job_id, created_at
                """,
                job_id,
                depends_on_job_id,
            )
        return JobDependency.model_validate(dict(row))

    async def get_dependencies(self, job_id: str) -> List[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT depends_on_job_id FROM job_dependencies WHERE job_id = $1 "
                "ORDER BY created_at, depends_on_job_id",
                job_id,
            )
        return [row["depends_on_job_id"] for row in rows]

    async def get_ready_jobs(self, now: datetime, limit: int) -> List[Job]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(READY_JOBS_SQL, now, limit)
        return [_row_to_job(row) for row in rows]

    async def claim_job(self, job_id: str, now: datetime) -> Optional[Job]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE jobs
                SET status = 'running', started_at = $2, updated_at = $2
                WHERE id = $1 AND status = 'pending'
                RETURNING *
                """,
                job_id,
                now,
            )
        return _row_to_job(row) if row else None

    async def mark_completed(self, job_id: str, result: dict[str, Any], now: datetime) -> Job:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE jobs
                SET status = 'completed',
                    completed_at = $2,
                    updated_at = $2,
                    error_message = NULL,
                    error_details = NULL,
                    context = context || jsonb_build_object('result', $3::jsonb)
                WHERE id = $1
                RETURNING *
                """,
                job_id,
                now,
                _dump(result),
            )
        return self._require(row, job_id)

    async def mark_for_retry(
        self,
        job_id: str,
        attempts: int,
        retry_after: datetime,
        error_message: Optional[str],
        error_details: Optional[dict[str, Any]],
    ) -> Job:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE jobs
                SET status = 'pending',
                    attempts = $2,
                    retry_after = $3,
                    error_message = $4,
                    error_details = $5::jsonb,
                    started_at = NULL,
                    updated_at = NOW()
                WHERE id = $1
                RETURNING *
                """,
                job_id,
                attempts,
                retry_after,
                error_message,
                _dump(error_details),
            )
        return self._require(row, job_id)

    async def mark_failed(
        self,
        job_id: str,
        attempts: int,
        error_message: Optional[str],
        error_details: Optional[dict[str, Any]],
        now: datetime,
    ) -> Job:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE jobs
                SET status = 'failed',
                    attempts = $2,
                    error_message = $3,
                    error_details = $4::jsonb,
                    completed_at = $5,
                    updated_at = $5
                WHERE id = $1
                RETURNING *
                """,
                job_id,
                attempts,
                error_message,
                _dump(error_details),
                now,
            )
        return self._require(row, job_id)

    async def reset_job(self, job_id: str) -> Job:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE jobs
                SET status = 'pending',
                    attempts = 0,
                    retry_after = NULL,
                    error_message = NULL,
                    error_details = NULL,
                    started_at = NULL,
                    completed_at = NULL,
                    updated_at = NOW()
                WHERE id = $1
                RETURNING *
                """,
                job_id,
            )
        return self._require(row, job_id)

    async def get_stale_running_jobs(self, started_before: datetime) -> List[Job]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM jobs WHERE status = 'running' AND started_at < $1",
                started_before,
            )
        return [_row_to_job(row) for row in rows]

    async def cancel_expired_jobs(self, now: datetime) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE jobs
                SET status = 'cancelled',
                    error_message = 'Job expired before it could run',
                    updated_at = $1
                WHERE status = 'pending' AND expires_at IS NOT NULL AND expires_at <= $1
                """,
                now,
            )
        # asyncpg returns the command tag, e.g. "UPDATE 3"
        return int(result.split()[-1])

    async def get_stats(self) -> QueueStats:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT status, COUNT(*) AS count FROM jobs GROUP BY status")
            oldest = await conn.fetchval(
                "SELECT MIN(created_at) FROM jobs WHERE status = 'pending'"
            )
        stats = QueueStats(oldest_pending_job=oldest)
        for row in rows:
            setattr(stats, row["status"], row["count"])
            stats.total += row["count"]
        return stats

    @staticmethod
    def _require(row: Optional[Record], job_id: str) -> Job:
        if row is None:
            raise KeyError(f"Job not found: {job_id}")
        return _row_to_job(row)
