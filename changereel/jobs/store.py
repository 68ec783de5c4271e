"""Job persistence contract and an in-process implementation."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, List, Optional

from changereel.models.job import (
    Job,
    JobDependency,
    JobStatus,
    JobType,
    QueueStats,
    utcnow,
)


class JobStore(ABC):
    """
    Storage for jobs and their dependency edges.

    ``claim_job`` is the one primitive that must be atomic: concurrent
    callers racing for the same pending job see exactly one winner.
    """

    @abstractmethod
    async def create_job(self, job: Job, depends_on: Iterable[str] = ()) -> Job:
        """Insert a job together with its dependency edges."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 100,
    ) -> List[Job]:
        pass

    @abstractmethod
    async def add_dependency(self, job_id: str, depends_on_job_id: str) -> JobDependency:
        pass

    @abstractmethod
    async def get_dependencies(self, job_id: str) -> List[str]:
        """Ids this job depends on."""

    @abstractmethod
    async def get_ready_jobs(self, now: datetime, limit: int) -> List[Job]:
        """
        Pending jobs eligible for dispatch, highest priority first.

        Eligible means: scheduled_for <= now, retry_after unset or elapsed,
        expires_at unset or in the future, every dependency completed.
        """

    @abstractmethod
    async def claim_job(self, job_id: str, now: datetime) -> Optional[Job]:
        """Atomically move a job from pending to running; None if it was not pending."""

    @abstractmethod
    async def mark_completed(self, job_id: str, result: dict[str, Any], now: datetime) -> Job:
        pass

    @abstractmethod
    async def mark_for_retry(
        self,
        job_id: str,
        attempts: int,
        retry_after: datetime,
        error_message: Optional[str],
        error_details: Optional[dict[str, Any]],
    ) -> Job:
        pass

    @abstractmethod
    async def mark_failed(
        self,
        job_id: str,
        attempts: int,
        error_message: Optional[str],
        error_details: Optional[dict[str, Any]],
        now: datetime,
    ) -> Job:
        pass

    @abstractmethod
    async def reset_job(self, job_id: str) -> Job:
        """Return a failed job to pending with attempts and errors cleared."""

    @abstractmethod
    async def get_stale_running_jobs(self, started_before: datetime) -> List[Job]:
        pass

    @abstractmethod
    async def cancel_expired_jobs(self, now: datetime) -> int:
        pass

    @abstractmethod
    async def get_stats(self) -> QueueStats:
        pass


class InMemoryJobStore(JobStore):
    """Process-local store; an asyncio lock makes claims atomic."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._dependencies: dict[str, List[str]] = {}
        self._lock = asyncio.Lock()

    async def create_job(self, job: Job, depends_on: Iterable[str] = ()) -> Job:
        async with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
            self._dependencies[job.id] = list(dict.fromkeys(depends_on))
            return job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 100,
    ) -> List[Job]:
        jobs = [
            job
            for job in self._jobs.values()
            if (status is None or job.status == status)
            and (job_type is None or job.type == job_type)
        ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [job.model_copy(deep=True) for job in jobs[:limit]]

    async def add_dependency(self, job_id: str, depends_on_job_id: str) -> JobDependency:
        async with self._lock:
            self._dependencies.setdefault(job_id, []).append(depends_on_job_id)
            return JobDependency(job_id=job_id, depends_on_job_id=depends_on_job_id)

    async def get_dependencies(self, job_id: str) -> List[str]:
        return list(self._dependencies.get(job_id, []))

    async def get_ready_jobs(self, now: datetime, limit: int) -> List[Job]:
        ready = [
            job
            for job in self._jobs.values()
            if job.status == JobStatus.PENDING
            and job.scheduled_for <= now
            and (job.retry_after is None or job.retry_after <= now)
            and (job.expires_at is None or job.expires_at > now)
            and self._dependencies_completed(job.id)
        ]
        ready.sort(key=lambda j: (-j.priority, j.scheduled_for))
        return [job.model_copy(deep=True) for job in ready[:limit]]

    def _dependencies_completed(self, job_id: str) -> bool:
        for dep_id in self._dependencies.get(job_id, []):
            dep = self._jobs.get(dep_id)
            if dep is None or dep.status != JobStatus.COMPLETED:
                return False
        return True

    async def claim_job(self, job_id: str, now: datetime) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return None
            job.status = JobStatus.RUNNING
            job.started_at = now
            job.updated_at = now
            return job.model_copy(deep=True)

    async def mark_completed(self, job_id: str, result: dict[str, Any], now: datetime) -> Job:
        async with self._lock:
            job = self._require(job_id)
            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.updated_at = now
            job.error_message = None
            job.error_details = None
            job.context = {**job.context, "result": result}
            return job.model_copy(deep=True)

    async def mark_for_retry(
        self,
        job_id: str,
        attempts: int,
        retry_after: datetime,
        error_message: Optional[str],
        error_details: Optional[dict[str, Any]],
    ) -> Job:
        async with self._lock:
            job = self._require(job_id)
            job.status = JobStatus.PENDING
            job.attempts = attempts
            job.retry_after = retry_after
            job.error_message = error_message
            job.error_details = error_details
            job.started_at = None
            job.updated_at = utcnow()
            return job.model_copy(deep=True)

    async def mark_failed(
        self,
        job_id: str,
        attempts: int,
        error_message: Optional[str],
        error_details: Optional[dict[str, Any]],
        now: datetime,
    ) -> Job:
        async with self._lock:
            job = self._require(job_id)
            job.status = JobStatus.FAILED
            job.attempts = attempts
            job.error_message = error_message
            job.error_details = error_details
            job.completed_at = now
            job.updated_at = now
            return job.model_copy(deep=True)

    async def reset_job(self, job_id: str) -> Job:
        async with self._lock:
            job = self._require(job_id)
            job.status = JobStatus.PENDING
            job.attempts = 0
            job.retry_after = None
            job.error_message = None
            job.error_details = None
            job.started_at = None
            job.completed_at = None
            job.updated_at = utcnow()
            return job.model_copy(deep=True)

    async def get_stale_running_jobs(self, started_before: datetime) -> List[Job]:
        return [
            job.model_copy(deep=True)
            for job in self._jobs.values()
            if job.status == JobStatus.RUNNING
            and job.started_at is not None
            and job.started_at < started_before
        ]

    async def cancel_expired_jobs(self, now: datetime) -> int:
        async with self._lock:
            count = 0
            for job in self._jobs.values():
                if (
                    job.status == JobStatus.PENDING
                    and job.expires_at is not None
                    and job.expires_at <= now
                ):
                    job.status = JobStatus.CANCELLED
                    job.error_message = "Job expired before it could run"
                    job.updated_at = now
                    count += 1
            return count

    async def get_stats(self) -> QueueStats:
        stats = QueueStats(total=len(self._jobs))
        for job in self._jobs.values():
            setattr(stats, job.status.value, getattr(stats, job.status.value) + 1)
            if job.status == JobStatus.PENDING and (
                stats.oldest_pending_job is None or job.created_at < stats.oldest_pending_job
            ):
                stats.oldest_pending_job = job.created_at
        return stats

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Job not found: {job_id}")
        return job
