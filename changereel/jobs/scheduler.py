"""Pull-based job scheduler with dependencies, retries and stale-job recovery."""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from changereel.core.backoff import exponential_backoff_ms
from changereel.core.errors import (
    AuthError,
    CapacityError,
    ChangeReelError,
    JobValidationError,
)
from changereel.core.logging import get_logger
from changereel.jobs.handlers.base import HandlerTable
from changereel.jobs.store import JobStore
from changereel.models.job import Job, JobResult, JobStatus, JobType, QueueStats, utcnow

logger = get_logger(__name__)


class SchedulerConfig(BaseModel):
    """Scheduler tuning knobs; durations are milliseconds."""

    max_concurrent_jobs: int = Field(default=5, ge=1)
    poll_interval_ms: int = Field(default=2000, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    max_retry_delay_ms: int = Field(default=30000, ge=0)
    retry_jitter_ms: int = Field(default=100, ge=0)
    job_timeout_ms: int = Field(default=300000, ge=1)
    default_max_attempts: int = Field(default=3, ge=1, le=10)
    auth_max_attempts: int = Field(default=2, ge=1)
    maintenance_interval_ms: int = Field(default=300000, ge=1)

    @classmethod
    def from_settings(cls, settings) -> "SchedulerConfig":
        return cls(
            max_concurrent_jobs=settings.job_max_concurrent,
            poll_interval_ms=settings.job_poll_interval_ms,
            retry_delay_ms=settings.job_retry_delay_ms,
            max_retry_delay_ms=settings.job_max_retry_delay_ms,
            retry_jitter_ms=settings.job_retry_jitter_ms,
            job_timeout_ms=settings.job_timeout_ms,
            default_max_attempts=settings.job_default_max_attempts,
            auth_max_attempts=settings.job_auth_max_attempts,
            maintenance_interval_ms=settings.job_maintenance_interval_ms,
        )


PRODUCTION_CONFIG = SchedulerConfig(
    max_concurrent_jobs=10,
    retry_delay_ms=2000,
    max_retry_delay_ms=60000,
    job_timeout_ms=600000,
)

DEVELOPMENT_CONFIG = SchedulerConfig(
    max_concurrent_jobs=3,
    retry_delay_ms=1000,
    max_retry_delay_ms=10000,
    job_timeout_ms=300000,
)


class JobScheduler:
    """
    Dispatches ready jobs to their handlers.

    A job is ready when it is pending, its scheduled time and any retry delay
    have passed, it has not expired and every job it depends on completed.
    Each dispatch claims the job atomically through the store, so several
    schedulers may share one store.
    """

    def __init__(
        self,
        store: JobStore,
        handlers: HandlerTable,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.handlers = handlers
        self.config = config or SchedulerConfig()
        self.clock = clock
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_jobs)

    async def enqueue(
        self,
        job_type: JobType | str,
        data: dict[str, Any],
        priority: int = 0,
        depends_on: Iterable[str] = (),
        scheduled_for: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> Job:
        """
        Validate and persist a new pending job.

        Raises:
            JobValidationError: If the type is unknown, the data does not fit
                the handler's payload, the job fields are out of range or a
                dependency does not exist
        """
        try:
            job_type = JobType(job_type)
        except ValueError:
            raise JobValidationError(f"Unknown job type: {job_type}") from None

        payload = self.handlers.get(job_type).validate(data)

        depends_on = list(dict.fromkeys(depends_on))
        for dep_id in depends_on:
            if await self.store.get_job(dep_id) is None:
                raise JobValidationError(f"Dependency job not found: {dep_id}")

        now = self.clock()
        try:
            job = Job(
                type=job_type,
                priority=priority,
                data=payload.model_dump(mode="json", exclude_none=True),
                max_attempts=max_attempts or self.config.default_max_attempts,
                scheduled_for=scheduled_for or now,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            raise JobValidationError(
                "Invalid job fields",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

        job = await self.store.create_job(job, depends_on)
        logger.info(
            "Job enqueued",
            job_id=job.id,
            job_type=job.type.value,
            priority=job.priority,
            depends_on=depends_on,
        )
        return job

    async def add_dependency(self, job_id: str, depends_on_job_id: str) -> None:
        """
        Make ``job_id`` wait for ``depends_on_job_id``.

        Raises:
            JobValidationError: On self edges, duplicates, unknown jobs or
                edges that would create a cycle
        """
        if job_id == depends_on_job_id:
            raise JobValidationError("A job cannot depend on itself")
        for candidate in (job_id, depends_on_job_id):
            if await self.store.get_job(candidate) is None:
                raise JobValidationError(f"Job not found: {candidate}")
        if depends_on_job_id in await self.store.get_dependencies(job_id):
            raise JobValidationError("Dependency already exists")
        if await self._reaches(depends_on_job_id, job_id):
            raise JobValidationError(
                "Dependency would create a cycle",
                details={"job_id": job_id, "depends_on_job_id": depends_on_job_id},
            )
        await self.store.add_dependency(job_id, depends_on_job_id)

    async def _reaches(self, start: str, target: str) -> bool:
        """True if ``target`` is reachable from ``start`` along dependency edges."""
        seen = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current == target:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(await self.store.get_dependencies(current))
        return False

    async def dispatch_ready(self, limit: Optional[int] = None) -> List[Job]:
        """Run one dispatch cycle and return the dispatched jobs in their new state."""
        ready = await self.store.get_ready_jobs(
            self.clock(), limit or self.config.max_concurrent_jobs
        )
        if not ready:
            return []

        logger.debug("Dispatching ready jobs", count=len(ready))
        results = await asyncio.gather(*(self._run_job(job) for job in ready))
        return [job for job in results if job is not None]

    async def _run_job(self, job: Job) -> Optional[Job]:
        async with self._semaphore:
            claimed = await self.store.claim_job(job.id, self.clock())
            if claimed is None:
                logger.debug("Job already claimed elsewhere", job_id=job.id)
                return None
            claimed.context.update(await self._dependency_context(claimed.id))
            return await self._execute(claimed)

    async def _dependency_context(self, job_id: str) -> dict[str, Any]:
        dependency_results: dict[str, Any] = {}
        for dep_id in await self.store.get_dependencies(job_id):
            dep = await self.store.get_job(dep_id)
            dependency_results[dep_id] = dep.context.get("result") if dep else None
        if not dependency_results:
            return {}
        return {
            "dependency_results": dependency_results,
            "previous_job_result": list(dependency_results.values())[-1],
        }

    async def _execute(self, job: Job) -> Job:
        start_time = time.time()
        log = logger.bind(job_id=job.id, job_type=job.type.value, attempt=job.attempts + 1)
        log.info("Job started")

        try:
            handler = self.handlers.get(job.type)
            payload = handler.validate(job.data)
            result = await asyncio.wait_for(
                handler.handle(job, payload),
                timeout=self.config.job_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            log.warning("Job timed out", timeout_ms=self.config.job_timeout_ms)
            return await self._record_failure(
                job, "Job timed out", {"timeout_ms": self.config.job_timeout_ms}, retryable=True
            )
        except CapacityError as e:
            return await self._reschedule(job, e)
        except AuthError as e:
            log.warning("Job failed authentication", error=str(e))
            return await self._record_failure(
                job,
                str(e),
                self._error_details(e),
                retryable=True,
                max_attempts=self.config.auth_max_attempts,
            )
        except ChangeReelError as e:
            log.warning("Job failed", error=str(e), retryable=e.retryable)
            return await self._record_failure(
                job, str(e), self._error_details(e), retryable=e.retryable
            )
        except Exception as e:
            log.error("Job raised unexpected error", error=str(e), exc_info=True)
            return await self._record_failure(
                job, str(e) or type(e).__name__, {"error_type": type(e).__name__}, retryable=True
            )

        duration_ms = int((time.time() - start_time) * 1000)
        if result.success:
            completed = await self.store.mark_completed(
                job.id, self._stored_result(result), self.clock()
            )
            log.info("Job completed", duration_ms=duration_ms)
            return completed

        log.warning("Job reported failure", error=result.error, retryable=result.retryable)
        return await self._record_failure(
            job, result.error or "Job failed", result.error_details, retryable=result.retryable
        )

    @staticmethod
    def _stored_result(result: JobResult) -> dict[str, Any]:
        return result.model_dump(mode="json", include={"success", "data", "metadata"})

    @staticmethod
    def _error_details(error: ChangeReelError) -> dict[str, Any]:
        details: dict[str, Any] = {"error_type": type(error).__name__, **error.details}
        status_code = getattr(error, "status_code", None)
        if status_code is not None:
            details["status_code"] = status_code
        return details

    async def _reschedule(self, job: Job, error: CapacityError) -> Job:
        """Put a job back without consuming an attempt."""
        retry_after = self.clock() + timedelta(milliseconds=error.retry_after_ms)
        logger.info(
            "Job rescheduled, capacity exhausted",
            job_id=job.id,
            job_type=job.type.value,
            retry_after_ms=error.retry_after_ms,
        )
        return await self.store.mark_for_retry(
            job.id,
            attempts=job.attempts,
            retry_after=retry_after,
            error_message=str(error),
            error_details=self._error_details(error),
        )

    async def _record_failure(
        self,
        job: Job,
        error_message: str,
        error_details: Optional[dict[str, Any]],
        retryable: bool,
        max_attempts: Optional[int] = None,
    ) -> Job:
        attempts = job.attempts + 1
        limit = min(job.max_attempts, max_attempts or job.max_attempts)

        if retryable and attempts < limit:
            delay_ms = exponential_backoff_ms(
                attempts,
                self.config.retry_delay_ms,
                self.config.max_retry_delay_ms,
                self.config.retry_jitter_ms,
            )
            logger.info(
                "Job scheduled for retry",
                job_id=job.id,
                attempts=attempts,
                max_attempts=limit,
                delay_ms=delay_ms,
            )
            return await self.store.mark_for_retry(
                job.id,
                attempts=attempts,
                retry_after=self.clock() + timedelta(milliseconds=delay_ms),
                error_message=error_message,
                error_details=error_details,
            )

        logger.error(
            "Job failed permanently",
            job_id=job.id,
            job_type=job.type.value,
            attempts=attempts,
            error=error_message,
        )
        return await self.store.mark_failed(
            job.id,
            attempts=min(attempts, job.max_attempts),
            error_message=error_message,
            error_details=error_details,
            now=self.clock(),
        )

    async def recover_stale_jobs(self) -> int:
        """Count running jobs past the timeout as failed attempts; returns how many."""
        cutoff = self.clock() - timedelta(milliseconds=self.config.job_timeout_ms)
        stale = await self.store.get_stale_running_jobs(cutoff)
        for job in stale:
            logger.warning(
                "Recovering stale job",
                job_id=job.id,
                job_type=job.type.value,
                started_at=job.started_at.isoformat() if job.started_at else None,
            )
            await self._record_failure(
                job,
                "Job timed out",
                {"started_at": job.started_at.isoformat() if job.started_at else None},
                retryable=True,
            )
        return len(stale)

    async def expire_jobs(self) -> int:
        count = await self.store.cancel_expired_jobs(self.clock())
        if count:
            logger.info("Expired pending jobs cancelled", count=count)
        return count

    async def get_queue_stats(self) -> QueueStats:
        return await self.store.get_stats()

    async def retry_job(self, job_id: str) -> Job:
        """
        Return a failed job to the queue with attempts reset.

        Raises:
            KeyError: If the job does not exist
            JobValidationError: If the job is not in the failed state
        """
        job = await self.store.get_job(job_id)
        if job is None:
            raise KeyError(f"Job not found: {job_id}")
        if job.status != JobStatus.FAILED:
            raise JobValidationError(
                f"Only failed jobs can be retried (status: {job.status.value})"
            )
        job = await self.store.reset_job(job_id)
        logger.info("Job reset for retry", job_id=job_id, job_type=job.type.value)
        return job

    async def run_maintenance(self) -> None:
        await self.recover_stale_jobs()
        await self.expire_jobs()

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll for ready jobs until ``stop_event`` is set."""
        logger.info(
            "Scheduler started",
            max_concurrent_jobs=self.config.max_concurrent_jobs,
            poll_interval_ms=self.config.poll_interval_ms,
        )
        await self.run_maintenance()
        last_maintenance = time.monotonic()

        while not stop_event.is_set():
            try:
                await self.dispatch_ready()
                if (time.monotonic() - last_maintenance) * 1000 >= self.config.maintenance_interval_ms:
                    await self.run_maintenance()
                    last_maintenance = time.monotonic()
            except Exception as e:
                logger.error("Scheduler cycle failed", error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=self.config.poll_interval_ms / 1000
                )
            except asyncio.TimeoutError:
                pass

        logger.info("Scheduler stopped")
