"""Job queue admin endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from changereel.core.errors import JobValidationError
from changereel.core.logging import get_logger
from changereel.jobs.scheduler import JobScheduler
from changereel.models.job import Job, JobStatus, JobType, QueueStats

logger = get_logger(__name__)
router = APIRouter()


def get_scheduler(request: Request) -> JobScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Job scheduler not available")
    return scheduler


@router.get("/admin/stats", response_model=QueueStats)
async def get_queue_stats(scheduler: JobScheduler = Depends(get_scheduler)):
    """Job counts by status and the age of the oldest pending job."""
    return await scheduler.get_queue_stats()


@router.get("/admin/jobs", response_model=List[Job])
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by status"),
    job_type: Optional[JobType] = Query(None, alias="type", description="Filter by job type"),
    limit: int = Query(50, ge=1, le=1000),
    scheduler: JobScheduler = Depends(get_scheduler),
):
    return await scheduler.store.list_jobs(status=status, job_type=job_type, limit=limit)


@router.get("/admin/jobs/{job_id}")
async def get_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)):
    """A job together with the ids of the jobs it depends on."""
    job = await scheduler.store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return {
        **job.model_dump(mode="json"),
        "depends_on": await scheduler.store.get_dependencies(job_id),
    }


@router.post("/admin/jobs/{job_id}/retry", response_model=Job)
async def retry_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)):
    """Return a failed job to the queue."""
    try:
        job = await scheduler.retry_job(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found") from None
    except JobValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info("Job retried from admin API", job_id=job_id)
    return job
