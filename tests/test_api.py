"""Tests for the job admin endpoints."""

import httpx
import pytest
from fastapi import FastAPI

from changereel.api import jobs
from changereel.core.errors import NonRetryableError
from changereel.models.job import JobType
from tests.conftest import FETCH_DATA


@pytest.fixture
def app(scheduler) -> FastAPI:
    app = FastAPI()
    app.include_router(jobs.router, prefix="/api")
    app.state.scheduler = scheduler
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestJobsApi:
    async def test_stats(self, client, scheduler):
        await scheduler.enqueue(JobType.FETCH_DIFF, FETCH_DATA)

        response = await client.get("/api/admin/stats")

        assert response.status_code == 200
        assert response.json()["pending"] == 1

    async def test_list_filters_by_type(self, client, scheduler):
        fetch = await scheduler.enqueue(JobType.FETCH_DIFF, FETCH_DATA)
        await scheduler.enqueue(JobType.GENERATE_SUMMARY, {"commit_id": "c-1"}, depends_on=[fetch.id])

        response = await client.get("/api/admin/jobs", params={"type": "fetch_diff"})

        assert response.status_code == 200
        assert [job["id"] for job in response.json()] == [fetch.id]

    async def test_get_job_includes_dependencies(self, client, scheduler):
        fetch = await scheduler.enqueue(JobType.FETCH_DIFF, FETCH_DATA)
        summary = await scheduler.enqueue(
            JobType.GENERATE_SUMMARY, {"commit_id": "c-1"}, depends_on=[fetch.id]
        )

        response = await client.get(f"/api/admin/jobs/{summary.id}")

        assert response.status_code == 200
        assert response.json()["depends_on"] == [fetch.id]

    async def test_get_missing_job(self, client):
        response = await client.get("/api/admin/jobs/nope")

        assert response.status_code == 404

    async def test_retry_failed_job(self, client, scheduler, fetch_handler):
        fetch_handler.outcomes = [NonRetryableError("bad")]
        job = await scheduler.enqueue(JobType.FETCH_DIFF, FETCH_DATA)
        await scheduler.dispatch_ready()

        response = await client.post(f"/api/admin/jobs/{job.id}/retry")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["attempts"] == 0

    async def test_retry_pending_job_rejected(self, client, scheduler):
        job = await scheduler.enqueue(JobType.FETCH_DIFF, FETCH_DATA)

        response = await client.post(f"/api/admin/jobs/{job.id}/retry")

        assert response.status_code == 400

    async def test_scheduler_unavailable(self):
        app = FastAPI()
        app.include_router(jobs.router, prefix="/api")
        transport = httpx.ASGITransport(app=app)

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/admin/stats")

        assert response.status_code == 503
