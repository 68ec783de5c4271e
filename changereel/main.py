"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from changereel.api import jobs
from changereel.core.config import settings
from changereel.core.logging import get_logger, setup_logging
from changereel.db.connection import close_db_pool, get_db_pool
from changereel.jobs.handlers import HandlerTable
from changereel.jobs.postgres_store import PostgresJobStore
from changereel.jobs.scheduler import JobScheduler
from changereel.jobs.setup import scheduler_config_for

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    pool = await get_db_pool()
    # The API only inspects and resets jobs; handlers run in the worker process.
    app.state.scheduler = JobScheduler(
        PostgresJobStore(pool), HandlerTable(), scheduler_config_for(settings)
    )
    logger.info("Application started")
    yield
    logger.info("Shutting down application...")
    app.state.scheduler = None
    await close_db_pool()
    logger.info("Application shut down")


app = FastAPI(
    title="Change Reel",
    description="Commit summaries generated from GitHub diffs and delivered by email",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {"message": "Change Reel API", "version": "0.1.0"}


@app.get("/health")
async def health_check(request: Request):
    """Database reachability and job counts by status."""
    try:
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        stats = await request.app.state.scheduler.get_queue_stats()
    except Exception as e:
        logger.warning("Health check failed", error=str(e))
        return {"status": "unhealthy", "error": str(e)}
    return {
        "status": "healthy",
        "postgres": "connected",
        "jobs": {"pending": stats.pending, "running": stats.running, "failed": stats.failed},
    }


app.include_router(jobs.router, prefix="/api", tags=["jobs"])
