"""Worker process: runs the job scheduler against PostgreSQL."""

import asyncio
import signal
from typing import Optional

from aiohttp import web

from changereel.core.config import Settings, settings
from changereel.core.logging import get_logger
from changereel.db.commits import PostgresCommitRepository
from changereel.db.connection import close_db_pool, get_db_pool
from changereel.db.migrations import check_migration_status, run_migrations
from changereel.jobs.postgres_store import PostgresJobStore
from changereel.jobs.scheduler import JobScheduler
from changereel.jobs.setup import build_scheduler

logger = get_logger(__name__)


async def start_health_server(
    port: Optional[int], scheduler: JobScheduler
) -> Optional[web.AppRunner]:
    """Serve /health with queue counts when a port is configured."""
    if not port:
        logger.info("Worker health port not set, health server disabled")
        return None

    async def health_check(request: web.Request) -> web.Response:
        stats = await scheduler.get_queue_stats()
        return web.json_response(
            {
                "status": "healthy",
                "pending": stats.pending,
                "running": stats.running,
                "failed": stats.failed,
            }
        )

    app = web.Application()
    app.router.add_get("/health", health_check)
    app.router.add_get("/", health_check)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info("Health check server started", port=port)
    return runner


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def request_shutdown(signum: int) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, request_shutdown, signum)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            logger.warning("Signal handlers unavailable on this platform")
            return


async def run_worker(config: Settings = settings, stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the scheduler loop until a shutdown signal arrives."""
    stop_event = stop_event or asyncio.Event()
    _install_signal_handlers(stop_event)

    pool = await get_db_pool(config.database_url)
    if not await check_migration_status(pool):
        logger.info("Job tables missing, running migrations")
        await run_migrations(pool)

    runtime = build_scheduler(
        config,
        PostgresJobStore(pool),
        PostgresCommitRepository(pool),
    )
    health_runner = await start_health_server(config.worker_health_port, runtime.scheduler)

    logger.info("Starting worker...", environment=config.environment)
    try:
        await runtime.scheduler.run(stop_event)
    finally:
        if health_runner is not None:
            await health_runner.cleanup()
            logger.info("Health check server stopped")
        await runtime.aclose()
        await close_db_pool()
        logger.info("Worker stopped")
