"""Shared asyncpg pool for the API and the worker."""

import asyncio
from typing import Optional

import asyncpg
from asyncpg import Pool

from changereel.core.backoff import exponential_backoff_ms
from changereel.core.config import settings
from changereel.core.logging import get_logger

logger = get_logger(__name__)

CONNECT_ATTEMPTS = 5
CONNECT_BASE_DELAY_MS = 2000
CONNECT_MAX_DELAY_MS = 16000

_pool: Pool | None = None


async def _open_pool(dsn: str) -> Pool:
    pool = await asyncpg.create_pool(dsn, min_size=2, max_size=10, command_timeout=60)
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    except BaseException:
        await pool.close()
        raise
    return pool


async def get_db_pool(database_url: Optional[str] = None) -> Pool:
    """
    Return the process-wide pool, opening it on first use.

    Connection failures are retried with exponential backoff so the worker
    can start before the database does.

    Raises:
        OSError / asyncpg.PostgresError: If every attempt fails
    """
    global _pool
    if _pool is not None:
        return _pool

    dsn = database_url or settings.database_url
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        try:
            _pool = await _open_pool(dsn)
        except (OSError, asyncpg.PostgresError) as e:
            if attempt == CONNECT_ATTEMPTS:
                logger.error("Database unreachable, giving up", attempts=attempt, error=str(e))
                raise
            delay_ms = exponential_backoff_ms(attempt, CONNECT_BASE_DELAY_MS, CONNECT_MAX_DELAY_MS)
            logger.warning(
                "Database connection failed",
                attempt=attempt,
                max_attempts=CONNECT_ATTEMPTS,
                retry_in_ms=delay_ms,
                error=str(e),
            )
            await asyncio.sleep(delay_ms / 1000)
        else:
            logger.info("Database pool ready", attempt=attempt)
            break
    return _pool


async def close_db_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
