"""Database migration utilities."""

from pathlib import Path

import asyncpg
from asyncpg import Pool

from changereel.core.logging import get_logger

logger = get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent.parent / "migrations"
REQUIRED_TABLES = ("commits", "jobs", "job_dependencies")


async def run_migrations(pool: Pool, migrations_dir: Path = MIGRATIONS_DIR) -> None:
    """Apply every .sql file in name order, each in its own transaction."""
    migration_files = sorted(migrations_dir.glob("*.sql"), key=lambda f: f.name)

    if not migration_files:
        logger.warning("No migration files found", directory=str(migrations_dir))
        return

    logger.info("Applying migrations", count=len(migration_files))

    async with pool.acquire() as conn:
        for migration_file in migration_files:
            logger.info("Running migration", file=migration_file.name)
            try:
                async with conn.transaction():
                    await conn.execute(migration_file.read_text())
            except asyncpg.PostgresError as e:
                logger.error("Migration failed", file=migration_file.name, error=str(e))
                raise
            logger.info("Migration completed", file=migration_file.name)


async def check_migration_status(pool: Pool) -> bool:
    """True when every table the scheduler and handlers use exists."""
    try:
        async with pool.acquire() as conn:
            present = await conn.fetchval(
                """
                SELECT COUNT(*) FROM information_schema.tables
                WHERE table_schema = current_schema() AND table_name = ANY($1::text[])
                """,
                list(REQUIRED_TABLES),
            )
    except asyncpg.PostgresError as e:
        logger.error("Could not inspect schema", error=str(e))
        return False
    return present == len(REQUIRED_TABLES)
