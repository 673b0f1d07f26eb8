"""
Schema migrations for the object store.

Applies the numbered ``migrations/NNN_*.sql`` files that have not been
recorded in ``schema_migrations`` yet. Each file runs in its own
transaction under an advisory lock, so several controller processes can
start against the same database.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Set, Tuple

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

# Arbitrary key shared by every process migrating this schema.
MIGRATION_LOCK_ID = 0x5653_4D47


def discover_migrations(directory: Optional[Path] = None) -> List[Tuple[str, Path]]:
    """
    List migration files in version order.

    Raises:
        FileNotFoundError: If the migrations directory doesn't exist.
    """
    directory = directory or MIGRATIONS_DIR
    if not directory.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {directory}")

    found = []
    for entry in directory.iterdir():
        match = MIGRATION_PATTERN.match(entry.name)
        if match and entry.is_file():
            found.append((match.group(1), entry))
    return sorted(found)


async def ensure_migration_table(conn: asyncpg.Connection) -> None:
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version VARCHAR(16) PRIMARY KEY,
            filename VARCHAR(255) NOT NULL,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """)


async def get_applied_versions(conn: asyncpg.Connection) -> Set[str]:
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


async def apply_migration(conn: asyncpg.Connection, version: str, path: Path) -> bool:
    """
    Apply one migration unless another process got there first.

    Returns:
        True if the migration was applied by this call.
    """
    async with conn.transaction():
        await conn.execute("SELECT pg_advisory_xact_lock($1)", MIGRATION_LOCK_ID)
        done = await conn.fetchval(
            "SELECT 1 FROM schema_migrations WHERE version = $1", version
        )
        if done:
            return False
        await conn.execute(path.read_text(encoding="utf-8"))
        await conn.execute(
            "INSERT INTO schema_migrations (version, filename) VALUES ($1, $2)",
            version,
            path.name,
        )
    logger.info(f"Applied migration {path.name}")
    return True


async def run_migrations(pool: asyncpg.Pool, directory: Optional[Path] = None) -> int:
    """
    Apply pending migrations in order.

    Returns:
        Number of migrations applied.

    Raises:
        asyncpg.PostgresError: If a migration fails. It is rolled back and
            earlier migrations stay applied.
    """
    migrations = discover_migrations(directory)
    applied_count = 0

    async with pool.acquire() as conn:
        await ensure_migration_table(conn)
        applied = await get_applied_versions(conn)

        for version, path in migrations:
            if version in applied:
                continue
            if await apply_migration(conn, version, path):
                applied_count += 1

    if applied_count:
        logger.info(f"Successfully applied {applied_count} migration(s)")
    else:
        logger.info("Database schema is up to date")
    return applied_count
