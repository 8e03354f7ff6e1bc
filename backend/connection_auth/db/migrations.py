"""Credential database migration system"""
import logging
from typing import List, Tuple

import aiosqlite

from connection_auth.core.clock import to_db, utcnow

logger = logging.getLogger(__name__)


# Migration format: (version, description, up_sql, down_sql)
MIGRATIONS: List[Tuple[int, str, str, str]] = [
    (
        1,
        "Initial schema",
        """-- This migration is handled by schema.py create_tables()""",
        """-- Rollback not supported for initial schema"""
    ),
    (
        2,
        "Add per-user bearer token cutoff",
        """ALTER TABLE users ADD COLUMN tokens_valid_after TEXT""",
        """ALTER TABLE users DROP COLUMN tokens_valid_after"""
    ),
]

_HARMLESS_ERRORS = (
    "duplicate column name",
    "already exists",
)


async def get_current_version(conn: aiosqlite.Connection) -> int:
    """Get current schema version"""
    try:
        cursor = await conn.execute("SELECT MAX(version) FROM schema_migrations")
        row = await cursor.fetchone()
    except aiosqlite.OperationalError:
        # Table doesn't exist yet
        return 0
    return row[0] if row and row[0] else 0


async def apply_migration(conn: aiosqlite.Connection, version: int, description: str, up_sql: str):
    """Apply a single migration"""
    statements = [stmt.strip() for stmt in up_sql.split(';') if stmt.strip()]
    for statement in statements:
        if statement.startswith('--'):
            continue
        try:
            await conn.execute(statement)
        except aiosqlite.OperationalError as e:
            if any(phrase in str(e).lower() for phrase in _HARMLESS_ERRORS):
                logger.debug(f"Migration {version}: skipping statement (already applied): {statement}")
                continue
            logger.error(f"Migration {version} failed on statement: {statement}: {e}")
            raise

    await conn.execute(
        "INSERT INTO schema_migrations (version, description, applied_at) VALUES (?, ?, ?)",
        (version, description, to_db(utcnow()))
    )
    await conn.commit()
    logger.info(f"Applied migration {version}: {description}")


async def run_migrations(conn: aiosqlite.Connection) -> int:
    """Run all pending migrations and return the resulting version"""
    current_version = await get_current_version(conn)

    for version, description, up_sql, _ in MIGRATIONS:
        if version > current_version:
            await apply_migration(conn, version, description, up_sql)

    final_version = await get_current_version(conn)
    if final_version > current_version:
        logger.info(f"Credential database migrated from version {current_version} to {final_version}")
    return final_version
