import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

from connection_auth.core.errors import PersistenceError
from connection_auth.db.migrations import run_migrations
from connection_auth.db.schema import ALL_TABLES, INDEXES

logger = logging.getLogger(__name__)


@asynccontextmanager
async def connect(db_path: str, **kwargs) -> AsyncIterator[aiosqlite.Connection]:
    """
    Open a short-lived connection to the credential database.

    Integrity errors propagate unchanged so callers can map unique-constraint
    violations; every other SQLite failure becomes a PersistenceError.
    """
    try:
        async with aiosqlite.connect(db_path, **kwargs) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            yield db
    except aiosqlite.IntegrityError:
        raise
    except aiosqlite.Error as e:
        logger.error(f"Credential database error ({db_path}): {e}")
        raise PersistenceError() from e


async def create_tables(db_path: str):
    """Create all tables and indexes, then apply pending migrations"""
    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    async with connect(db_path) as db:
        for table_sql in ALL_TABLES:
            await db.execute(table_sql)
        for index_sql in INDEXES:
            await db.execute(index_sql)
        await db.commit()
        await run_migrations(db)

    logger.info(f"Credential database initialized: {db_path}")
