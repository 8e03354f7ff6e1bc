from .database import connect, create_tables
from .schema import ALL_TABLES, INDEXES
from .migrations import MIGRATIONS, run_migrations

__all__ = [
    "connect",
    "create_tables",
    "ALL_TABLES",
    "INDEXES",
    "MIGRATIONS",
    "run_migrations"
]
