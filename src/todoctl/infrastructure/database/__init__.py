"""SQLite database engine and schema via SQLAlchemy Core."""

from todoctl.infrastructure.database.engine import create_db_engine, init_database
from todoctl.infrastructure.database.schema import (
    action_logs,
    agents,
    items,
    lists,
    metadata,
    sessions,
)

__all__ = [
    "action_logs",
    "agents",
    "create_db_engine",
    "init_database",
    "items",
    "lists",
    "metadata",
    "sessions",
]
