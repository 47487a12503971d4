"""Database engine setup for SQLite with WAL mode.

SQLite is the default persistence capability behind the router's executors
and the validation engine's query capability. The DB is stored at
``{data_root}/.todoctl/todoctl.db`` unless configured otherwise.

SQLAlchemy Core (not ORM) is used: records travel as plain dicts through
validation and the command envelope, so an identity map buys nothing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from todoctl.infrastructure.database.schema import metadata

DEFAULT_DB_PATH = Path(".todoctl") / "todoctl.db"


def create_db_engine(db_path: Path) -> Engine:
    """Create a SQLite engine with WAL mode and foreign keys enabled.

    ``check_same_thread`` is disabled because parallel batches and the
    dispatch pool run executors on worker threads; each thread still gets
    its own pooled connection.
    """
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


def init_database(data_root: Path, db_path: Path | None = None) -> Engine:
    """Initialize the todoctl database under *data_root*.

    *db_path* is resolved relative to *data_root* when not absolute.
    Creates parent directories and all tables from :data:`schema.metadata`.

    Idempotent: safe to call on an existing database.
    """
    path = db_path or DEFAULT_DB_PATH
    if not path.is_absolute():
        path = data_root / path
    path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(path)
    metadata.create_all(engine)
    return engine
