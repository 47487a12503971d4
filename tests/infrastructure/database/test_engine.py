"""Tests for database engine setup and initialization."""

from pathlib import Path

from sqlalchemy import inspect, text

from todoctl.infrastructure.database.engine import create_db_engine, init_database


class TestCreateDbEngine:
    def test_wal_mode_enabled(self, tmp_path: Path) -> None:
        engine = create_db_engine(tmp_path / "test.db")
        with engine.connect() as conn:
            result = conn.execute(text("PRAGMA journal_mode")).scalar()
            assert result == "wal"
        engine.dispose()

    def test_foreign_keys_enabled(self, tmp_path: Path) -> None:
        engine = create_db_engine(tmp_path / "test.db")
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
        engine.dispose()


class TestInitDatabase:
    def test_creates_default_db_file(self, tmp_path: Path) -> None:
        engine = init_database(tmp_path)
        assert (tmp_path / ".todoctl" / "todoctl.db").exists()
        engine.dispose()

    def test_relative_path_resolved_against_root(self, tmp_path: Path) -> None:
        engine = init_database(tmp_path, Path("data") / "store.db")
        assert (tmp_path / "data" / "store.db").exists()
        engine.dispose()

    def test_creates_all_tables(self, tmp_path: Path) -> None:
        engine = init_database(tmp_path)
        names = set(inspect(engine).get_table_names())
        assert {"lists", "items", "agents", "sessions", "action_logs"} <= names
        engine.dispose()

    def test_idempotent(self, tmp_path: Path) -> None:
        init_database(tmp_path).dispose()
        engine = init_database(tmp_path)
        assert "lists" in inspect(engine).get_table_names()
        engine.dispose()
