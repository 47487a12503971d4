"""Shared pytest fixtures and test helpers for todoctl tests."""

from __future__ import annotations

from collections.abc import Callable, Generator, Iterable
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from sqlalchemy.engine import Engine

from todoctl.config.settings import TodoSettings
from todoctl.domain.commands import parse_command
from todoctl.infrastructure.database.engine import init_database
from todoctl.infrastructure.store import SqlStore
from todoctl.services.context import ControlPlane
from todoctl.services.result import Response
from todoctl.services.router import CommandRouter


class InMemoryQuery:
    """Dict-backed query capability for validation and integrity tests."""

    def __init__(self, **datasets: list[dict[str, Any]]) -> None:
        self.data: dict[str, dict[str, dict[str, Any]]] = {
            model: {r["id"]: dict(r) for r in records} for model, records in datasets.items()
        }
        self.broken: set[str] = set()

    def add(self, model: str, **record: Any) -> dict[str, Any]:
        self.data.setdefault(model, {})[record["id"]] = record
        return record

    def resolve_by_id(self, model: str, entity_id: str) -> dict[str, Any] | None:
        if str(model) in self.broken:
            msg = f"{model} table is unavailable"
            raise RuntimeError(msg)
        found = self.data.get(str(model), {}).get(entity_id)
        return dict(found) if found is not None else None

    def enumerate_all(self, model: str) -> Iterable[dict[str, Any]]:
        if str(model) in self.broken:
            msg = f"{model} table is unavailable"
            raise RuntimeError(msg)
        return [dict(r) for r in self.data.get(str(model), {}).values()]


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def db_engine(tmp_path: Path) -> Generator[Engine]:
    """Initialized SQLite engine with all tables created."""
    engine = init_database(tmp_path)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def store(db_engine: Engine) -> SqlStore:
    return SqlStore(db_engine)


@pytest.fixture
def memory_query() -> InMemoryQuery:
    return InMemoryQuery()


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TodoSettings:
    """Defaults rooted at a temp directory, isolated from the environment."""
    monkeypatch.delenv("TODOCTL_CONFIG", raising=False)
    return TodoSettings(data_root=tmp_path)


@pytest.fixture
def plane(settings: TodoSettings) -> Generator[ControlPlane]:
    """Fully initialized control plane on a temp database."""
    cp = ControlPlane(settings).initialize()
    try:
        yield cp
    finally:
        cp.cleanup()


@pytest.fixture
def router(plane: ControlPlane) -> CommandRouter:
    return plane.router


@pytest.fixture
def execute(router: CommandRouter) -> Callable[..., Response]:
    """Run a textual command, e.g. ``execute('create:list:l1{"title": "A"}')``."""

    def _execute(text: str, **envelope: Any) -> Response:
        return router.execute_command(parse_command(text, **envelope))

    return _execute


@pytest.fixture
def seeded(execute: Callable[..., Response]) -> Callable[..., Response]:
    """A list ``groceries`` holding items ``milk`` and ``bread``; agent ``bot``."""
    for text in (
        'create:list:groceries{"title": "Groceries"}',
        'create:item:milk{"list_id": "groceries", "title": "Milk", "position": 1}',
        'create:item:bread{"list_id": "groceries", "title": "Bread", "position": 0}',
        'create:agent:bot{"name": "Bot", "permissions": ["read", "create"]}',
    ):
        response = execute(text)
        assert response.success, response.error
    return execute


@pytest.fixture
def _isolated_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Change CWD to a temp directory so the CLI creates an isolated database.

    Use via ``@pytest.mark.usefixtures("_isolated_root")`` on command test
    classes.
    """
    monkeypatch.delenv("TODOCTL_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def make_query() -> type[InMemoryQuery]:
    """The in-memory query class, for tests that seed their own datasets."""
    return InMemoryQuery
