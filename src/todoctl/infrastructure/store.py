"""SqlStore — the SQLite-backed query and persistence capability.

The validation engine and integrity monitor only need two read
operations, ``resolve_by_id`` and ``enumerate_all``. The default executors
additionally use ``insert``/``update``/``delete``. Models are addressed by
plain name (``"list"``, ``"item"``, ``"agent"``, ``"session"``).
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, select, text, update

from todoctl.infrastructure.database.schema import agents, items, lists, sessions

if TYPE_CHECKING:
    from sqlalchemy import Connection, Table
    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

TABLES: dict[str, Table] = {
    "list": lists,
    "item": items,
    "agent": agents,
    "session": sessions,
}

JSON_COLUMNS: frozenset[str] = frozenset(
    {"metadata", "tags", "dependencies", "permissions", "configuration"}
)


class UnknownModelError(KeyError):
    """Raised when a model name has no backing table."""


def _encode(table: Table, record: dict[str, Any]) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for key, value in record.items():
        if key not in table.c:
            continue
        if key in JSON_COLUMNS and value is not None:
            value = json.dumps(value)
        row[key] = value
    return row


def _decode(row: Any) -> dict[str, Any]:
    record = dict(row._mapping)
    for key in JSON_COLUMNS & record.keys():
        raw = record[key]
        record[key] = json.loads(raw) if raw else None
    for key in ("tags", "dependencies", "permissions"):
        if key in record and record[key] is None:
            record[key] = []
    for key in ("metadata", "configuration"):
        if key in record and record[key] is None:
            record[key] = {}
    return record


class SqlStore:
    """CRUD over the todoctl tables, returning plain dict records."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def _table(self, model: str) -> Table:
        try:
            return TABLES[str(model)]
        except KeyError:
            raise UnknownModelError(model) from None

    # ------------------------------------------------------------------
    # Query capability
    # ------------------------------------------------------------------

    def resolve_by_id(self, model: str, entity_id: str) -> dict[str, Any] | None:
        """Return the record with *entity_id*, or None if absent."""
        table = self._table(model)
        with self._engine.connect() as conn:
            row = conn.execute(select(table).where(table.c.id == entity_id)).first()
        return _decode(row) if row is not None else None

    def enumerate_all(self, model: str) -> list[dict[str, Any]]:
        """Return every stored record of *model*, in id order."""
        table = self._table(model)
        with self._engine.connect() as conn:
            rows = conn.execute(select(table).order_by(table.c.id)).fetchall()
        return [_decode(row) for row in rows]

    def ping(self) -> bool:
        """Round-trip a trivial query. Raises if the database is unreachable."""
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def insert(self, model: str, record: dict[str, Any]) -> dict[str, Any]:
        table = self._table(model)
        with self._engine.begin() as conn:
            conn.execute(insert(table).values(**_encode(table, record)))
            row = conn.execute(select(table).where(table.c.id == record["id"])).one()
        return _decode(row)

    def update(self, model: str, entity_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        """Apply *changes* to one record. Returns the new record, or None if absent."""
        table = self._table(model)
        values = _encode(table, changes)
        values.pop("id", None)
        with self._engine.begin() as conn:
            if values:
                conn.execute(update(table).where(table.c.id == entity_id).values(**values))
            row = conn.execute(select(table).where(table.c.id == entity_id)).first()
        return _decode(row) if row is not None else None

    def delete(self, model: str, entity_id: str) -> bool:
        """Delete one record. Returns False if it did not exist.

        Lists and items cascade through the schema's foreign keys. Item ids
        held in other items' ``dependencies`` arrays are removed afterwards,
        since a JSON column cannot carry a foreign key.
        """
        table = self._table(model)
        with self._engine.begin() as conn:
            result = conn.execute(delete(table).where(table.c.id == entity_id))
            if result.rowcount and model in ("list", "item"):
                pruned = self._prune_dependencies(conn)
                if pruned:
                    logger.debug("Pruned dangling dependencies from %d item(s)", pruned)
        return bool(result.rowcount)

    def _prune_dependencies(self, conn: Connection) -> int:
        existing = set(conn.execute(select(items.c.id)).scalars())
        pruned = 0
        rows = conn.execute(
            select(items.c.id, items.c.dependencies).where(items.c.dependencies.is_not(None))
        ).fetchall()
        for row in rows:
            deps = json.loads(row.dependencies) if row.dependencies else []
            kept = [d for d in deps if d in existing]
            if kept != deps:
                conn.execute(
                    update(items).where(items.c.id == row.id).values(dependencies=json.dumps(kept))
                )
                pruned += 1
        return pruned
