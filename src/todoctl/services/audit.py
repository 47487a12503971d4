"""AuditLog — append-only record of every dispatched command.

INVARIANT: Entry ids are assigned under a single lock, so they stay unique
and strictly increasing even when parallel batches append concurrently.
Entries are frozen and never edited or removed; a reversal is recorded as
a new entry whose ``rollback_id`` points back at the reversed one.

When constructed with an engine the log writes through to the
``action_logs`` table and continues numbering from the stored maximum.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from sqlalchemy import insert, select

from todoctl.domain.types import MUTATING_ACTIONS
from todoctl.infrastructure.database.schema import action_logs
from todoctl.services._helpers import now_iso, parse_iso

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from todoctl.domain.commands import Command

logger = logging.getLogger(__name__)


class ActionLogEntry(BaseModel):
    """One executed command. ``execution_time`` is in milliseconds."""

    model_config = {"frozen": True}

    id: int
    command: str
    action: str
    target_type: str
    target_id: str
    agent_id: str | None = None
    session_id: str | None = None
    correlation_id: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    success: bool
    error_code: str | None = None
    error_message: str | None = None
    execution_time: float
    timestamp: str
    rollback_id: int | None = None


class AuditStats(BaseModel):
    """Aggregates over the whole log plus a recent window."""

    model_config = {"frozen": True}

    total_commands: int
    success_rate: float
    by_action: dict[str, int]
    by_agent: dict[str, int]
    average_response_time: float
    window_seconds: int
    recent_commands: int
    commands_per_minute: float
    error_rate: float


def _json_safe(value: Any) -> Any:
    """Round-trip *value* through JSON so memory and storage agree."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _row_to_entry(row: Any) -> ActionLogEntry:
    data = dict(row._mapping)
    data["parameters"] = json.loads(data["parameters"]) if data["parameters"] else {}
    data["result"] = json.loads(data["result"]) if data["result"] else None
    data["success"] = bool(data["success"])
    return ActionLogEntry.model_validate(data)


class AuditLog:
    """Thread-safe, append-only action log.

    Parameters:
        engine: Optional SQLAlchemy engine with the ``action_logs`` table.
            When given, existing entries are loaded and new ones persisted.
    """

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._entries: list[ActionLogEntry] = []
        self._by_id: dict[int, ActionLogEntry] = {}
        if engine is not None:
            self._load()
        self._next_id = (self._entries[-1].id + 1) if self._entries else 1

    @property
    def persistent(self) -> bool:
        return self._engine is not None

    def _load(self) -> None:
        assert self._engine is not None
        with self._engine.connect() as conn:
            rows = conn.execute(select(action_logs).order_by(action_logs.c.id)).fetchall()
        for row in rows:
            entry = _row_to_entry(row)
            self._entries.append(entry)
            self._by_id[entry.id] = entry
        if rows:
            logger.debug("Loaded %d audit entries", len(rows))

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def append(
        self,
        command: Command,
        *,
        success: bool,
        execution_time: float,
        correlation_id: str | None = None,
        result: Any = None,
        error_code: str | None = None,
        error_message: str | None = None,
        rollback_id: int | None = None,
    ) -> ActionLogEntry:
        """Record one dispatched command and return the stored entry."""
        with self._lock:
            entry = ActionLogEntry(
                id=self._next_id,
                command=command.canonical,
                action=str(command.action),
                target_type=str(command.target_type),
                target_id=command.target_id,
                agent_id=command.agent_id,
                session_id=command.session_id,
                correlation_id=correlation_id,
                parameters=_json_safe(dict(command.parameters)) or {},
                result=_json_safe(result),
                success=success,
                error_code=error_code,
                error_message=error_message,
                execution_time=round(execution_time, 3),
                timestamp=now_iso(),
                rollback_id=rollback_id if rollback_id in self._by_id else None,
            )
            if self._engine is not None:
                self._persist(entry)
            self._entries.append(entry)
            self._by_id[entry.id] = entry
            self._next_id += 1
        return entry

    def _persist(self, entry: ActionLogEntry) -> None:
        assert self._engine is not None
        row = entry.model_dump()
        row["parameters"] = json.dumps(entry.parameters)
        row["result"] = json.dumps(entry.result) if entry.result is not None else None
        row["success"] = int(entry.success)
        with self._engine.begin() as conn:
            conn.execute(insert(action_logs).values(**row))

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def _snapshot(self) -> list[ActionLogEntry]:
        with self._lock:
            return list(self._entries)

    def get(self, entry_id: int) -> ActionLogEntry | None:
        return self._by_id.get(entry_id)

    def history(
        self,
        limit: int = 50,
        offset: int = 0,
        session_id: str | None = None,
    ) -> list[ActionLogEntry]:
        """Newest-first page, optionally restricted to one session."""
        entries = self._snapshot()
        if session_id is not None:
            entries = [e for e in entries if e.session_id == session_id]
        entries.reverse()
        start = max(offset, 0)
        return entries[start : start + max(limit, 0)]

    def query(
        self,
        *,
        agent_id: str | None = None,
        action: str | None = None,
        target_type: str | None = None,
        success: bool | None = None,
        since: str | datetime | None = None,
        until: str | datetime | None = None,
    ) -> list[ActionLogEntry]:
        """Filter entries (oldest first). Time bounds are inclusive."""
        lower = parse_iso(since)
        upper = parse_iso(until)
        matched: list[ActionLogEntry] = []
        for entry in self._snapshot():
            if agent_id is not None and entry.agent_id != agent_id:
                continue
            if action is not None and entry.action != action:
                continue
            if target_type is not None and entry.target_type != target_type:
                continue
            if success is not None and entry.success != success:
                continue
            if lower or upper:
                stamp = parse_iso(entry.timestamp)
                if stamp is None:
                    continue
                if (lower and stamp < lower) or (upper and stamp > upper):
                    continue
            matched.append(entry)
        return matched

    def rollback_candidates(self, target_type: str, target_id: str) -> list[ActionLogEntry]:
        """Successful mutating entries on one target not yet reversed, newest first."""
        entries = self._snapshot()
        reversed_ids = {e.rollback_id for e in entries if e.rollback_id is not None}
        return [
            e
            for e in reversed(entries)
            if e.target_type == target_type
            and e.target_id == target_id
            and e.success
            and e.action in MUTATING_ACTIONS
            and e.id not in reversed_ids
        ]

    def stats(self, window_seconds: int = 300) -> AuditStats:
        entries = self._snapshot()
        total = len(entries)
        succeeded = sum(1 for e in entries if e.success)
        cutoff = datetime.now(UTC) - timedelta(seconds=window_seconds)
        recent = [e for e in entries if (parse_iso(e.timestamp) or cutoff) > cutoff]
        recent_errors = sum(1 for e in recent if not e.success)
        return AuditStats(
            total_commands=total,
            success_rate=round(succeeded / total, 4) if total else 1.0,
            by_action=dict(Counter(e.action for e in entries)),
            by_agent=dict(Counter(e.agent_id or "anonymous" for e in entries)),
            average_response_time=(
                round(sum(e.execution_time for e in entries) / total, 3) if total else 0.0
            ),
            window_seconds=window_seconds,
            recent_commands=len(recent),
            commands_per_minute=round(len(recent) / (max(window_seconds, 1) / 60), 3),
            error_rate=round(recent_errors / len(recent), 4) if recent else 0.0,
        )

    def export_json(self) -> str:
        """All entries as a JSON document, oldest first."""
        return json.dumps(
            {
                "exported_at": now_iso(),
                "count": len(self),
                "entries": [e.model_dump(mode="json") for e in self._snapshot()],
            },
            indent=2,
        )
