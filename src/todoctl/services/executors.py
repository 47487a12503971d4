"""Default domain executors over :class:`SqlStore`.

One handler per (action, target_type) pair for lists, items, agents, and
sessions. Handlers trust the router to have validated mutating payloads
but still parse them with the model schemas, since executors can also be
invoked directly. Not-found and bad-input conditions raise
:class:`CommandFailure`; everything else propagates to the registry.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import partial
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from todoctl.domain.commands import changes_for
from todoctl.domain.lifecycle import with_completion_stamp
from todoctl.domain.schemas import AgentUpdate, ItemUpdate, ListUpdate, SessionUpdate
from todoctl.domain.types import Action, ErrorCode, ModelKind, TargetType
from todoctl.services._helpers import now_iso, parse_iso
from todoctl.services.factories import FACTORIES
from todoctl.services.registry import CommandFailure

if TYPE_CHECKING:
    from pydantic import BaseModel

    from todoctl.infrastructure.store import SqlStore
    from todoctl.services.registry import ExecutionContext, ExecutorRegistry

logger = logging.getLogger(__name__)

UPDATE_SCHEMAS: dict[ModelKind, type[BaseModel]] = {
    ModelKind.LIST: ListUpdate,
    ModelKind.ITEM: ItemUpdate,
    ModelKind.AGENT: AgentUpdate,
    ModelKind.SESSION: SessionUpdate,
}

# Shorthand actions available on lists and items.
_SHORTHANDS: dict[Action, str | None] = {
    Action.RENAME: "title",
    Action.REORDER: "position",
    Action.STATUS: "status",
    Action.MARK_DONE: None,
}


def _invalid(exc: ValidationError) -> CommandFailure:
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first["loc"]) or "payload"
    return CommandFailure(
        f"Invalid {field}: {first['msg']}",
        code=ErrorCode.VALIDATION_ERROR,
        details=f"{exc.error_count()} field error(s)",
    )


def _not_found(kind: ModelKind, entity_id: str) -> CommandFailure:
    return CommandFailure(f"{kind} '{entity_id}' not found")


class TodoExecutors:
    """Binds CRUD handlers for every stored model to a registry."""

    def __init__(self, store: SqlStore) -> None:
        self._store = store

    def register_all(self, registry: ExecutorRegistry) -> None:
        for kind in ModelKind:
            target = TargetType(kind.value)
            registry.register(Action.CREATE, target, partial(self.create, kind))
            registry.register(Action.READ, target, partial(self.read, kind))
            registry.register(Action.UPDATE, target, partial(self.update, kind))
            registry.register(Action.DELETE, target, partial(self.delete, kind))
        for kind in (ModelKind.LIST, ModelKind.ITEM):
            target = TargetType(kind.value)
            for action in _SHORTHANDS:
                registry.register(action, target, partial(self.shorthand, kind, action))

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def create(
        self,
        kind: ModelKind,
        target_id: str,
        parameters: dict[str, Any],
        ctx: ExecutionContext,
    ) -> dict[str, Any]:
        ctx.report_progress("building", model=str(kind))
        try:
            record = FACTORIES[kind].build(
                parameters, entity_id=target_id, created_by=ctx.command.agent_id
            )
        except ValidationError as exc:
            raise _invalid(exc) from exc
        if self._store.resolve_by_id(kind, target_id) is not None:
            msg = f"{kind} '{target_id}' already exists"
            raise CommandFailure(msg, code=ErrorCode.VALIDATION_ERROR)
        ctx.report_progress("persisting", model=str(kind))
        created = self._store.insert(kind, record)
        logger.debug("Created %s %s", kind, target_id)
        return created

    def read(
        self,
        kind: ModelKind,
        target_id: str,
        parameters: dict[str, Any],
        ctx: ExecutionContext,
    ) -> dict[str, Any]:
        record = self._store.resolve_by_id(kind, target_id)
        if record is None:
            raise _not_found(kind, target_id)
        include_items = parameters.get("include_items", parameters.get("includeItems"))
        if kind == ModelKind.LIST and include_items:
            ctx.report_progress("loading_items")
            record["items"] = sorted(
                (
                    i
                    for i in self._store.enumerate_all(ModelKind.ITEM)
                    if i.get("list_id") == target_id
                ),
                key=lambda i: (i.get("position") or 0, i["id"]),
            )
        return record

    def update(
        self,
        kind: ModelKind,
        target_id: str,
        parameters: dict[str, Any],
        ctx: ExecutionContext,
    ) -> dict[str, Any]:
        try:
            parsed = UPDATE_SCHEMAS[kind].model_validate(parameters)
        except ValidationError as exc:
            raise _invalid(exc) from exc
        changes = parsed.model_dump(mode="json", exclude_unset=True)
        return self._apply(kind, target_id, changes, ctx)

    def shorthand(
        self,
        kind: ModelKind,
        action: Action,
        target_id: str,
        parameters: dict[str, Any],
        ctx: ExecutionContext,
    ) -> dict[str, Any]:
        """rename / reorder / status / mark_done as a one-field update."""
        field = _SHORTHANDS[action]
        if field is not None and field not in parameters:
            msg = f"{action} requires the '{field}' parameter"
            raise CommandFailure(msg, code=ErrorCode.VALIDATION_ERROR)
        return self.update(kind, target_id, changes_for(action, parameters), ctx)

    def delete(
        self,
        kind: ModelKind,
        target_id: str,
        parameters: dict[str, Any],
        ctx: ExecutionContext,
    ) -> dict[str, Any]:
        ctx.report_progress("deleting", model=str(kind))
        if not self._store.delete(kind, target_id):
            raise _not_found(kind, target_id)
        return {"deleted": True, "model": str(kind), "id": target_id}

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _apply(
        self,
        kind: ModelKind,
        target_id: str,
        changes: dict[str, Any],
        ctx: ExecutionContext,
    ) -> dict[str, Any]:
        current = self._store.resolve_by_id(kind, target_id)
        if current is None:
            raise _not_found(kind, target_id)
        now = now_iso()
        if kind in (ModelKind.LIST, ModelKind.ITEM):
            changes = with_completion_stamp(changes, current, now)
        if kind == ModelKind.SESSION:
            changes["last_activity"] = now
            if "expiration_minutes" in changes:
                created = parse_iso(current.get("created_at")) or parse_iso(now)
                assert created is not None
                expires = created + timedelta(minutes=changes["expiration_minutes"])
                changes["expires_at"] = expires.isoformat()
        else:
            changes["updated_at"] = now
        ctx.report_progress("persisting", model=str(kind), fields=sorted(changes))
        updated = self._store.update(kind, target_id, changes)
        if updated is None:
            raise _not_found(kind, target_id)
        return updated
