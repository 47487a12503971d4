"""Model factories — build complete stored records from create payloads.

A factory parses the payload with the model's create schema, fills
defaults, assigns the id and timestamps, and returns a JSON-ready dict.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from todoctl.domain.schemas import AgentCreate, ItemCreate, ListCreate, SessionCreate
from todoctl.domain.types import ModelKind
from todoctl.services._helpers import new_record_id, now_iso

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic import BaseModel


def _stamp_completion(record: dict[str, Any], now: str) -> None:
    if record["status"] == "completed" and not record.get("completed_at"):
        record["completed_at"] = now


def _finish_agent(record: dict[str, Any], now: str) -> None:
    record["last_active"] = None


def _finish_session(record: dict[str, Any], now: str) -> None:
    created = datetime.fromisoformat(now)
    record["expires_at"] = (created + timedelta(minutes=record["expiration_minutes"])).isoformat()
    record["last_activity"] = now


@dataclass(frozen=True)
class ModelFactory:
    """Builds records of one model kind."""

    model: ModelKind
    schema: type[BaseModel]
    id_prefix: str
    finish: Callable[[dict[str, Any], str], None]
    timestamps: tuple[str, ...] = ("created_at", "updated_at")

    def build(
        self,
        data: dict[str, Any],
        *,
        entity_id: str | None = None,
        created_by: str | None = None,
    ) -> dict[str, Any]:
        """Return a new record. Raises pydantic ``ValidationError`` on bad input."""
        payload = self.schema.model_validate(data)
        record = payload.model_dump(mode="json")
        now = now_iso()
        record["id"] = entity_id or new_record_id(self.id_prefix)
        for stamp in self.timestamps:
            record[stamp] = now
        if created_by and "created_by" in record and not record["created_by"]:
            record["created_by"] = created_by
        self.finish(record, now)
        return record


FACTORIES: dict[ModelKind, ModelFactory] = {
    ModelKind.LIST: ModelFactory(ModelKind.LIST, ListCreate, "list", _stamp_completion),
    ModelKind.ITEM: ModelFactory(ModelKind.ITEM, ItemCreate, "item", _stamp_completion),
    ModelKind.AGENT: ModelFactory(ModelKind.AGENT, AgentCreate, "agent", _finish_agent),
    ModelKind.SESSION: ModelFactory(
        ModelKind.SESSION,
        SessionCreate,
        "sess",
        _finish_session,
        timestamps=("created_at",),
    ),
}
