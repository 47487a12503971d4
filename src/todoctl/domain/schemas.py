"""Field-level payload schemas for each stored model.

Each model has a create schema (required fields enforced, defaults filled)
and an update schema (every field optional, only present keys are applied).
Unknown keys are ignored so envelopes can carry routing hints such as
``rollback_of`` alongside the payload.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from todoctl.domain.commands import Identifier
from todoctl.domain.types import (
    Action,
    AgentRole,
    AgentStatus,
    ItemStatus,
    ListStatus,
    Priority,
    SessionStatus,
)

Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]
Description = Annotated[str, StringConstraints(max_length=2000)]
Tag = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
Minutes = Annotated[int, Field(ge=1, le=10080)]
Position = Annotated[int, Field(ge=0)]


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# --- Lists ---


class ListCreate(_Payload):
    title: Title
    description: Description | None = None
    parent_list_id: Identifier | None = None
    position: Position = 0
    priority: Priority = Priority.MEDIUM
    status: ListStatus = ListStatus.ACTIVE
    created_by: str | None = None
    completed_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ListUpdate(_Payload):
    title: Title | None = None
    description: Description | None = None
    parent_list_id: Identifier | None = None
    position: Position | None = None
    priority: Priority | None = None
    status: ListStatus | None = None
    completed_at: datetime | None = None
    metadata: dict[str, Any] | None = None


# --- Items ---


class ItemCreate(_Payload):
    list_id: Identifier
    title: Title
    description: Description | None = None
    position: Position = 0
    priority: Priority = Priority.MEDIUM
    status: ItemStatus = ItemStatus.PENDING
    due_date: datetime | None = None
    estimated_duration: Minutes | None = None
    actual_duration: Minutes | None = None
    tags: list[Tag] = Field(default_factory=list, max_length=20)
    dependencies: list[Identifier] = Field(default_factory=list, max_length=10)
    assigned_to: Identifier | None = None
    created_by: str | None = None
    completed_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ItemUpdate(_Payload):
    list_id: Identifier | None = None
    title: Title | None = None
    description: Description | None = None
    position: Position | None = None
    priority: Priority | None = None
    status: ItemStatus | None = None
    due_date: datetime | None = None
    estimated_duration: Minutes | None = None
    actual_duration: Minutes | None = None
    tags: list[Tag] | None = Field(default=None, max_length=20)
    dependencies: list[Identifier] | None = Field(default=None, max_length=10)
    assigned_to: Identifier | None = None
    completed_at: datetime | None = None
    metadata: dict[str, Any] | None = None


# --- Agents ---


class AgentCreate(_Payload):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    role: AgentRole = AgentRole.EXECUTOR
    status: AgentStatus = AgentStatus.ACTIVE
    permissions: list[Action] = Field(min_length=1, max_length=20)
    configuration: dict[str, Any] = Field(default_factory=dict)


class AgentUpdate(_Payload):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)] | None = None
    role: AgentRole | None = None
    status: AgentStatus | None = None
    permissions: list[Action] | None = Field(default=None, min_length=1, max_length=20)
    configuration: dict[str, Any] | None = None


# --- Sessions ---


class SessionCreate(_Payload):
    agent_id: Identifier | None = None
    user_id: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    expiration_minutes: Annotated[int, Field(ge=1, le=1440)] = 60
    metadata: dict[str, Any] = Field(default_factory=dict)


class SessionUpdate(_Payload):
    status: SessionStatus | None = None
    expiration_minutes: Annotated[int, Field(ge=1, le=1440)] | None = None
    metadata: dict[str, Any] | None = None
