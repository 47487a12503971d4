"""Static capability catalog — tool and resource descriptors plus readers.

The catalog is fixed at import time and never empty. Resource content is
computed on demand from the collaborators in :class:`ResourceSources`.
"""

from __future__ import annotations

import platform
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from todoctl import __version__
from todoctl.domain.schemas import AgentCreate, ItemCreate, ListCreate
from todoctl.domain.types import Action, AgentRole, ModelKind, TargetType
from todoctl.services._helpers import now_iso, parse_iso

if TYPE_CHECKING:
    from collections.abc import Callable

    from todoctl.services.audit import AuditLog
    from todoctl.services.registry import ExecutorRegistry
    from todoctl.services.validation import EntityQuery


class ToolDescriptor(BaseModel):
    model_config = {"frozen": True}

    name: str
    description: str
    permissions: list[str]
    category: str


class ResourceDescriptor(BaseModel):
    model_config = {"frozen": True}

    uri: str
    name: str
    description: str
    mime_type: str = "application/json"
    permissions: list[str]


class ResourceContent(BaseModel):
    model_config = {"frozen": True}

    uri: str
    mime_type: str
    content: Any


class UnknownResourceError(LookupError):
    """Raised for a URI the catalog does not list."""


_READ = ["read"]
_WRITE = ["read", "write"]
_ADMIN = ["read", "write", "admin"]

TOOLS: tuple[ToolDescriptor, ...] = (
    ToolDescriptor(
        name="list.create",
        description="Create a new todo list",
        permissions=_WRITE,
        category="list-management",
    ),
    ToolDescriptor(
        name="list.read",
        description="Read list details by ID",
        permissions=_READ,
        category="list-management",
    ),
    ToolDescriptor(
        name="list.update",
        description="Update an existing list",
        permissions=_WRITE,
        category="list-management",
    ),
    ToolDescriptor(
        name="list.delete",
        description="Delete a list and its items",
        permissions=_ADMIN,
        category="list-management",
    ),
    ToolDescriptor(
        name="list.rename",
        description="Change a list's title",
        permissions=_WRITE,
        category="list-management",
    ),
    ToolDescriptor(
        name="list.reorder",
        description="Move a list to a new position",
        permissions=_WRITE,
        category="list-management",
    ),
    ToolDescriptor(
        name="list.status",
        description="Change a list's status",
        permissions=_WRITE,
        category="list-management",
    ),
    ToolDescriptor(
        name="item.create",
        description="Create a new item in a list",
        permissions=_WRITE,
        category="item-management",
    ),
    ToolDescriptor(
        name="item.read",
        description="Read item details by ID",
        permissions=_READ,
        category="item-management",
    ),
    ToolDescriptor(
        name="item.update",
        description="Update an existing item",
        permissions=_WRITE,
        category="item-management",
    ),
    ToolDescriptor(
        name="item.delete",
        description="Delete an item",
        permissions=_ADMIN,
        category="item-management",
    ),
    ToolDescriptor(
        name="item.mark_done",
        description="Mark an item as completed",
        permissions=_WRITE,
        category="item-management",
    ),
    ToolDescriptor(
        name="item.reorder",
        description="Move an item to a new position",
        permissions=_WRITE,
        category="item-management",
    ),
    ToolDescriptor(
        name="agent.create",
        description="Register a new agent",
        permissions=["admin"],
        category="agent-management",
    ),
    ToolDescriptor(
        name="agent.read",
        description="Read agent details by ID",
        permissions=_READ,
        category="agent-management",
    ),
    ToolDescriptor(
        name="agent.update",
        description="Update an agent's role, status, or permissions",
        permissions=["admin"],
        category="agent-management",
    ),
    ToolDescriptor(
        name="agent.delete",
        description="Remove an agent",
        permissions=["admin"],
        category="agent-management",
    ),
    ToolDescriptor(
        name="session.create",
        description="Open a session for an agent",
        permissions=_WRITE,
        category="session-management",
    ),
    ToolDescriptor(
        name="session.read",
        description="Read session details by ID",
        permissions=_READ,
        category="session-management",
    ),
    ToolDescriptor(
        name="system.status",
        description="Get comprehensive system status",
        permissions=_READ,
        category="system-monitoring",
    ),
    ToolDescriptor(
        name="system.monitor",
        description="Run a full integrity check",
        permissions=_READ,
        category="system-monitoring",
    ),
)

RESOURCES: tuple[ResourceDescriptor, ...] = (
    ResourceDescriptor(
        uri="list://schema",
        name="List Schema",
        description="JSON schema for todo list structure",
        permissions=_READ,
    ),
    ResourceDescriptor(
        uri="list://templates",
        name="List Templates",
        description="Pre-defined list templates for common use cases",
        permissions=_READ,
    ),
    ResourceDescriptor(
        uri="list://statistics",
        name="Global List Statistics",
        description="System-wide list statistics and metrics",
        permissions=_READ,
    ),
    ResourceDescriptor(
        uri="list://export",
        name="List Export",
        description="Export lists with their items as JSON",
        mime_type="application/octet-stream",
        permissions=["read", "export"],
    ),
    ResourceDescriptor(
        uri="item://schema",
        name="Item Schema",
        description="JSON schema for todo item structure",
        permissions=_READ,
    ),
    ResourceDescriptor(
        uri="item://statistics",
        name="Item Statistics",
        description="Item counts by status and priority",
        permissions=_READ,
    ),
    ResourceDescriptor(
        uri="agent://schema",
        name="Agent Schema",
        description="JSON schema for agent structure",
        permissions=_READ,
    ),
    ResourceDescriptor(
        uri="agent://permissions",
        name="Role Permissions",
        description="Actions granted to each agent role",
        permissions=_READ,
    ),
    ResourceDescriptor(
        uri="system://config",
        name="System Configuration",
        description="Current system configuration and settings",
        permissions=["read", "admin"],
    ),
    ResourceDescriptor(
        uri="system://version",
        name="Version Information",
        description="System and component version information",
        permissions=_READ,
    ),
    ResourceDescriptor(
        uri="system://capabilities",
        name="System Capabilities",
        description="Available actions, targets, and registered executors",
        permissions=_READ,
    ),
)

ROLE_PERMISSIONS: dict[AgentRole, list[Action]] = {
    AgentRole.READER: [Action.READ, Action.STATUS, Action.MONITOR],
    AgentRole.EXECUTOR: [
        Action.READ,
        Action.CREATE,
        Action.UPDATE,
        Action.EXECUTE,
        Action.MARK_DONE,
        Action.STATUS,
    ],
    AgentRole.PLANNER: [
        Action.READ,
        Action.CREATE,
        Action.UPDATE,
        Action.PLAN,
        Action.REORDER,
        Action.RENAME,
    ],
    AgentRole.ADMIN: list(Action),
}

LIST_TEMPLATES: list[dict[str, Any]] = [
    {
        "name": "project",
        "title": "New Project",
        "priority": "high",
        "items": ["Define scope", "Plan milestones", "Kick-off meeting"],
    },
    {
        "name": "shopping",
        "title": "Shopping List",
        "priority": "low",
        "items": [],
    },
    {
        "name": "weekly-review",
        "title": "Weekly Review",
        "priority": "medium",
        "items": ["Clear inbox", "Review calendar", "Update task priorities"],
    },
]


@dataclass(frozen=True)
class ResourceSources:
    """Collaborators the resource readers draw from."""

    query: EntityQuery
    audit: AuditLog
    registry: ExecutorRegistry
    config: dict[str, Any]


def _list_statistics(src: ResourceSources) -> dict[str, Any]:
    lists = list(src.query.enumerate_all(ModelKind.LIST))
    return {
        "total": len(lists),
        "by_status": dict(Counter(str(r.get("status")) for r in lists)),
        "by_priority": dict(Counter(str(r.get("priority")) for r in lists)),
        "nested": sum(1 for r in lists if r.get("parent_list_id")),
    }


def _item_statistics(src: ResourceSources) -> dict[str, Any]:
    items = list(src.query.enumerate_all(ModelKind.ITEM))
    now = datetime.now(UTC)
    completed = sum(1 for r in items if r.get("status") == "completed")
    overdue = 0
    for r in items:
        due = parse_iso(r.get("due_date"))
        if due is not None and due < now and r.get("status") not in ("completed", "cancelled"):
            overdue += 1
    return {
        "total": len(items),
        "by_status": dict(Counter(str(r.get("status")) for r in items)),
        "by_priority": dict(Counter(str(r.get("priority")) for r in items)),
        "overdue": overdue,
        "completion_rate": round(completed / len(items), 4) if items else 0.0,
    }


def _export(src: ResourceSources) -> dict[str, Any]:
    items = list(src.query.enumerate_all(ModelKind.ITEM))
    by_list: dict[str, list[dict[str, Any]]] = {}
    for item in items:
        by_list.setdefault(str(item.get("list_id")), []).append(item)
    lists = [
        {**record, "items": by_list.get(str(record.get("id")), [])}
        for record in src.query.enumerate_all(ModelKind.LIST)
    ]
    return {"exported_at": now_iso(), "format": "json", "lists": lists}


def _capabilities(src: ResourceSources) -> dict[str, Any]:
    return {
        "actions": [a.value for a in Action],
        "target_types": [t.value for t in TargetType],
        "models": [m.value for m in ModelKind],
        "executors": [f"{a}:{t}" for a, t in src.registry.keys()],
        "features": ["batch", "parallel_batch", "streaming", "audit", "integrity"],
    }


_READERS: dict[str, Callable[[ResourceSources], Any]] = {
    "list://schema": lambda _: ListCreate.model_json_schema(),
    "list://templates": lambda _: LIST_TEMPLATES,
    "list://statistics": _list_statistics,
    "list://export": _export,
    "item://schema": lambda _: ItemCreate.model_json_schema(),
    "item://statistics": _item_statistics,
    "agent://schema": lambda _: AgentCreate.model_json_schema(),
    "agent://permissions": lambda _: {
        str(role): [str(a) for a in actions] for role, actions in ROLE_PERMISSIONS.items()
    },
    "system://config": lambda src: src.config,
    "system://version": lambda _: {
        "version": __version__,
        "python": platform.python_version(),
        "components": {"router": __version__, "validation": __version__},
    },
    "system://capabilities": _capabilities,
}


def read_resource(uri: str, sources: ResourceSources) -> ResourceContent:
    """Return the content behind a catalog URI.

    Raises:
        UnknownResourceError: *uri* is not in :data:`RESOURCES`.
    """
    descriptor = next((r for r in RESOURCES if r.uri == uri), None)
    if descriptor is None:
        msg = f"Unknown resource: {uri}"
        raise UnknownResourceError(msg)
    content = _READERS[uri](sources)
    return ResourceContent(uri=uri, mime_type=descriptor.mime_type, content=content)
