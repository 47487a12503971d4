"""Stock registrations for the validation engine.

Validators, foreign keys, business rules, and hierarchies for lists,
items, agents, and sessions. Each rule is a plain function over the
candidate record and a :class:`RuleContext`, returning a
:class:`RuleOutcome` or None.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from todoctl.domain.lifecycle import (
    ITEM_TERMINAL_STATUSES,
    ITEM_TRANSITIONS,
    LIST_TRANSITIONS,
    is_valid_transition,
)
from todoctl.domain.schemas import (
    AgentCreate,
    AgentUpdate,
    ItemCreate,
    ItemUpdate,
    ListCreate,
    ListUpdate,
    SessionCreate,
    SessionUpdate,
)
from todoctl.domain.types import ErrorCode, ModelKind, OnDelete, Operation, Severity
from todoctl.services._helpers import parse_iso
from todoctl.services.validation import (
    BusinessRule,
    ForeignKeyConstraint,
    Hierarchy,
    ModelValidator,
    RuleContext,
    RuleOutcome,
)

if TYPE_CHECKING:
    from todoctl.config.models import ValidationConfig


def default_validators() -> list[ModelValidator]:
    return [
        ModelValidator(ModelKind.LIST, ListCreate, ListUpdate),
        ModelValidator(ModelKind.ITEM, ItemCreate, ItemUpdate),
        ModelValidator(ModelKind.AGENT, AgentCreate, AgentUpdate),
        ModelValidator(ModelKind.SESSION, SessionCreate, SessionUpdate),
    ]


def default_foreign_keys() -> list[ForeignKeyConstraint]:
    return [
        ForeignKeyConstraint(
            ModelKind.LIST, "parent_list_id", ModelKind.LIST, on_delete=OnDelete.CASCADE
        ),
        ForeignKeyConstraint(
            ModelKind.ITEM, "list_id", ModelKind.LIST, required=True, on_delete=OnDelete.CASCADE
        ),
        ForeignKeyConstraint(
            ModelKind.ITEM, "dependencies", ModelKind.ITEM, on_delete=OnDelete.SET_NULL, many=True
        ),
        ForeignKeyConstraint(
            ModelKind.ITEM, "assigned_to", ModelKind.AGENT, on_delete=OnDelete.SET_NULL
        ),
        ForeignKeyConstraint(
            ModelKind.SESSION, "agent_id", ModelKind.AGENT, on_delete=OnDelete.SET_NULL
        ),
    ]


def default_hierarchies(config: ValidationConfig) -> list[Hierarchy]:
    return [
        Hierarchy(
            ModelKind.LIST,
            "parent_list_id",
            max_depth=config.max_list_depth,
            warn_ratio=config.depth_warning_ratio,
            label="list nesting",
        ),
        Hierarchy(
            ModelKind.ITEM,
            "dependencies",
            max_depth=config.max_dependency_depth,
            many=True,
            label="item dependency",
        ),
    ]


# ---------------------------------------------------------------------------
# Rule functions
# ---------------------------------------------------------------------------


def _status_transition(transitions: dict[str, list[str]], noun: str) -> Any:
    def evaluate(entity: dict[str, Any], ctx: RuleContext) -> RuleOutcome | None:
        target = ctx.changes.get("status")
        if target is None or ctx.current is None:
            return None
        current = str(ctx.current.get("status") or "")
        if current and not is_valid_transition(current, str(target), transitions):
            return RuleOutcome(
                f"Invalid {noun} status transition from '{current}' to '{target}'",
                field="status",
                code=ErrorCode.INVALID_STATE_TRANSITION,
            )
        return None

    return evaluate


def _completion_consistency(entity: dict[str, Any], ctx: RuleContext) -> RuleOutcome | None:
    status = entity.get("status")
    completed_at = entity.get("completed_at")
    if status == "completed" and not completed_at:
        return RuleOutcome(
            "Record is completed but has no completion date",
            field="completed_at",
            severity=Severity.WARNING,
        )
    if completed_at and status != "completed":
        return RuleOutcome(
            f"Completion date is set but status is '{status}'",
            field="completed_at",
        )
    return None


def _unique_list_title(entity: dict[str, Any], ctx: RuleContext) -> RuleOutcome | None:
    title = entity.get("title")
    if not isinstance(title, str) or not title.strip():
        return None
    if not ctx.changed("title", "parent_list_id"):
        return None
    own_id = entity.get("id") or ctx.record_id
    parent = entity.get("parent_list_id")
    wanted = title.strip().casefold()
    for other in ctx.query.enumerate_all(ModelKind.LIST):
        if other.get("id") == own_id or other.get("parent_list_id") != parent:
            continue
        if str(other.get("title") or "").strip().casefold() == wanted:
            return RuleOutcome(
                f"A list titled '{title}' already exists under the same parent",
                field="title",
            )
    return None


def _dependencies_completed(entity: dict[str, Any], ctx: RuleContext) -> RuleOutcome | None:
    if entity.get("status") != "completed":
        return None
    deps = entity.get("dependencies") or []
    if not isinstance(deps, list):
        return None
    pending: list[str] = []
    for dep_id in deps:
        dep = ctx.resolve(ModelKind.ITEM, dep_id)
        if dep is not None and dep.get("status") != "completed":
            pending.append(str(dep_id))
    if pending:
        return RuleOutcome(
            f"Cannot complete item while dependencies are incomplete: {', '.join(pending)}",
            field="dependencies",
        )
    return None


def _due_date_window(entity: dict[str, Any], ctx: RuleContext) -> RuleOutcome | None:
    if entity.get("status") in ITEM_TERMINAL_STATUSES or not ctx.changed("due_date"):
        return None
    due = parse_iso(entity.get("due_date"))
    if due is None:
        return None
    if due < ctx.now:
        return RuleOutcome("Due date is in the past", field="due_date")
    if due > ctx.now + timedelta(days=ctx.config.distant_due_days):
        return RuleOutcome(
            f"Due date is more than {ctx.config.distant_due_days} days away",
            field="due_date",
        )
    return None


def _duration_sanity(entity: dict[str, Any], ctx: RuleContext) -> RuleOutcome | None:
    estimated = entity.get("estimated_duration")
    actual = entity.get("actual_duration")
    if isinstance(estimated, int) and estimated > ctx.config.long_duration_minutes:
        hours = ctx.config.long_duration_minutes // 60
        return RuleOutcome(
            f"Estimated duration of {estimated} minutes exceeds {hours} hours; "
            "consider splitting the item",
            field="estimated_duration",
        )
    if (
        isinstance(estimated, int)
        and isinstance(actual, int)
        and estimated > 0
        and actual > estimated * ctx.config.duration_overrun_factor
    ):
        return RuleOutcome(
            f"Actual duration {actual} minutes far exceeds the estimate of {estimated}",
            field="actual_duration",
        )
    return None


def _assignee_active(entity: dict[str, Any], ctx: RuleContext) -> RuleOutcome | None:
    if not ctx.changed("assigned_to"):
        return None
    agent = ctx.resolve(ModelKind.AGENT, entity.get("assigned_to"))
    if agent is not None and agent.get("status") != "active":
        return RuleOutcome(
            f"Item is assigned to agent '{agent.get('id')}' whose status is '{agent.get('status')}'",
            field="assigned_to",
        )
    return None


def _unique_agent_name(entity: dict[str, Any], ctx: RuleContext) -> RuleOutcome | None:
    name = entity.get("name")
    if not isinstance(name, str) or not name.strip() or not ctx.changed("name"):
        return None
    own_id = entity.get("id") or ctx.record_id
    wanted = name.strip().casefold()
    for other in ctx.query.enumerate_all(ModelKind.AGENT):
        if other.get("id") != own_id and str(other.get("name") or "").strip().casefold() == wanted:
            return RuleOutcome(f"An agent named '{name}' already exists", field="name")
    return None


def _session_agent_usable(entity: dict[str, Any], ctx: RuleContext) -> RuleOutcome | None:
    agent = ctx.resolve(ModelKind.AGENT, entity.get("agent_id"))
    if agent is not None and agent.get("status") == "suspended":
        return RuleOutcome(
            f"Cannot open a session for suspended agent '{agent.get('id')}'",
            field="agent_id",
        )
    return None


def default_rules() -> list[BusinessRule]:
    return [
        BusinessRule(
            "list.valid_status_transition",
            ModelKind.LIST,
            _status_transition(LIST_TRANSITIONS, "list"),
            description="List status changes follow the list lifecycle.",
            operations=frozenset({Operation.UPDATE}),
        ),
        BusinessRule(
            "list.unique_title_within_parent",
            ModelKind.LIST,
            _unique_list_title,
            description="Sibling lists have distinct titles.",
        ),
        BusinessRule(
            "list.completion_date_consistency",
            ModelKind.LIST,
            _completion_consistency,
            description="completed_at is set exactly when the list is completed.",
        ),
        BusinessRule(
            "item.valid_status_transition",
            ModelKind.ITEM,
            _status_transition(ITEM_TRANSITIONS, "item"),
            description="Item status changes follow the item lifecycle.",
            operations=frozenset({Operation.UPDATE}),
        ),
        BusinessRule(
            "item.dependencies_completed",
            ModelKind.ITEM,
            _dependencies_completed,
            description="An item is completed only after its dependencies.",
        ),
        BusinessRule(
            "item.completion_date_consistency",
            ModelKind.ITEM,
            _completion_consistency,
            description="completed_at is set exactly when the item is completed.",
        ),
        BusinessRule(
            "item.due_date_window",
            ModelKind.ITEM,
            _due_date_window,
            severity=Severity.WARNING,
            description="Open items have a due date that is neither past nor far off.",
        ),
        BusinessRule(
            "item.duration_sanity",
            ModelKind.ITEM,
            _duration_sanity,
            severity=Severity.WARNING,
            description="Estimates stay plausible and actuals stay near estimates.",
        ),
        BusinessRule(
            "item.assignee_active",
            ModelKind.ITEM,
            _assignee_active,
            severity=Severity.WARNING,
            description="Items are assigned to active agents.",
        ),
        BusinessRule(
            "agent.unique_name",
            ModelKind.AGENT,
            _unique_agent_name,
            description="Agent names are unique.",
        ),
        BusinessRule(
            "session.agent_active",
            ModelKind.SESSION,
            _session_agent_usable,
            description="Sessions are not opened for suspended agents.",
            operations=frozenset({Operation.CREATE}),
        ),
    ]
