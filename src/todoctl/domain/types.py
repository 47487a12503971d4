"""Closed enumerations for the command envelope and the data model.

Actions and target types address every operation through one router.
Model kinds are the subset of target types that carry stored records and
therefore have validators, factories, and integrity checks.
"""

from __future__ import annotations

from enum import StrEnum


class Action(StrEnum):
    """Verb of a command."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXECUTE = "execute"
    REORDER = "reorder"
    RENAME = "rename"
    STATUS = "status"
    MARK_DONE = "mark_done"
    ROLLBACK = "rollback"
    PLAN = "plan"
    TRAIN = "train"
    DEPLOY = "deploy"
    TEST = "test"
    MONITOR = "monitor"
    OPTIMIZE = "optimize"
    DEBUG = "debug"
    LOG = "log"


class TargetType(StrEnum):
    """Domain noun a command addresses."""

    LIST = "list"
    ITEM = "item"
    AGENT = "agent"
    SYSTEM = "system"
    BATCH = "batch"
    WORKFLOW = "workflow"
    SESSION = "session"


class ModelKind(StrEnum):
    """Stored record kinds with registered validators."""

    LIST = "list"
    ITEM = "item"
    AGENT = "agent"
    SESSION = "session"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ListStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    DELETED = "deleted"


class ItemStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"


class AgentRole(StrEnum):
    READER = "reader"
    EXECUTOR = "executor"
    PLANNER = "planner"
    ADMIN = "admin"


class AgentStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class SessionStatus(StrEnum):
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"


class OnDelete(StrEnum):
    """What happens to a dependent record when its referent is deleted."""

    RESTRICT = "restrict"
    CASCADE = "cascade"
    SET_NULL = "set_null"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"


class Operation(StrEnum):
    """Validation context operation.

    ``AUDIT`` is used by the integrity sweep, which re-checks stored records
    without a pending change.
    """

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    AUDIT = "audit"


class ErrorCode(StrEnum):
    """Error taxonomy shared by responses, validation results, and reports."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    NOT_SUPPORTED = "NOT_SUPPORTED"


# Actions that change stored state and are validated before dispatch.
MUTATING_ACTIONS: frozenset[Action] = frozenset(
    {
        Action.CREATE,
        Action.UPDATE,
        Action.DELETE,
        Action.REORDER,
        Action.RENAME,
        Action.STATUS,
        Action.MARK_DONE,
    }
)


def model_for(target_type: TargetType | str) -> ModelKind | None:
    """Return the stored model a target type addresses, or None."""
    try:
        return ModelKind(str(target_type))
    except ValueError:
        return None


def canonical_command(action: str, target_type: str, target_id: str) -> str:
    """Render the ``action:target_type:target_id`` diagnostic key.

    Examples:
        >>> canonical_command("read", "list", "L1")
        'read:list:L1'
    """
    return f"{action}:{target_type}:{target_id}"
