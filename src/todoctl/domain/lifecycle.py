"""Status lifecycles for lists and items.

Transitions are enforced by the ``valid_status_transition`` business rules
on update. Same-status writes are always allowed.
"""

from __future__ import annotations

from typing import Any

LIST_TRANSITIONS: dict[str, list[str]] = {
    "active": ["completed", "archived", "deleted"],
    "completed": ["active", "archived", "deleted"],
    "archived": ["active", "deleted"],
    "deleted": [],
}

ITEM_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["in_progress", "cancelled", "blocked"],
    "in_progress": ["completed", "cancelled", "blocked", "pending"],
    "completed": ["in_progress"],
    "cancelled": ["pending", "in_progress"],
    "blocked": ["pending", "in_progress", "cancelled"],
}

# Statuses after which time-based advisories (due dates) stop applying.
ITEM_TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "cancelled"})


def with_completion_stamp(
    changes: dict[str, Any],
    current: dict[str, Any] | None,
    now: str,
) -> dict[str, Any]:
    """Derive ``completed_at`` from a status change.

    Entering ``completed`` stamps *now*; leaving it clears the stamp. An
    explicit ``completed_at`` in *changes* always wins.
    """
    status = changes.get("status")
    if status is None or "completed_at" in changes:
        return changes
    stamped = (current or {}).get("completed_at")
    if status == "completed" and not stamped:
        return {**changes, "completed_at": now}
    if status != "completed" and stamped:
        return {**changes, "completed_at": None}
    return changes


def is_valid_transition(
    current: str,
    target: str,
    transitions: dict[str, list[str]],
) -> bool:
    """Check if transitioning from *current* to *target* is allowed.

    Writing the same status again is not a transition and always passes.
    """
    if current == target:
        return True
    return target in transitions.get(current, [])
