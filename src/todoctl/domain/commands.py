"""The command envelope and its textual form.

Every domain operation is addressed as ``{action, target_type, target_id,
parameters}``. Inbound mappings may use camelCase keys (``targetType``)
or snake_case keys (``target_type``); both validate to the same model.

Textual form accepted by :func:`parse_command`::

    action:target_type:target_id{json-object}
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError
from pydantic.alias_generators import to_camel

from todoctl.domain.types import Action, Operation, TargetType, canonical_command

ID_PATTERN = r"^[A-Za-z0-9_-]+$"

Identifier = Annotated[str, StringConstraints(min_length=1, max_length=255, pattern=ID_PATTERN)]

_COMMAND_RE = re.compile(r"^([a-z_]+):([a-z_]+):([A-Za-z0-9_-]+)(\{.*\})?$", re.DOTALL)


class CommandParseError(ValueError):
    """Raised when a command string does not match the textual form."""


class Command(BaseModel):
    """Immutable command envelope."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    action: Action
    target_type: TargetType
    target_id: Identifier
    parameters: dict[str, Any] = Field(default_factory=dict)
    timestamp: str | None = None
    session_id: str | None = None
    agent_id: str | None = None

    @property
    def canonical(self) -> str:
        """``action:target_type:target_id``."""
        return canonical_command(self.action, self.target_type, self.target_id)

    def __str__(self) -> str:
        return self.canonical


# Shorthand actions that are partial updates of one field.
_SHORTHAND_FIELDS: dict[Action, str] = {
    Action.RENAME: "title",
    Action.REORDER: "position",
    Action.STATUS: "status",
}


def operation_for(action: Action) -> Operation:
    """Validation operation for a mutating action."""
    if action == Action.CREATE:
        return Operation.CREATE
    if action == Action.DELETE:
        return Operation.DELETE
    return Operation.UPDATE


def changes_for(action: Action, parameters: dict[str, Any]) -> dict[str, Any]:
    """The record payload a mutating action carries.

    ``create``/``update`` carry their parameters as-is; shorthand actions
    reduce to a single-field update.

    Examples:
        >>> changes_for(Action.MARK_DONE, {})
        {'status': 'completed'}
        >>> changes_for(Action.RENAME, {"title": "Groceries", "note": "x"})
        {'title': 'Groceries'}
    """
    if action == Action.MARK_DONE:
        return {"status": "completed"}
    key = _SHORTHAND_FIELDS.get(action)
    if key is None:
        return dict(parameters)
    return {key: parameters[key]} if key in parameters else {}


def describe_raw(raw: Any) -> str:
    """Best-effort canonical string for input that failed validation."""
    if isinstance(raw, Command):
        return raw.canonical
    if not isinstance(raw, dict):
        return canonical_command("unknown", "unknown", "unknown")

    def pick(*keys: str) -> str:
        for key in keys:
            value = raw.get(key)
            if value:
                return str(value)
        return "unknown"

    return canonical_command(
        pick("action"),
        pick("target_type", "targetType"),
        pick("target_id", "targetId"),
    )


def parse_command(text: str, **overrides: Any) -> Command:
    """Parse ``action:target_type:target_id{params}`` into a :class:`Command`.

    Extra keyword arguments (``session_id``, ``agent_id``) are merged into
    the envelope. Raises :class:`CommandParseError` on malformed input.
    """
    stripped = (text or "").strip()
    if not stripped:
        msg = "Command string cannot be empty"
        raise CommandParseError(msg)

    match = _COMMAND_RE.match(stripped)
    if match is None:
        msg = "Invalid command format. Expected: action:target_type:target_id{parameters}"
        raise CommandParseError(msg)

    action, target_type, target_id, raw_params = match.groups()

    try:
        Action(action)
    except ValueError:
        valid = ", ".join(a.value for a in Action)
        msg = f"Invalid action: {action}. Valid actions: {valid}"
        raise CommandParseError(msg) from None
    try:
        TargetType(target_type)
    except ValueError:
        valid = ", ".join(t.value for t in TargetType)
        msg = f"Invalid target type: {target_type}. Valid types: {valid}"
        raise CommandParseError(msg) from None

    parameters: dict[str, Any] = {}
    if raw_params:
        try:
            parameters = json.loads(raw_params)
        except json.JSONDecodeError as exc:
            msg = f"Invalid parameters JSON: {exc.msg}"
            raise CommandParseError(msg) from exc

    if not isinstance(parameters, dict):
        msg = "Command parameters must be a JSON object"
        raise CommandParseError(msg)

    try:
        return Command(
            action=Action(action),
            target_type=TargetType(target_type),
            target_id=target_id,
            parameters=parameters,
            **overrides,
        )
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first["loc"])
        msg = f"Invalid {field}: {first['msg']}"
        raise CommandParseError(msg) from exc
