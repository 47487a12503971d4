"""Tests for the command envelope and its textual form."""

import pytest
from pydantic import ValidationError

from todoctl.domain.commands import (
    Command,
    CommandParseError,
    changes_for,
    describe_raw,
    operation_for,
    parse_command,
)
from todoctl.domain.types import Action, Operation, TargetType


class TestCommand:
    def test_snake_case_keys(self) -> None:
        cmd = Command.model_validate(
            {"action": "create", "target_type": "list", "target_id": "l1"}
        )
        assert cmd.action == Action.CREATE
        assert cmd.target_type == TargetType.LIST
        assert cmd.parameters == {}

    def test_camel_case_keys(self) -> None:
        cmd = Command.model_validate(
            {"action": "read", "targetType": "item", "targetId": "i1", "agentId": "bot"}
        )
        assert cmd.target_id == "i1"
        assert cmd.agent_id == "bot"

    def test_canonical_and_str(self) -> None:
        cmd = Command(action=Action.READ, target_type=TargetType.LIST, target_id="L1")
        assert cmd.canonical == "read:list:L1"
        assert str(cmd) == "read:list:L1"

    @pytest.mark.parametrize("target_id", ["", "has space", "semi;colon", "x" * 256])
    def test_rejects_bad_ids(self, target_id: str) -> None:
        with pytest.raises(ValidationError):
            Command(action=Action.READ, target_type=TargetType.LIST, target_id=target_id)

    def test_rejects_unknown_action(self) -> None:
        with pytest.raises(ValidationError):
            Command.model_validate({"action": "fly", "target_type": "list", "target_id": "a"})

    def test_frozen(self) -> None:
        cmd = Command(action=Action.READ, target_type=TargetType.LIST, target_id="L1")
        with pytest.raises(ValidationError):
            cmd.target_id = "L2"  # type: ignore[misc]


class TestParseCommand:
    def test_without_parameters(self) -> None:
        cmd = parse_command("read:list:groceries")
        assert cmd.canonical == "read:list:groceries"
        assert cmd.parameters == {}

    def test_with_parameters(self) -> None:
        cmd = parse_command('create:item:milk{"title": "Milk", "position": 2}')
        assert cmd.parameters == {"title": "Milk", "position": 2}

    def test_envelope_overrides(self) -> None:
        cmd = parse_command("read:list:a", session_id="s1", agent_id="bot")
        assert cmd.session_id == "s1"
        assert cmd.agent_id == "bot"

    def test_empty(self) -> None:
        with pytest.raises(CommandParseError, match="cannot be empty"):
            parse_command("   ")

    def test_bad_format(self) -> None:
        with pytest.raises(CommandParseError, match="Invalid command format"):
            parse_command("read-list-a")

    def test_unknown_action(self) -> None:
        with pytest.raises(CommandParseError, match="Invalid action: fly"):
            parse_command("fly:list:a")

    def test_unknown_target(self) -> None:
        with pytest.raises(CommandParseError, match="Invalid target type: shelf"):
            parse_command("read:shelf:a")

    def test_bad_json(self) -> None:
        with pytest.raises(CommandParseError, match="Invalid parameters JSON"):
            parse_command("create:list:a{not json}")


class TestOperationFor:
    def test_create(self) -> None:
        assert operation_for(Action.CREATE) == Operation.CREATE

    def test_delete(self) -> None:
        assert operation_for(Action.DELETE) == Operation.DELETE

    @pytest.mark.parametrize("action", [Action.UPDATE, Action.RENAME, Action.MARK_DONE])
    def test_everything_else_updates(self, action: Action) -> None:
        assert operation_for(action) == Operation.UPDATE


class TestChangesFor:
    def test_mark_done(self) -> None:
        assert changes_for(Action.MARK_DONE, {"note": "x"}) == {"status": "completed"}

    def test_rename_keeps_only_title(self) -> None:
        assert changes_for(Action.RENAME, {"title": "New", "note": "x"}) == {"title": "New"}

    def test_reorder_without_position(self) -> None:
        assert changes_for(Action.REORDER, {}) == {}

    def test_update_passes_through(self) -> None:
        params = {"title": "T", "priority": "high"}
        assert changes_for(Action.UPDATE, params) == params
        assert changes_for(Action.UPDATE, params) is not params


class TestDescribeRaw:
    def test_partial_mapping(self) -> None:
        assert describe_raw({"action": "read", "targetId": "x"}) == "read:unknown:x"

    def test_non_mapping(self) -> None:
        assert describe_raw(42) == "unknown:unknown:unknown"

    def test_command(self) -> None:
        cmd = parse_command("read:list:a")
        assert describe_raw(cmd) == "read:list:a"
