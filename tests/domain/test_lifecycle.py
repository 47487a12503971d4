"""Tests for list and item status lifecycles."""

from todoctl.domain.lifecycle import (
    ITEM_TRANSITIONS,
    LIST_TRANSITIONS,
    is_valid_transition,
    with_completion_stamp,
)

NOW = "2026-01-01T00:00:00+00:00"


class TestListTransitions:
    def test_allowed(self) -> None:
        assert is_valid_transition("active", "completed", LIST_TRANSITIONS)
        assert is_valid_transition("archived", "active", LIST_TRANSITIONS)

    def test_deleted_is_final(self) -> None:
        assert not is_valid_transition("deleted", "active", LIST_TRANSITIONS)

    def test_same_status_always_allowed(self) -> None:
        assert is_valid_transition("deleted", "deleted", LIST_TRANSITIONS)


class TestItemTransitions:
    def test_pending_cannot_jump_to_completed(self) -> None:
        assert not is_valid_transition("pending", "completed", ITEM_TRANSITIONS)

    def test_in_progress_to_completed(self) -> None:
        assert is_valid_transition("in_progress", "completed", ITEM_TRANSITIONS)

    def test_reopen_completed(self) -> None:
        assert is_valid_transition("completed", "in_progress", ITEM_TRANSITIONS)
        assert not is_valid_transition("completed", "pending", ITEM_TRANSITIONS)

    def test_unknown_current_status(self) -> None:
        assert not is_valid_transition("mystery", "pending", ITEM_TRANSITIONS)


class TestCompletionStamp:
    def test_entering_completed_stamps_now(self) -> None:
        changes = with_completion_stamp({"status": "completed"}, {"status": "in_progress"}, NOW)
        assert changes["completed_at"] == NOW

    def test_leaving_completed_clears_stamp(self) -> None:
        current = {"status": "completed", "completed_at": NOW}
        changes = with_completion_stamp({"status": "in_progress"}, current, NOW)
        assert changes["completed_at"] is None

    def test_explicit_completed_at_wins(self) -> None:
        changes = {"status": "completed", "completed_at": "2025-12-31T00:00:00+00:00"}
        assert with_completion_stamp(changes, None, NOW) == changes

    def test_no_status_change_untouched(self) -> None:
        assert with_completion_stamp({"title": "x"}, {"status": "completed"}, NOW) == {"title": "x"}

    def test_already_stamped_keeps_original(self) -> None:
        current = {"status": "completed", "completed_at": "2025-01-01T00:00:00+00:00"}
        assert with_completion_stamp({"status": "completed"}, current, NOW) == {
            "status": "completed"
        }

    def test_does_not_mutate_input(self) -> None:
        changes = {"status": "completed"}
        with_completion_stamp(changes, None, NOW)
        assert changes == {"status": "completed"}
