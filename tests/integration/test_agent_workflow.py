"""End-to-end agent workflow through the control plane."""

from __future__ import annotations

from collections.abc import Callable

from todoctl.domain.commands import parse_command
from todoctl.domain.types import ErrorCode
from todoctl.services.context import ControlPlane
from todoctl.services.result import Response

Execute = Callable[..., Response]


class TestAgentWorkflow:
    def test_plan_work_and_finish(self, plane: ControlPlane, execute: Execute) -> None:
        envelope = {"agent_id": "planner", "session_id": "s-1"}
        for text in (
            'create:agent:planner{"name": "Planner", "permissions": ["read", "create", "update"]}',
            'create:session:s-1{"agent_id": "planner"}',
            'create:list:release{"title": "Release"}',
            'create:list:docs{"title": "Docs", "parent_list_id": "release"}',
            'create:item:write{"list_id": "docs", "title": "Write notes"}',
            'create:item:publish{"list_id": "docs", "title": "Publish", "dependencies": ["write"]}',
        ):
            response = execute(text, **envelope)
            assert response.success, response.error

        blocked = execute('status:item:publish{"status": "in_progress"}', **envelope)
        assert blocked.success
        early = execute("mark_done:item:publish", **envelope)
        assert early.error is not None
        assert early.error.code == ErrorCode.BUSINESS_RULE_VIOLATION
        assert "write" in early.error.message

        assert execute('status:item:write{"status": "in_progress"}', **envelope).success
        assert execute("mark_done:item:write", **envelope).success
        done = execute("mark_done:item:publish", **envelope)
        assert done.success
        assert done.result["status"] == "completed"

        report = plane.integrity.perform_integrity_check()
        assert report.success
        assert report.violations == []
        assert report.summary.health_score == 100

        history = plane.router.get_command_history(limit=100, session_id="s-1")
        assert len(history) == 10
        assert all(e.agent_id == "planner" for e in history)

    def test_dependency_cycle_rejected(self, execute: Execute) -> None:
        for text in (
            'create:list:l{"title": "L"}',
            'create:item:a{"list_id": "l", "title": "A"}',
            'create:item:b{"list_id": "l", "title": "B", "dependencies": ["a"]}',
        ):
            assert execute(text).success
        response = execute('update:item:a{"dependencies": ["b"]}')
        assert response.error is not None
        assert response.error.code == ErrorCode.CIRCULAR_DEPENDENCY
        assert not execute("read:item:a").result["dependencies"]

    def test_delete_list_cascades(self, execute: Execute, plane: ControlPlane) -> None:
        for text in (
            'create:list:outer{"title": "Outer"}',
            'create:list:inner{"title": "Inner", "parent_list_id": "outer"}',
            'create:item:task{"list_id": "inner", "title": "Task"}',
        ):
            assert execute(text).success
        response = execute("delete:list:outer")
        assert response.success
        assert plane.store.enumerate_all("list") == []
        assert plane.store.enumerate_all("item") == []

    def test_parallel_batch_writes(self, plane: ControlPlane, execute: Execute) -> None:
        assert execute('create:list:bulk{"title": "Bulk"}').success
        commands = [
            parse_command(f'create:item:i{n}{{"list_id": "bulk", "title": "Item {n}"}}')
            for n in range(12)
        ]
        batch = plane.router.execute_batch(commands, parallel=True)
        assert batch.metadata.success_count == 12
        assert [r.command for r in batch.responses] == [f"create:item:i{n}" for n in range(12)]
        assert len(plane.store.enumerate_all("item")) == 12
        assert plane.router.get_system_status().performance.total_commands == 13
