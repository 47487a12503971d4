"""Tests for CommandRouter: pipeline, batches, streaming, status, history."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from todoctl import __version__
from todoctl.config.models import RouterConfig
from todoctl.config.settings import TodoSettings
from todoctl.domain.commands import parse_command
from todoctl.domain.types import Action, ErrorCode, TargetType
from todoctl.services.catalog import UnknownResourceError
from todoctl.services.context import ControlPlane
from todoctl.services.registry import ExecutionContext, ExecutorRegistry
from todoctl.services.result import Response
from todoctl.services.router import CommandRouter
from todoctl.services.telemetry import disable_telemetry, enable_telemetry

Execute = Callable[..., Response]


class _Spinner:
    """Workflow executor that reports progress until it is cancelled."""

    def __init__(self) -> None:
        self.stopped = threading.Event()

    def __call__(self, target_id: str, parameters: dict[str, Any], ctx: ExecutionContext) -> Any:
        try:
            while True:
                ctx.report_progress("tick")
                time.sleep(0.02)
        finally:
            self.stopped.set()


@pytest.fixture
def spinner() -> _Spinner:
    return _Spinner()


@pytest.fixture
def custom_plane(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, spinner: _Spinner
) -> Generator[ControlPlane]:
    monkeypatch.delenv("TODOCTL_CONFIG", raising=False)
    registry = ExecutorRegistry()
    registry.register(Action.EXECUTE, TargetType.WORKFLOW, spinner)
    settings = TodoSettings(data_root=tmp_path, router=RouterConfig(command_timeout=0.2))
    cp = ControlPlane(settings, registry=registry).initialize()
    try:
        yield cp
    finally:
        cp.cleanup()


class TestExecuteCommand:
    def test_create_and_read(self, execute: Execute) -> None:
        created = execute('create:list:home{"title": "Home"}')
        assert created.success
        assert created.command == "create:list:home"
        assert created.result["title"] == "Home"
        assert created.metadata.log_id == 1
        assert created.metadata.correlation_id.startswith("cmd_")

        read = execute("read:list:home")
        assert read.success
        assert read.result["id"] == "home"

    def test_camel_case_mapping(self, seeded: Execute, router: CommandRouter) -> None:
        response = router.execute_command(
            {"action": "read", "targetType": "list", "targetId": "groceries"}
        )
        assert response.success

    def test_shape_error_not_audited(self, router: CommandRouter) -> None:
        response = router.execute_command(
            {"action": "fly", "target_type": "list", "target_id": "x"}
        )
        assert not response.success
        assert response.command == "fly:list:x"
        assert response.error is not None
        assert response.error.code == ErrorCode.VALIDATION_ERROR
        assert response.error.message.startswith("Invalid command: action")
        assert response.error.errors[0].field == "action"
        assert router.get_command_history() == []

    def test_bad_target_id(self, router: CommandRouter) -> None:
        response = router.execute_command(
            {"action": "read", "target_type": "list", "target_id": "has space"}
        )
        assert response.error is not None
        assert response.error.code == ErrorCode.VALIDATION_ERROR

    def test_validation_failure_uses_first_code(self, execute: Execute, router: CommandRouter) -> None:
        response = execute('create:item:eggs{"list_id": "nowhere", "title": "Eggs"}')
        assert not response.success
        assert response.error is not None
        assert response.error.code == ErrorCode.FOREIGN_KEY_VIOLATION
        assert response.error.message.startswith("Validation failed: item.list_id")
        assert router.get_command_history() == []

    def test_validation_failure_counts_extra_errors(self, execute: Execute) -> None:
        response = execute('create:item:eggs{"title": ""}')
        assert response.error is not None
        assert response.error.message.endswith("(+2 more)")
        assert len(response.error.errors) == 3

    def test_mark_done_requires_in_progress(self, seeded: Execute) -> None:
        response = seeded("mark_done:item:milk")
        assert response.error is not None
        assert response.error.code == ErrorCode.INVALID_STATE_TRANSITION

        assert seeded('status:item:milk{"status": "in_progress"}').success
        done = seeded("mark_done:item:milk")
        assert done.success
        assert done.result["status"] == "completed"
        assert done.result["completed_at"]

    def test_validation_warnings_carried(self, seeded: Execute) -> None:
        response = seeded(
            'create:item:tea{"list_id": "groceries", "title": "Tea", "estimated_duration": 5000}'
        )
        assert response.success
        assert any("consider splitting" in w for w in response.warnings)

    def test_no_executor(self, seeded: Execute, router: CommandRouter) -> None:
        before = len(router.get_command_history(limit=100))
        response = seeded("plan:list:groceries")
        assert response.error is not None
        assert response.error.code == ErrorCode.EXECUTION_ERROR
        assert response.error.message == "No executor registered for plan:list"
        assert len(router.get_command_history(limit=100)) == before

    def test_executor_failure_is_audited(self, execute: Execute, router: CommandRouter) -> None:
        response = execute("read:list:ghost")
        assert response.error is not None
        assert response.error.message == "list 'ghost' not found"
        entry = router.get_command_history()[0]
        assert entry.success is False
        assert entry.error_code == ErrorCode.EXECUTION_ERROR
        assert response.metadata.log_id == entry.id

    def test_envelope_metadata(self, seeded: Execute) -> None:
        response = seeded("read:list:groceries", agent_id="bot", session_id="s-1")
        assert response.metadata.agent == "bot"
        assert response.metadata.session_id == "s-1"

    def test_delete_cascades_with_warning(self, seeded: Execute) -> None:
        response = seeded("delete:list:groceries")
        assert response.success
        assert any("2 dependent record(s)" in w for w in response.warnings)
        assert not seeded("read:item:milk").success

    def test_rollback_link(self, seeded: Execute, router: CommandRouter) -> None:
        original = seeded('rename:list:groceries{"title": "Food"}')
        assert original.metadata.log_id is not None
        undo = seeded(
            'rename:list:groceries{"title": "Groceries", "rollback_of": %d}' % original.metadata.log_id
        )
        assert undo.success
        assert router.get_command_history()[0].rollback_id == original.metadata.log_id

    def test_rollback_link_unknown(self, seeded: Execute) -> None:
        response = seeded('rename:list:groceries{"title": "Food", "rollback_of": 999}')
        assert response.success
        assert "rollback_of references unknown audit entry 999" in response.warnings

    def test_system_commands(self, seeded: Execute) -> None:
        status = seeded("status:system:main")
        assert status.success
        assert status.result["engine"]["status"] == "healthy"
        monitor = seeded("monitor:system:main")
        assert monitor.success
        assert monitor.result["summary"]["health_score"] == 100


class TestTimeout:
    def test_timeout_cancels_executor(self, custom_plane: ControlPlane, spinner: _Spinner) -> None:
        response = custom_plane.router.execute_command(parse_command("execute:workflow:w1"))
        assert not response.success
        assert response.error is not None
        assert response.error.code == ErrorCode.EXECUTION_ERROR
        assert response.error.message == "Command timed out after 0.2s"
        assert spinner.stopped.wait(2)
        assert custom_plane.history.history()[0].success is False


class TestBatch:
    def test_sequential(self, seeded: Execute, router: CommandRouter) -> None:
        batch = router.execute_batch(
            [parse_command("read:list:groceries"), parse_command("read:item:milk")]
        )
        assert batch.success
        assert batch.metadata.total_commands == 2
        assert batch.metadata.success_count == 2
        assert not batch.metadata.parallel

    def test_stop_on_error(self, seeded: Execute, router: CommandRouter) -> None:
        commands = [
            parse_command("read:list:groceries"),
            parse_command("read:list:ghost"),
            parse_command("read:item:milk"),
        ]
        batch = router.execute_batch(commands, stop_on_error=True)
        assert not batch.success
        assert len(batch.responses) == 2
        assert batch.metadata.total_commands == 3
        assert batch.metadata.error_count == 1

    def test_continue_past_errors(self, seeded: Execute, router: CommandRouter) -> None:
        batch = router.execute_batch(
            [parse_command("read:list:ghost"), parse_command("read:item:milk")]
        )
        assert [r.success for r in batch.responses] == [False, True]

    def test_parallel_audits_each_member(self, seeded: Execute, router: CommandRouter) -> None:
        commands = [
            parse_command(f'create:item:p{n}{{"list_id": "groceries", "title": "P{n}"}}')
            for n in range(8)
        ]
        batch = router.execute_batch(commands, parallel=True)
        assert batch.success
        assert [r.command for r in batch.responses] == [c.canonical for c in commands]
        ids = [r.metadata.log_id for r in batch.responses]
        assert len(set(ids)) == 8

    def test_parallel_order_survives_reversed_completion(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("TODOCTL_CONFIG", raising=False)
        finished: list[str] = []
        lock = threading.Lock()

        def staggered(target_id: str, parameters: dict[str, Any], ctx: ExecutionContext) -> Any:
            # Later members sleep less, so they finish first.
            time.sleep(0.03 * (8 - parameters["n"]))
            with lock:
                finished.append(target_id)
            return {"n": parameters["n"]}

        registry = ExecutorRegistry()
        registry.register(Action.EXECUTE, TargetType.WORKFLOW, staggered)
        settings = TodoSettings(data_root=tmp_path, router=RouterConfig(max_parallel=8))
        with ControlPlane(settings, registry=registry) as cp:
            commands = [parse_command(f'execute:workflow:w{n}{{"n": {n}}}') for n in range(8)]
            batch = cp.router.execute_batch(commands, parallel=True)

        assert batch.success
        assert finished[-1] == "w0"
        assert finished != [f"w{n}" for n in range(8)]
        assert [r.result["n"] for r in batch.responses] == list(range(8))
        assert [r.command for r in batch.responses] == [c.canonical for c in commands]

    def test_parallel_after_close_returns_failures(self, seeded: Execute, router: CommandRouter) -> None:
        router.close()
        commands = [parse_command("read:list:groceries"), parse_command("read:item:milk")]
        batch = router.execute_batch(commands, parallel=True)
        assert not batch.success
        assert batch.metadata.error_count == 2
        assert [r.command for r in batch.responses] == [c.canonical for c in commands]
        for response in batch.responses:
            assert response.error is not None
            assert response.error.code == ErrorCode.EXECUTION_ERROR
            assert response.error.message == "Router is shut down"

        sequential = router.execute_batch(commands)
        assert [r.error.message for r in sequential.responses if r.error] == [
            "Router is shut down",
            "Router is shut down",
        ]

    def test_parallel_ignores_stop_on_error(self, seeded: Execute, router: CommandRouter) -> None:
        commands = [
            parse_command("read:list:ghost"),
            parse_command("read:list:groceries"),
            parse_command("read:item:ghost"),
        ]
        batch = router.execute_batch(commands, parallel=True, stop_on_error=True)
        assert len(batch.responses) == 3
        assert batch.metadata.error_count == 2

    def test_mixed_inputs(self, router: CommandRouter) -> None:
        batch = router.execute_batch(
            [{"action": "bogus", "targetType": "list", "targetId": "x"}, parse_command("read:list:x")]
        )
        assert [r.error.code for r in batch.responses if r.error] == [
            ErrorCode.VALIDATION_ERROR,
            ErrorCode.EXECUTION_ERROR,
        ]


class TestStream:
    def test_chunk_order(self, router: CommandRouter) -> None:
        with router.stream_command(parse_command('create:list:l1{"title": "Home"}')) as stream:
            chunks = list(stream)
        stages = [c.payload["stage"] for c in chunks if c.type == "progress"]
        assert stages == ["starting", "building", "persisting", "completed"]
        assert [c.type for c in chunks].count("result") == 1
        final = chunks[-1]
        assert final.type == "result"
        assert isinstance(final.payload, Response)
        assert final.payload.success

    def test_failure_still_yields_result(self, router: CommandRouter) -> None:
        with router.stream_command({"action": "nope"}) as stream:
            chunks = list(stream)
        assert chunks[0].payload["stage"] == "starting"
        assert chunks[-1].type == "result"
        assert not chunks[-1].payload.success

    def test_close_cancels_executor(self, custom_plane: ControlPlane, spinner: _Spinner) -> None:
        stream = custom_plane.router.stream_command(parse_command("execute:workflow:w1"))
        first = next(stream)
        second = next(stream)
        assert first.payload["stage"] == "starting"
        assert second.payload["stage"] == "tick"
        stream.close()
        assert stream.closed
        assert spinner.stopped.wait(2)
        assert list(stream) == []


class TestStatusAndCatalog:
    def test_system_status(self, seeded: Execute, router: CommandRouter) -> None:
        status = router.get_system_status()
        assert status.engine.status == "healthy"
        assert status.engine.version == __version__
        assert set(status.services) == {"store", "validation", "audit", "executors", "integrity"}
        assert all(s.status == "healthy" for s in status.services.values())
        assert status.agents.total == 1
        assert status.agents.active == 1
        assert status.sessions.total == 0
        assert status.performance.total_commands == 4
        assert status.performance.success_rate == 1.0

    def test_session_counts(self, seeded: Execute, router: CommandRouter) -> None:
        assert seeded('create:session:s1{"agent_id": "bot"}').success
        assert seeded('create:session:s2{"agent_id": "bot"}').success
        assert seeded('update:session:s2{"status": "terminated"}').success
        sessions = router.get_system_status().sessions
        assert (sessions.total, sessions.active, sessions.terminated) == (2, 1, 1)

    def test_catalog(self, router: CommandRouter) -> None:
        assert len(router.get_available_tools()) == 21
        assert len(router.get_available_resources()) == 11

    def test_read_resource(self, seeded: Execute, router: CommandRouter) -> None:
        stats = router.read_resource("list://statistics").content
        assert stats["total"] == 1
        config = router.read_resource("system://config").content
        assert config["router"]["command_timeout"] == 30.0
        capabilities = router.read_resource("system://capabilities").content
        assert "create:list" in capabilities["executors"]
        assert "status:system" in capabilities["executors"]

    def test_read_unknown_resource(self, router: CommandRouter) -> None:
        with pytest.raises(UnknownResourceError):
            router.read_resource("system://nope")


class TestHistory:
    def test_newest_first(self, seeded: Execute, router: CommandRouter) -> None:
        history = router.get_command_history(limit=2)
        assert [e.command for e in history] == ["create:agent:bot", "create:item:bread"]

    def test_offset_and_default_limit(self, seeded: Execute, router: CommandRouter) -> None:
        assert len(router.get_command_history()) == 4
        assert router.get_command_history(offset=3)[0].command == "create:list:groceries"

    def test_by_session(self, seeded: Execute, router: CommandRouter) -> None:
        seeded("read:list:groceries", session_id="abc")
        history = router.get_command_history(session_id="abc")
        assert [e.command for e in history] == ["read:list:groceries"]


class TestTelemetry:
    @pytest.fixture(autouse=True)
    def _tracing(self) -> Generator[None]:
        enable_telemetry()
        yield
        disable_telemetry()

    def test_response_carries_stage_tree(self, execute: Execute) -> None:
        response = execute('create:list:home{"title": "Home"}')
        assert response.telemetry is not None
        assert response.telemetry["name"] == "CommandRouter.execute_command"
        stages = [c["name"] for c in response.telemetry["children"]]
        assert stages == ["validation", "dispatch", "audit"]
        validation = response.telemetry["children"][0]
        assert validation["children"][0]["name"] == "ValidationEngine.validate_model"
        assert response.telemetry["children"][1]["annotations"] == {"executor": "create:list"}

    def test_reads_skip_validation(self, seeded: Execute) -> None:
        response = seeded("read:list:groceries")
        assert response.telemetry is not None
        assert [c["name"] for c in response.telemetry["children"]] == ["dispatch", "audit"]

    def test_untraced_by_default(self, execute: Execute) -> None:
        disable_telemetry()
        assert execute('create:list:home{"title": "Home"}').telemetry is None
