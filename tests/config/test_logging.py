"""Tests for structlog configuration."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Generator

import pytest
import structlog

from todoctl.config.logging import configure_logging


@pytest.fixture(autouse=True)
def _restore_logging() -> Generator[None]:
    """Restore root logger state after each test."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    todo = logging.getLogger("todoctl")
    todo_level = todo.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    todo.setLevel(todo_level)


class TestConfigureLogging:
    def test_verbose_enables_debug(self) -> None:
        configure_logging(verbose=True, log_json=False)
        assert logging.getLogger("todoctl").level == logging.DEBUG
        assert logging.getLogger().level == logging.WARNING

    def test_non_verbose_sets_warning(self) -> None:
        configure_logging(verbose=False, log_json=False)
        assert logging.getLogger("todoctl").level == logging.WARNING

    def test_human_mode_output(self) -> None:
        configure_logging(verbose=True, log_json=False)
        log = structlog.get_logger("todoctl.test")
        log.warning("hello world", key="val")

    def test_json_mode_output(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)
        log = structlog.get_logger("todoctl.test")
        log.warning("json test", answer=42)
        captured = capfd.readouterr()
        parsed = json.loads(captured.err.strip())
        assert parsed["event"] == "json test"
        assert parsed["answer"] == 42
        assert parsed["level"] == "warning"
        assert parsed["logger"] == "todoctl.test"
        assert "timestamp" in parsed

    def test_stdlib_logger_gets_structured_fields(
        self, capfd: pytest.CaptureFixture[str]
    ) -> None:
        configure_logging(verbose=True, log_json=True)

        logging.getLogger("todoctl.services.router").debug("Dispatch pool ready")

        captured = capfd.readouterr()
        parsed = json.loads(captured.err.strip())
        assert parsed["event"] == "Dispatch pool ready"
        assert parsed["level"] == "debug"
        assert parsed["logger"] == "todoctl.services.router"

    def test_bound_context_is_rendered(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)
        log = structlog.get_logger("todoctl.services.router").bind(command="read:list:l1")
        log.info("command.completed", duration_ms=1.5)
        parsed = json.loads(capfd.readouterr().err.strip())
        assert parsed["command"] == "read:list:l1"
        assert parsed["duration_ms"] == 1.5

    def test_quiet_suppresses_debug(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=False, log_json=True)
        logging.getLogger("todoctl.services.audit").debug("Loaded 3 audit entries")
        assert capfd.readouterr().err == ""

    def test_third_party_debug_is_suppressed(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)

        logging.getLogger("sqlalchemy.engine").debug("SELECT 1")
        logging.getLogger("urllib3").debug("connection noise")

        captured = capfd.readouterr()
        assert captured.err == ""

    def test_idempotent_calls(self) -> None:
        """Multiple configure_logging calls don't stack handlers."""
        configure_logging(verbose=True, log_json=False)
        configure_logging(verbose=True, log_json=True)
        root = logging.getLogger()
        assert len(root.handlers) == 1


class TestQuietAndThreads:
    def test_quiet_raises_level_to_error(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(quiet=True, log_json=True)
        assert logging.getLogger("todoctl").level == logging.ERROR
        logging.getLogger("todoctl.services.router").warning("Audit append failed")
        assert capfd.readouterr().err == ""

    def test_verbose_wins_over_quiet(self) -> None:
        configure_logging(verbose=True, quiet=True)
        assert logging.getLogger("todoctl").level == logging.DEBUG

    def test_worker_thread_is_tagged(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)

        def work() -> None:
            structlog.get_logger("todoctl.services.router").info("command.completed")

        thread = threading.Thread(target=work, name="todoctl-dispatch_0")
        thread.start()
        thread.join()
        parsed = json.loads(capfd.readouterr().err.strip())
        assert parsed["thread"] == "todoctl-dispatch_0"

    def test_main_thread_is_not_tagged(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)
        structlog.get_logger("todoctl.test").info("hello")
        parsed = json.loads(capfd.readouterr().err.strip())
        assert "thread" not in parsed
