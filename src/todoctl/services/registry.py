"""ExecutorRegistry — the (action, target_type) capability table.

Handlers are registered once at composition time and treated as opaque:
given a target id, the parameters, and an :class:`ExecutionContext`, a
handler returns a result payload or raises :class:`CommandFailure`.
Anything else it raises is classified as EXECUTION_ERROR; the registry
never retries.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any, Protocol

from todoctl.domain.types import Action, ErrorCode, TargetType

if TYPE_CHECKING:
    from todoctl.domain.commands import Command


class CommandFailure(Exception):
    """A typed executor failure carrying a code from the error taxonomy."""

    def __init__(
        self,
        message: str,
        *,
        code: str = ErrorCode.EXECUTION_ERROR,
        details: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = str(code)
        self.message = message
        self.details = details


class CommandCancelled(Exception):
    """Raised from :meth:`ExecutionContext.report_progress` once nobody is listening.

    Executors should let it propagate (releasing resources in ``finally``).
    """


class DuplicateExecutorError(ValueError):
    """Raised when an (action, target_type) pair is registered twice."""


class ExecutionContext:
    """Per-invocation context handed to executors.

    Carries the command, its correlation id, and a progress sink. The
    router cancels the context when the command times out; a stream sets
    *abandoned* when its consumer closes it. Either way the next
    :meth:`report_progress` call raises :class:`CommandCancelled`.
    """

    def __init__(
        self,
        command: Command,
        correlation_id: str,
        progress: Callable[[dict[str, Any]], None] | None = None,
        abandoned: threading.Event | None = None,
    ) -> None:
        self.command = command
        self.correlation_id = correlation_id
        self._progress = progress
        self._cancelled = threading.Event()
        self._abandoned = abandoned

    @property
    def cancelled(self) -> bool:
        if self._abandoned is not None and self._abandoned.is_set():
            return True
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def report_progress(self, stage: str, **data: Any) -> None:
        """Emit a progress event (a no-op outside streaming)."""
        if self.cancelled:
            msg = f"{self.command.canonical} was cancelled"
            raise CommandCancelled(msg)
        if self._progress is not None:
            self._progress({"stage": stage, **data})


class Executor(Protocol):
    def __call__(
        self,
        target_id: str,
        parameters: dict[str, Any],
        ctx: ExecutionContext,
    ) -> Any: ...


class ExecutorRegistry:
    """Typed mapping from (Action, TargetType) to an executor."""

    def __init__(self) -> None:
        self._handlers: dict[tuple[Action, TargetType], Executor] = {}

    def register(self, action: Action, target_type: TargetType, handler: Executor) -> None:
        key = (Action(action), TargetType(target_type))
        if key in self._handlers:
            msg = f"Executor already registered for {key[0]}:{key[1]}"
            raise DuplicateExecutorError(msg)
        self._handlers[key] = handler

    def resolve(self, action: Action, target_type: TargetType) -> Executor | None:
        return self._handlers.get((action, target_type))

    def invoke(self, handler: Executor, command: Command, ctx: ExecutionContext) -> Any:
        """Call *handler*, classifying untyped exceptions as EXECUTION_ERROR."""
        try:
            return handler(command.target_id, dict(command.parameters), ctx)
        except CommandFailure:
            raise
        except CommandCancelled as exc:
            raise CommandFailure(
                "Command cancelled before completion",
                details=str(exc),
            ) from exc
        except Exception as exc:
            raise CommandFailure(
                f"Executor failed for {command.canonical}",
                details=str(exc) or type(exc).__name__,
            ) from exc

    def keys(self) -> list[tuple[Action, TargetType]]:
        return sorted(self._handlers)

    def __contains__(self, key: object) -> bool:
        return key in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def __iter__(self) -> Iterator[tuple[Action, TargetType]]:
        return iter(self.keys())
