"""CommandRouter — validates, dispatches, batches, streams, and audits commands.

Single-command pipeline::

    shape check -> validation (mutating actions on stored models)
      -> executor lookup -> dispatch (timed, with timeout) -> audit append -> Response

INVARIANT: No public method raises for a bad command. Every path returns a
:class:`Response` with ``success=False`` and a code from the error taxonomy.
Only commands that reach dispatch are written to the audit log.

Parallel batches run on their own pool so batch workers waiting on the
dispatch pool can never starve it.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

import structlog
from pydantic import BaseModel, Field, ValidationError
from pydantic.alias_generators import to_snake

from todoctl import __version__
from todoctl.config.models import RouterConfig
from todoctl.domain.commands import Command, changes_for, describe_raw, operation_for
from todoctl.domain.types import MUTATING_ACTIONS, ErrorCode, ModelKind, Operation, model_for
from todoctl.services._helpers import new_correlation_id, now_iso, parse_iso
from todoctl.services.audit import ActionLogEntry
from todoctl.services.catalog import (
    RESOURCES,
    TOOLS,
    ResourceContent,
    ResourceDescriptor,
    ResourceSources,
    ToolDescriptor,
    read_resource,
)
from todoctl.services.registry import CommandCancelled, CommandFailure, ExecutionContext
from todoctl.services.result import (
    BatchMetadata,
    BatchResponse,
    Response,
    ResponseError,
    ResponseMetadata,
    StreamChunk,
    ValidationIssue,
    ValidationResult,
)
from todoctl.services.telemetry import propagate, trace_span, traced
from todoctl.services.validation import ValidationContext

if TYPE_CHECKING:
    from todoctl.services.audit import AuditLog
    from todoctl.services.integrity import IntegrityMonitor
    from todoctl.services.registry import Executor, ExecutorRegistry
    from todoctl.services.validation import EntityQuery, ValidationEngine

log = structlog.get_logger(__name__)
logger = logging.getLogger(__name__)

ProgressSink = Callable[[dict[str, Any]], None]


# ---------------------------------------------------------------------------
# System status
# ---------------------------------------------------------------------------


class EngineStatus(BaseModel):
    model_config = {"frozen": True}

    status: Literal["healthy", "degraded"]
    uptime: float  # seconds
    version: str
    started_at: str


class ServiceStatus(BaseModel):
    model_config = {"frozen": True}

    status: Literal["healthy", "degraded", "unreachable", "disabled"]
    last_check: str
    detail: str | None = None


class AgentCounts(BaseModel):
    model_config = {"frozen": True}

    total: int = 0
    active: int = 0
    inactive: int = 0
    suspended: int = 0


class SessionCounts(BaseModel):
    model_config = {"frozen": True}

    total: int = 0
    active: int = 0
    expired: int = 0
    terminated: int = 0


class PerformanceStats(BaseModel):
    model_config = {"frozen": True}

    total_commands: int = 0
    success_rate: float = 1.0
    average_response_time: float = 0.0  # milliseconds
    commands_per_minute: float = 0.0
    error_rate: float = 0.0


class SystemStatus(BaseModel):
    model_config = {"frozen": True}

    engine: EngineStatus
    services: dict[str, ServiceStatus] = Field(default_factory=dict)
    agents: AgentCounts
    sessions: SessionCounts
    performance: PerformanceStats
    telemetry: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


def _shape_issues(exc: ValidationError) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for err in exc.errors():
        name = ".".join(to_snake(str(p)) for p in err["loc"]) or None
        issues.append(
            ValidationIssue(
                code=ErrorCode.VALIDATION_ERROR,
                message=f"{name}: {err['msg']}" if name else err["msg"],
                field=name,
            )
        )
    return issues


class CommandRouter:
    """Top-level orchestrator of the command envelope.

    Parameters:
        registry: Executors keyed by (action, target_type).
        validation: Consulted before every mutating dispatch.
        audit: Receives one entry per dispatched command.
        query: Read capability used for status counts and resources.
        config: Timeouts, pool sizes, and the default history page.
        integrity: Optional monitor reported in system status.
        settings_snapshot: Effective configuration served as ``system://config``.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        validation: ValidationEngine,
        audit: AuditLog,
        query: EntityQuery,
        *,
        config: RouterConfig | None = None,
        integrity: IntegrityMonitor | None = None,
        settings_snapshot: dict[str, Any] | None = None,
    ) -> None:
        self._registry = registry
        self._validation = validation
        self._audit = audit
        self._query = query
        self._config = config or RouterConfig()
        self._integrity = integrity
        self._settings_snapshot = settings_snapshot or {}
        self._started = time.monotonic()
        self._started_at = now_iso()
        self._dispatch_pool = ThreadPoolExecutor(
            max_workers=self._config.dispatch_workers,
            thread_name_prefix="todoctl-dispatch",
        )
        self._batch_pool = ThreadPoolExecutor(
            max_workers=self._config.max_parallel,
            thread_name_prefix="todoctl-batch",
        )
        self._closed = False

    @property
    def config(self) -> RouterConfig:
        return self._config

    def close(self) -> None:
        """Shut down the worker pools. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._batch_pool.shutdown(wait=False, cancel_futures=True)
        self._dispatch_pool.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Single command
    # ------------------------------------------------------------------

    @traced
    def execute_command(
        self,
        command: Command | Mapping[str, Any],
        *,
        progress: ProgressSink | None = None,
        abandoned: threading.Event | None = None,
    ) -> Response:
        """Run one command through the full pipeline and return its Response."""
        started = time.perf_counter()
        correlation_id = new_correlation_id()
        try:
            return self._execute(command, started, correlation_id, progress, abandoned)
        except Exception as exc:
            logger.exception("Unexpected router failure for %s", describe_raw(command))
            return self._failure(
                describe_raw(command),
                started,
                correlation_id,
                ErrorCode.EXECUTION_ERROR,
                "Internal router error",
                details=str(exc) or type(exc).__name__,
            )

    def _execute(
        self,
        raw: Command | Mapping[str, Any],
        started: float,
        correlation_id: str,
        progress: ProgressSink | None,
        abandoned: threading.Event | None,
    ) -> Response:
        # (1) shape check
        try:
            command = raw if isinstance(raw, Command) else Command.model_validate(raw)
        except ValidationError as exc:
            issues = _shape_issues(exc)
            log.info("command.rejected", command=describe_raw(raw), stage="shape")
            return self._failure(
                describe_raw(raw),
                started,
                correlation_id,
                ErrorCode.VALIDATION_ERROR,
                f"Invalid command: {issues[0].message}",
                errors=issues,
            )

        bound = log.bind(command=command.canonical, correlation_id=correlation_id)
        warnings: list[str] = []

        # (2) validation for mutating actions on stored models
        kind = model_for(command.target_type)
        if command.action in MUTATING_ACTIONS and kind is not None:
            with trace_span("validation"):
                outcome = self._validate(command, kind)
            warnings.extend(w.message for w in outcome.warnings)
            if not outcome.success:
                first = outcome.errors[0]
                extra = len(outcome.errors) - 1
                message = f"Validation failed: {first.message}"
                if extra:
                    message += f" (+{extra} more)"
                bound.info("command.rejected", stage="validation", errors=len(outcome.errors))
                return self._failure(
                    command.canonical,
                    started,
                    correlation_id,
                    first.code,
                    message,
                    errors=outcome.errors,
                    warnings=warnings,
                    command=command,
                )

        # (3) executor lookup
        handler = self._registry.resolve(command.action, command.target_type)
        if handler is None:
            bound.info("command.rejected", stage="dispatch")
            return self._failure(
                command.canonical,
                started,
                correlation_id,
                ErrorCode.EXECUTION_ERROR,
                f"No executor registered for {command.action}:{command.target_type}",
                warnings=warnings,
                command=command,
            )

        rollback_id, link_warning = self._rollback_link(command)
        if link_warning:
            warnings.append(link_warning)

        # (4) dispatch
        ctx = ExecutionContext(command, correlation_id, progress, abandoned)
        result: Any = None
        failure: CommandFailure | None = None
        try:
            with trace_span("dispatch", executor=f"{command.action}:{command.target_type}"):
                result = self._dispatch(handler, command, ctx)
        except CommandFailure as exc:
            failure = exc
        elapsed_ms = (time.perf_counter() - started) * 1000

        # (5) audit
        log_id: int | None = None
        try:
            with trace_span("audit"):
                entry = self._audit.append(
                    command,
                    success=failure is None,
                    execution_time=elapsed_ms,
                    correlation_id=correlation_id,
                    result=result,
                    error_code=failure.code if failure else None,
                    error_message=failure.message if failure else None,
                    rollback_id=rollback_id,
                )
            log_id = entry.id
        except Exception as exc:
            logger.warning("Audit append failed for %s: %s", command.canonical, exc)
            warnings.append("Command was not recorded in the audit log")

        # (6) response
        metadata = ResponseMetadata(
            execution_time=round(elapsed_ms, 3),
            timestamp=now_iso(),
            correlation_id=correlation_id,
            agent=command.agent_id,
            session_id=command.session_id,
            log_id=log_id,
        )
        if failure is not None:
            bound.warning(
                "command.failed",
                code=failure.code,
                error=failure.message,
                duration_ms=metadata.execution_time,
            )
            return Response(
                success=False,
                command=command.canonical,
                error=ResponseError(code=failure.code, message=failure.message, details=failure.details),
                warnings=warnings,
                metadata=metadata,
            )
        bound.info("command.completed", duration_ms=metadata.execution_time, log_id=log_id)
        return Response(
            success=True,
            command=command.canonical,
            result=result,
            warnings=warnings,
            metadata=metadata,
        )

    def _validate(self, command: Command, kind: ModelKind) -> ValidationResult:
        operation = operation_for(command.action)
        if operation == Operation.DELETE:
            return self._validation.validate_deletion(kind, command.target_id)
        return self._validation.validate_model(
            kind,
            changes_for(command.action, dict(command.parameters)),
            ValidationContext(operation=operation, record_id=command.target_id),
        )

    def _dispatch(self, handler: Executor, command: Command, ctx: ExecutionContext) -> Any:
        timeout = self._config.command_timeout
        if not timeout:
            return self._registry.invoke(handler, command, ctx)
        try:
            future = self._dispatch_pool.submit(
                propagate(self._registry.invoke), handler, command, ctx
            )
        except RuntimeError as exc:
            msg = "Router is shut down"
            raise CommandFailure(msg, details=str(exc)) from exc
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            ctx.cancel()
            future.cancel()
            msg = f"Command timed out after {timeout:g}s"
            raise CommandFailure(msg, details="The executor was asked to stop") from None

    def _rollback_link(self, command: Command) -> tuple[int | None, str | None]:
        """Resolve ``rollback_of`` into an audit entry id (a link, never a reversal)."""
        params = command.parameters
        raw = params.get("rollback_of", params.get("rollbackOf"))
        if raw is None:
            return None, None
        try:
            entry_id = int(raw)
        except (TypeError, ValueError):
            return None, f"rollback_of must be an audit entry id, got {raw!r}"
        if self._audit.get(entry_id) is None:
            return None, f"rollback_of references unknown audit entry {entry_id}"
        return entry_id, None

    def _failure(
        self,
        command_str: str,
        started: float,
        correlation_id: str,
        code: str,
        message: str,
        *,
        details: str | None = None,
        errors: list[ValidationIssue] | None = None,
        warnings: list[str] | None = None,
        command: Command | None = None,
    ) -> Response:
        """A failed Response for a command that never reached dispatch."""
        return Response(
            success=False,
            command=command_str,
            error=ResponseError(code=code, message=message, details=details, errors=errors or []),
            warnings=warnings or [],
            metadata=ResponseMetadata(
                execution_time=round((time.perf_counter() - started) * 1000, 3),
                timestamp=now_iso(),
                correlation_id=correlation_id,
                agent=command.agent_id if command else None,
                session_id=command.session_id if command else None,
            ),
        )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    @traced
    def execute_batch(
        self,
        commands: Iterable[Command | Mapping[str, Any]],
        *,
        parallel: bool = False,
        stop_on_error: bool = False,
    ) -> BatchResponse:
        """Run several commands.

        Sequential mode runs in order and, with *stop_on_error*, returns the
        responses up to and including the first failure. Parallel mode
        dispatches everything at once; responses stay index-aligned with
        *commands* and *stop_on_error* has no effect.
        """
        started = time.perf_counter()
        batch = list(commands)
        responses: list[Response]
        if parallel:
            futures = [self._submit_batch_member(c) for c in batch]
            responses = [
                self._collect_batch_member(f, c, started) for f, c in zip(futures, batch, strict=True)
            ]
        else:
            responses = []
            for command in batch:
                response = self.execute_command(command)
                responses.append(response)
                if stop_on_error and not response.success:
                    break
        succeeded = sum(1 for r in responses if r.success)
        return BatchResponse(
            responses=responses,
            metadata=BatchMetadata(
                total_commands=len(batch),
                success_count=succeeded,
                error_count=len(responses) - succeeded,
                parallel=parallel,
                stop_on_error=stop_on_error,
                execution_time=round((time.perf_counter() - started) * 1000, 3),
                timestamp=now_iso(),
            ),
        )

    def _submit_batch_member(self, command: Command | Mapping[str, Any]) -> Future[Response] | None:
        try:
            return self._batch_pool.submit(propagate(self.execute_command), command)
        except RuntimeError:
            return None

    def _collect_batch_member(
        self,
        future: Future[Response] | None,
        command: Command | Mapping[str, Any],
        started: float,
    ) -> Response:
        """The member's Response; a shut-down pool yields EXECUTION_ERROR."""
        if future is not None:
            try:
                return future.result()
            except CancelledError:
                pass
        return self._failure(
            describe_raw(command),
            started,
            new_correlation_id(),
            ErrorCode.EXECUTION_ERROR,
            "Router is shut down",
            details="The batch pool no longer accepts commands",
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def stream_command(self, command: Command | Mapping[str, Any]) -> CommandStream:
        """Pull-based chunk sequence; the last chunk is the single ``result``."""
        return CommandStream(self, command, buffer=self._config.stream_buffer)

    # ------------------------------------------------------------------
    # Status, catalog, history
    # ------------------------------------------------------------------

    @traced
    def get_system_status(self) -> SystemStatus:
        checked = now_iso()
        services: dict[str, ServiceStatus] = {}
        for name, probe in self._probes().items():
            try:
                services[name] = probe(checked)
            except Exception as exc:
                logger.warning("Status probe %s failed: %s", name, exc)
                services[name] = ServiceStatus(
                    status="unreachable", last_check=checked, detail=str(exc)
                )
        degraded = any(s.status == "unreachable" for s in services.values())
        stats = self._audit.stats()
        return SystemStatus(
            engine=EngineStatus(
                status="degraded" if degraded else "healthy",
                uptime=round(time.monotonic() - self._started, 3),
                version=__version__,
                started_at=self._started_at,
            ),
            services=services,
            agents=self._agent_counts(),
            sessions=self._session_counts(),
            performance=PerformanceStats(
                total_commands=stats.total_commands,
                success_rate=stats.success_rate,
                average_response_time=stats.average_response_time,
                commands_per_minute=stats.commands_per_minute,
                error_rate=stats.error_rate,
            ),
        )

    def _probes(self) -> dict[str, Callable[[str], ServiceStatus]]:
        def store(checked: str) -> ServiceStatus:
            ping = getattr(self._query, "ping", None)
            if ping is not None:
                ping()
            else:
                self._query.resolve_by_id(ModelKind.LIST, "__probe__")
            return ServiceStatus(status="healthy", last_check=checked)

        def validation(checked: str) -> ServiceStatus:
            stats = self._validation.get_validation_stats()
            detail = f"{len(stats.registered_validators)} validators, {stats.business_rules} rules"
            return ServiceStatus(status="healthy", last_check=checked, detail=detail)

        def audit(checked: str) -> ServiceStatus:
            return ServiceStatus(status="healthy", last_check=checked, detail=f"{len(self._audit)} entries")

        def executors(checked: str) -> ServiceStatus:
            count = len(self._registry)
            return ServiceStatus(
                status="healthy" if count else "degraded",
                last_check=checked,
                detail=f"{count} registered",
            )

        def integrity(checked: str) -> ServiceStatus:
            if self._integrity is None:
                return ServiceStatus(status="disabled", last_check=checked)
            report = self._integrity.last_report
            detail = f"health {report.summary.health_score}" if report else "not yet run"
            return ServiceStatus(status="healthy", last_check=checked, detail=detail)

        return {
            "store": store,
            "validation": validation,
            "audit": audit,
            "executors": executors,
            "integrity": integrity,
        }

    def _records(self, model: ModelKind) -> list[dict[str, Any]]:
        try:
            return list(self._query.enumerate_all(model))
        except Exception:
            logger.warning("Could not enumerate %s for status", model, exc_info=True)
            return []

    def _agent_counts(self) -> AgentCounts:
        agents = self._records(ModelKind.AGENT)
        return AgentCounts(
            total=len(agents),
            active=sum(1 for a in agents if a.get("status") == "active"),
            inactive=sum(1 for a in agents if a.get("status") == "inactive"),
            suspended=sum(1 for a in agents if a.get("status") == "suspended"),
        )

    def _session_counts(self) -> SessionCounts:
        sessions = self._records(ModelKind.SESSION)
        now = datetime.now(UTC)
        active = expired = terminated = 0
        for s in sessions:
            if s.get("status") == "terminated":
                terminated += 1
                continue
            expires = parse_iso(s.get("expires_at"))
            if s.get("status") == "expired" or (expires is not None and expires <= now):
                expired += 1
            else:
                active += 1
        return SessionCounts(
            total=len(sessions), active=active, expired=expired, terminated=terminated
        )

    def get_available_tools(self) -> list[ToolDescriptor]:
        return list(TOOLS)

    def get_available_resources(self) -> list[ResourceDescriptor]:
        return list(RESOURCES)

    def read_resource(self, uri: str) -> ResourceContent:
        """Content behind a catalog URI. Raises ``UnknownResourceError``."""
        sources = ResourceSources(
            query=self._query,
            audit=self._audit,
            registry=self._registry,
            config=self._settings_snapshot,
        )
        return read_resource(uri, sources)

    def get_command_history(
        self,
        limit: int | None = None,
        offset: int = 0,
        session_id: str | None = None,
    ) -> list[ActionLogEntry]:
        """Newest-first page of the audit log."""
        return self._audit.history(
            limit=self._config.history_limit if limit is None else limit,
            offset=offset,
            session_id=session_id,
        )


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class CommandStream:
    """Finite, single-pass iterator of :class:`StreamChunk` for one command.

    A daemon worker runs the command on first pull and feeds a bounded
    queue, so it stays at most ``buffer`` chunks ahead of the consumer.
    :meth:`close` abandons the stream: the worker's next emit raises
    :class:`CommandCancelled` inside the executor, which lets it release
    resources in ``finally`` before the worker exits.
    """

    _POLL = 0.05

    def __init__(
        self,
        router: CommandRouter,
        command: Command | Mapping[str, Any],
        *,
        buffer: int = 1,
    ) -> None:
        self._router = router
        self._command = command
        self._queue: queue.Queue[StreamChunk] = queue.Queue(maxsize=max(buffer, 1))
        self._abandoned = threading.Event()
        self._thread: threading.Thread | None = None
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._abandoned.is_set()

    def __iter__(self) -> CommandStream:
        return self

    def __next__(self) -> StreamChunk:
        if self._finished or self._abandoned.is_set():
            raise StopIteration
        if self._thread is None:
            self._thread = threading.Thread(
                target=propagate(self._produce), name="todoctl-stream", daemon=True
            )
            self._thread.start()
        while True:
            try:
                chunk = self._queue.get(timeout=self._POLL)
            except queue.Empty:
                if not self._thread.is_alive() and self._queue.empty():
                    self._finished = True
                    raise StopIteration from None
                continue
            if chunk.type == "result":
                self._finished = True
            return chunk

    def close(self) -> None:
        """Abandon the stream. Safe to call more than once."""
        if self._abandoned.is_set():
            return
        self._abandoned.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

    def __enter__(self) -> CommandStream:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def _emit(self, chunk: StreamChunk) -> None:
        while True:
            if self._abandoned.is_set():
                msg = "stream closed by consumer"
                raise CommandCancelled(msg)
            try:
                self._queue.put(chunk, timeout=self._POLL)
                return
            except queue.Full:
                continue

    def _progress(self, payload: dict[str, Any]) -> None:
        self._emit(StreamChunk(type="progress", payload=payload))

    def _produce(self) -> None:
        name = describe_raw(self._command)
        try:
            self._progress({"stage": "starting", "command": name})
            response = self._router.execute_command(
                self._command, progress=self._progress, abandoned=self._abandoned
            )
            self._progress({"stage": "completed", "success": response.success})
            self._emit(StreamChunk(type="result", payload=response))
        except CommandCancelled:
            logger.debug("Stream for %s abandoned by consumer", name)
