"""Result-specific Rich renderers.

Each renderer writes to a Rich Console (backed by StringIO). The caller
extracts the rendered text via ``get_output(console)``.

Renderers are dispatched on the result model's type in
:func:`render_result`; lists dispatch on their first element. Unknown
models fall through to a generic key-value renderer.
"""

from __future__ import annotations

import json as _json
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel
from rich.console import Console
from rich.table import Table
from rich.text import Text

from todoctl.output.console import create_console, get_output, style_for_status
from todoctl.services.audit import ActionLogEntry
from todoctl.services.catalog import ResourceContent, ResourceDescriptor, ToolDescriptor
from todoctl.services.result import (
    BatchResponse,
    IntegrityReport,
    Response,
    StreamChunk,
    ValidationIssue,
    ValidationResult,
    ValidationStats,
)
from todoctl.services.router import SystemStatus

# ── Public API ────────────────────────────────────────────────────────


def render_result(payload: BaseModel | list[BaseModel], *, verbose: bool = False) -> str:
    """Render a result to a styled string via Rich.

    Returns plain text (no ANSI) when Rich detects no terminal,
    which is the case inside Click's CliRunner and piped output.
    """
    console = create_console()
    if isinstance(payload, list) and not payload:
        console.print(Text("(none)", style="dim"))
    else:
        sample = payload[0] if isinstance(payload, list) else payload
        renderer = _RENDERERS.get(type(sample), _render_generic)
        renderer(payload, console, verbose=verbose)
    return get_output(console).rstrip("\n")


def render_quiet(payload: BaseModel | list[BaseModel]) -> str:
    """Render minimal output for ``--quiet`` mode."""
    if isinstance(payload, list):
        return "\n".join(_quiet_key(p) for p in payload)
    if isinstance(payload, Response):
        if payload.success:
            return f"OK: {payload.command}"
        msg = payload.error.message if payload.error else "Unknown error"
        return f"ERROR: {payload.command}: {msg}"
    if isinstance(payload, BatchResponse):
        return "\n".join(render_quiet(r) for r in payload.responses)
    if isinstance(payload, ValidationResult):
        return "VALID" if payload.success else f"INVALID: {len(payload.errors)} error(s)"
    if isinstance(payload, IntegrityReport):
        return f"health: {payload.summary.health_score}"
    if isinstance(payload, SystemStatus):
        return payload.engine.status
    if isinstance(payload, ResourceContent):
        return _json.dumps(payload.content, default=str)
    return "OK"


def render_progress(chunk: StreamChunk) -> str:
    """One line for a streamed progress chunk."""
    data = dict(chunk.payload or {})
    stage = data.pop("stage", "?")
    extras = " ".join(f"{k}={v}" for k, v in data.items())
    return f"... {stage} {extras}".rstrip()


# ── Helpers ───────────────────────────────────────────────────────────


def _quiet_key(item: BaseModel) -> str:
    if isinstance(item, ActionLogEntry):
        return str(item.id)
    if isinstance(item, ToolDescriptor):
        return item.name
    if isinstance(item, ResourceDescriptor):
        return item.uri
    return str(getattr(item, "id", ""))


def _status_line(console: Console, ok: bool, label: str, message: str | None = None) -> None:
    """Print the OK/ERROR status line."""
    status = Text("OK", style="todo.ok") if ok else Text("ERROR", style="todo.error")
    parts = [status, Text(f"  {label}", style="todo.command")]
    if message:
        parts.append(Text(f"  {message}"))
    console.print(*parts, sep="")


def _field(console: Console, key: str, value: Any) -> None:
    """Print a single indented key-value field."""
    k = Text(f"  {key}: ", style="todo.key")
    if isinstance(value, (dict, list)):
        v = Text(_json.dumps(value, separators=(",", ":"), default=str))
    elif key == "id" or key.endswith("_id"):
        v = Text(str(value), style="todo.id")
    elif key in ("title", "name"):
        v = Text(str(value), style="todo.title")
    elif key == "status":
        v = Text(str(value), style=style_for_status(str(value)))
    else:
        v = Text(str(value))
    console.print(k, v, sep="")


def _render_telemetry_tree(
    console: Console,
    span_data: dict[str, Any],
    indent: int = 4,
) -> None:
    """Render a hierarchical span tree with color-coded timing."""
    prefix = " " * indent
    name = span_data.get("name", "?")
    duration = span_data.get("duration_ms", 0.0)

    if duration > 1000:
        style = "bold red"
    elif duration > 100:
        style = "yellow"
    else:
        style = "dim"

    line = f"{prefix}[{style}]{duration:>8.2f}ms[/{style}]  {name}"
    annotations = span_data.get("annotations") or {}
    if annotations:
        line += "  (" + ", ".join(f"{k}={v}" for k, v in annotations.items()) + ")"
    console.print(line)

    for child in span_data.get("children", []):
        _render_telemetry_tree(console, child, indent=indent + 4)


def _render_telemetry(console: Console, telemetry: dict[str, Any] | None) -> None:
    if not telemetry:
        return
    console.print()
    console.print(Text("  telemetry:", style="dim"))
    _render_telemetry_tree(console, telemetry)


def _issue_table(*groups: tuple[str, list[ValidationIssue]]) -> Table:
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Severity")
    table.add_column("Code", style="todo.key")
    table.add_column("Field")
    table.add_column("Record", style="todo.id")
    table.add_column("Message")
    for severity, issues in groups:
        style = "todo.error" if severity == "error" else "todo.warning"
        for issue in issues:
            record = f"{issue.model}:{issue.record_id}" if issue.record_id else ""
            table.add_row(
                Text(severity, style=style),
                issue.code,
                issue.field or "",
                record,
                issue.message,
            )
    return table


def _record_table(records: list[dict[str, Any]]) -> Table:
    """Table of stored records (list items, export rows)."""
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("ID", style="todo.id", no_wrap=True)
    table.add_column("Title", style="todo.title")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Pos", justify="right")
    for record in records:
        status = str(record.get("status", ""))
        table.add_row(
            str(record.get("id", "")),
            str(record.get("title", "")),
            Text(status, style=style_for_status(status)),
            str(record.get("priority", "")),
            str(record.get("position", "")),
        )
    return table


# ── Response renderers ────────────────────────────────────────────────


def _render_response(result: Response, console: Console, *, verbose: bool = False) -> None:
    if not result.success:
        _render_error(result, console, verbose=verbose)
        return
    _status_line(console, True, result.command)
    data = result.result
    nested: list[dict[str, Any]] = []
    if isinstance(data, dict):
        for key, value in data.items():
            if key == "items" and isinstance(value, list):
                nested = value
                continue
            if value is not None:
                _field(console, key, value)
    elif data is not None:
        _field(console, "result", data)
    if nested:
        console.print()
        console.print(_record_table(nested))
    if verbose:
        _render_metadata(result, console)


def _render_error(result: Response, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    code = err.code if err else "UNKNOWN"
    msg = err.message if err else "Unknown error"
    _status_line(console, False, result.command, f"[{code}] {msg}")
    if err and err.errors:
        for issue in err.errors:
            where = f"{issue.field}: " if issue.field else ""
            console.print(f"  - {where}{issue.message}", markup=False)
    if verbose:
        if err and err.details:
            _field(console, "details", err.details)
        _render_metadata(result, console)


def _render_metadata(result: Response, console: Console) -> None:
    meta = result.metadata
    console.print()
    console.print(Text("  meta:", style="dim"))
    console.print(f"    execution_time: {meta.execution_time:.2f}ms")
    console.print(f"    correlation_id: {meta.correlation_id}")
    if meta.log_id is not None:
        console.print(f"    log_id: {meta.log_id}")
    if meta.agent:
        console.print(f"    agent: {meta.agent}")
    if meta.session_id:
        console.print(f"    session_id: {meta.session_id}")
    _render_telemetry(console, result.telemetry)


def _render_batch(result: BatchResponse, console: Console, *, verbose: bool = False) -> None:
    meta = result.metadata
    mode = "parallel" if meta.parallel else "sequential"
    _status_line(console, result.success, "batch", f"{mode}, {meta.execution_time:.2f}ms")
    _field(console, "total", meta.total_commands)
    _field(console, "succeeded", meta.success_count)
    _field(console, "failed", meta.error_count)

    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("#", justify="right")
    table.add_column("Command", style="todo.command")
    table.add_column("Result")
    table.add_column("Message")
    if verbose:
        table.add_column("Time", style="dim", justify="right")
    for index, response in enumerate(result.responses):
        if response.success:
            outcome = Text("OK", style="todo.ok")
            message = ""
        else:
            assert response.error is not None
            outcome = Text(response.error.code, style="todo.error")
            message = response.error.message
        row: list[Any] = [str(index), response.command, outcome, message]
        if verbose:
            row.append(f"{response.metadata.execution_time:.2f}ms")
        table.add_row(*row)
    console.print()
    console.print(table)


# ── Validation renderers ──────────────────────────────────────────────


def _render_validation(
    result: ValidationResult, console: Console, *, verbose: bool = False
) -> None:
    meta = result.metadata
    target = " ".join(p for p in (meta.operation, meta.model, meta.record_id) if p)
    if result.success:
        label = Text("VALID", style="todo.ok")
    else:
        label = Text("INVALID", style="todo.error")
    console.print(label, Text(f"  {target}", style="todo.command"), sep="")
    if result.errors or result.warnings:
        console.print()
        console.print(_issue_table(("error", result.errors), ("warning", result.warnings)))
    if meta.impact is not None:
        console.print()
        _field(console, "impact", meta.impact.classification)
        for affected in meta.impact.affected:
            target = f"{affected.model}:{affected.record_id}"
            console.print(f"    {affected.action}: {target} ({affected.relation})")
    if verbose:
        _render_telemetry(console, result.telemetry)


def _render_validation_stats(
    result: ValidationStats, console: Console, *, verbose: bool = False
) -> None:
    _status_line(console, True, "validation stats")
    _field(console, "validators", ", ".join(result.registered_validators))
    _field(console, "foreign_key_constraints", result.foreign_key_constraints)
    _field(console, "business_rules", result.business_rules)
    _field(console, "factories", ", ".join(result.factories_available))
    for key, value in result.system_health.items():
        _field(console, key, value)


# ── Integrity and status renderers ────────────────────────────────────


def _render_integrity(report: IntegrityReport, console: Console, *, verbose: bool = False) -> None:
    summary = report.summary
    score = summary.health_score
    score_style = "todo.ok" if score >= 90 else "todo.warning" if score >= 70 else "todo.error"
    _status_line(console, report.success, "integrity", report.error)
    console.print(
        Text("  health: ", style="todo.key"),
        Text(f"{score}/100", style=score_style),
        sep="",
    )
    _field(console, "checks_performed", report.checks_performed)
    _field(console, "total_records", summary.total_records)
    _field(console, "models", ", ".join(summary.models_checked))
    _field(console, "violations", len(report.violations))
    _field(console, "warnings", summary.warnings_count)
    if summary.failed_models:
        _field(console, "failed_models", ", ".join(summary.failed_models))

    if report.violations:
        console.print()
        console.print(_issue_table(("error", report.violations)))
    if verbose and report.warnings:
        console.print()
        console.print(_issue_table(("warning", report.warnings)))
    if summary.recommendations:
        console.print()
        console.print(Text("  recommendations:", style="todo.key"))
        for rec in summary.recommendations:
            console.print(f"    - {rec}", markup=False)
    if verbose:
        _field(console, "duration", f"{report.duration_ms:.2f}ms")
        _render_telemetry(console, report.telemetry)


def _render_status(status: SystemStatus, console: Console, *, verbose: bool = False) -> None:
    engine = status.engine
    console.print(
        Text("engine ", style="todo.command"),
        Text(engine.status, style=style_for_status(engine.status)),
        Text(f"  v{engine.version}, up {engine.uptime:.1f}s"),
        sep="",
    )
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Service", style="todo.key")
    table.add_column("Status")
    table.add_column("Detail")
    if verbose:
        table.add_column("Checked", style="dim")
    for name, svc in status.services.items():
        state = Text(svc.status, style=style_for_status(svc.status))
        row: list[Any] = [name, state, svc.detail or ""]
        if verbose:
            row.append(svc.last_check)
        table.add_row(*row)
    console.print(table)

    a = status.agents
    s = status.sessions
    p = status.performance
    _field(
        console,
        "agents",
        f"{a.total} ({a.active} active, {a.inactive} inactive, {a.suspended} suspended)",
    )
    _field(
        console,
        "sessions",
        f"{s.total} ({s.active} active, {s.expired} expired, {s.terminated} terminated)",
    )
    _field(console, "commands", p.total_commands)
    _field(console, "success_rate", f"{p.success_rate:.1%}")
    _field(console, "avg_response", f"{p.average_response_time:.2f}ms")
    _field(console, "per_minute", f"{p.commands_per_minute:.2f}")
    if verbose:
        _field(console, "started_at", engine.started_at)
        _render_telemetry(console, status.telemetry)


# ── Listing renderers ─────────────────────────────────────────────────


def _render_history(
    entries: list[ActionLogEntry], console: Console, *, verbose: bool = False
) -> None:
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("ID", style="todo.id", justify="right")
    table.add_column("Time", style="dim")
    table.add_column("Command", style="todo.command")
    table.add_column("Result")
    table.add_column("ms", justify="right")
    table.add_column("Agent")
    if verbose:
        table.add_column("Correlation", style="dim")
        table.add_column("Rollback of", justify="right")
    for entry in entries:
        if entry.success:
            outcome = Text("OK", style="todo.ok")
        else:
            outcome = Text(entry.error_code or "ERROR", style="todo.error")
        row: list[Any] = [
            str(entry.id),
            entry.timestamp,
            entry.command,
            outcome,
            f"{entry.execution_time:.2f}",
            entry.agent_id or "",
        ]
        if verbose:
            row.append(entry.correlation_id or "")
            row.append("" if entry.rollback_id is None else str(entry.rollback_id))
        table.add_row(*row)
    console.print(table)
    console.print(f"\n{len(entries)} entries")


def _render_tools(tools: list[ToolDescriptor], console: Console, *, verbose: bool = False) -> None:
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Tool", style="todo.command", no_wrap=True)
    table.add_column("Category")
    table.add_column("Description")
    if verbose:
        table.add_column("Permissions", style="dim")
    for tool in tools:
        row = [tool.name, tool.category, tool.description]
        if verbose:
            row.append(", ".join(tool.permissions))
        table.add_row(*row)
    console.print(table)
    console.print(f"\n{len(tools)} tools")


def _render_resources(
    resources: list[ResourceDescriptor], console: Console, *, verbose: bool = False
) -> None:
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("URI", style="todo.id", no_wrap=True)
    table.add_column("Name", style="todo.title")
    table.add_column("Description")
    if verbose:
        table.add_column("MIME", style="dim")
    for res in resources:
        row = [res.uri, res.name, res.description]
        if verbose:
            row.append(res.mime_type)
        table.add_row(*row)
    console.print(table)
    console.print(f"\n{len(resources)} resources")


def _render_resource_content(
    result: ResourceContent, console: Console, *, verbose: bool = False
) -> None:
    mime = Text(f"  ({result.mime_type})", style="dim")
    console.print(Text(result.uri, style="todo.id"), mime, sep="")
    console.print_json(data=result.content, default=str)


# ── Generic renderer ──────────────────────────────────────────────────


def _render_generic(payload: Any, console: Console, *, verbose: bool = False) -> None:
    """Fallback: key-value pairs of each model."""
    models = payload if isinstance(payload, list) else [payload]
    for model in models:
        data = model.model_dump(mode="json") if isinstance(model, BaseModel) else {"value": model}
        for key, value in data.items():
            if value is not None:
                _field(console, key, value)


_RENDERERS: dict[type, Callable[..., None]] = {
    Response: _render_response,
    BatchResponse: _render_batch,
    ValidationResult: _render_validation,
    ValidationStats: _render_validation_stats,
    IntegrityReport: _render_integrity,
    SystemStatus: _render_status,
    ActionLogEntry: _render_history,
    ToolDescriptor: _render_tools,
    ResourceDescriptor: _render_resources,
    ResourceContent: _render_resource_content,
}
