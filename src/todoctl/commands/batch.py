"""Command: run a batch of commands from a JSON file."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, TextIO

import click

from todoctl.commands._base import TodoCommand

if TYPE_CHECKING:
    from todoctl.commands._context import AppContext


def load_batch(source: TextIO) -> list[Any]:
    """Read a batch file: a JSON array, or an object with a ``commands`` array.

    String entries use the textual command form and are parsed here;
    mapping entries are passed to the router untouched so shape errors
    come back as per-command responses.
    """
    from todoctl.domain.commands import parse_command

    try:
        data = json.load(source)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON in batch file: {exc.msg}"
        raise click.BadParameter(msg, param_hint="FILE") from exc
    if isinstance(data, dict):
        data = data.get("commands")
    if not isinstance(data, list):
        msg = "Batch file must hold a JSON array of commands"
        raise click.BadParameter(msg, param_hint="FILE")
    return [parse_command(entry) if isinstance(entry, str) else entry for entry in data]


@click.command(
    cls=TodoCommand,
    examples="""\
  todoctl batch setup.json
  todoctl batch setup.json --stop-on-error
  todoctl batch reads.json --parallel
  cat setup.json | todoctl --json batch -""",
)
@click.argument("file", type=click.File("r", encoding="utf-8"))
@click.option("--parallel", is_flag=True, help="Dispatch all commands concurrently.")
@click.option("--stop-on-error", is_flag=True, help="Stop at the first failure (sequential only).")
@click.pass_obj
def batch(app: AppContext, file: TextIO, parallel: bool, stop_on_error: bool) -> None:
    """Execute every command in FILE ('-' for stdin)."""
    from todoctl.domain.commands import CommandParseError

    try:
        commands = load_batch(file)
    except CommandParseError as exc:
        app.fail(str(exc))
        return
    result = app.plane.router.execute_batch(
        commands, parallel=parallel, stop_on_error=stop_on_error
    )
    app.emit(result)
