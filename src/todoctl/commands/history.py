"""Command: page through the audit log."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from todoctl.commands._base import TodoCommand

if TYPE_CHECKING:
    from todoctl.commands._context import AppContext


@click.command(
    cls=TodoCommand,
    examples="""\
  todoctl history
  todoctl history --limit 10 --offset 20
  todoctl history --session sess-42
  todoctl --json history""",
)
@click.option("--limit", type=click.IntRange(min=0), default=None, help="Entries per page.")
@click.option("--offset", type=click.IntRange(min=0), default=0, help="Entries to skip.")
@click.option("--session", "session_id", default=None, help="Only entries from this session.")
@click.pass_obj
def history(app: AppContext, limit: int | None, offset: int, session_id: str | None) -> None:
    """Show executed commands, newest first."""
    entries = app.plane.router.get_command_history(
        limit=limit, offset=offset, session_id=session_id
    )
    app.emit(entries)
