"""Command: report engine and service health."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from todoctl.commands._base import TodoCommand

if TYPE_CHECKING:
    from todoctl.commands._context import AppContext


@click.command(
    cls=TodoCommand,
    examples="""\
  todoctl status
  todoctl --json status
  todoctl -q status""",
)
@click.pass_obj
def status(app: AppContext) -> None:
    """Show system status: services, agents, sessions, throughput."""
    app.emit(app.plane.router.get_system_status())
