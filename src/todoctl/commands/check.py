"""Command: run a full integrity sweep."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from todoctl.commands._base import TodoCommand

if TYPE_CHECKING:
    from todoctl.commands._context import AppContext


@click.command(
    cls=TodoCommand,
    examples="""\
  todoctl check
  todoctl check --min-score 90
  todoctl -v check""",
)
@click.option(
    "--min-score",
    type=click.IntRange(0, 100),
    default=None,
    help="Exit 1 when the health score is below this value.",
)
@click.pass_obj
def check(app: AppContext, min_score: int | None) -> None:
    """Check every stored record against constraints and rules."""
    report = app.plane.integrity.perform_integrity_check()
    if min_score is not None and report.success and report.summary.health_score < min_score:
        report = report.model_copy(
            update={
                "success": False,
                "error": f"Health score {report.summary.health_score} is below {min_score}",
            }
        )
    app.emit(report)
