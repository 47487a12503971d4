"""Command: dry-run validation of a payload or a deletion."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from todoctl.commands._base import TodoCommand
from todoctl.commands._params import parse_json_object

if TYPE_CHECKING:
    from todoctl.commands._context import AppContext


@click.command(
    cls=TodoCommand,
    examples="""\
  todoctl validate list --data '{"title": "Groceries"}'
  todoctl validate item --operation update --id milk --data '{"status": "completed"}'
  todoctl validate list --delete groceries
  todoctl validate list --stats""",
)
@click.argument("model")
@click.option("--data", "data_json", default=None, help="Payload as a JSON object.")
@click.option(
    "--operation",
    type=click.Choice(["create", "update"]),
    default="create",
    help="Validate as a create or an update.",
)
@click.option("--id", "record_id", default=None, help="Record id for updates.")
@click.option("--delete", "delete_id", default=None, help="Analyze deleting this record instead.")
@click.option("--stats", is_flag=True, help="Show what the validation engine has registered.")
@click.pass_obj
def validate(
    app: AppContext,
    model: str,
    data_json: str | None,
    operation: str,
    record_id: str | None,
    delete_id: str | None,
    stats: bool,
) -> None:
    """Validate MODEL data without executing anything."""
    from todoctl.domain.types import Operation
    from todoctl.services.validation import ValidationContext

    engine = app.plane.validation
    if stats:
        app.emit(engine.get_validation_stats())
        return
    if delete_id:
        app.emit(engine.validate_deletion(model, delete_id))
        return
    data = parse_json_object(data_json, option="--data")
    context = ValidationContext(operation=Operation(operation), record_id=record_id)
    app.emit(engine.validate_model(model, data, context))
