"""Command: route a single command through the control plane."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from todoctl.commands._base import TodoCommand
from todoctl.commands._params import parse_json_object, parse_pairs

if TYPE_CHECKING:
    from todoctl.commands._context import AppContext


@click.command(
    cls=TodoCommand,
    examples="""\
  todoctl run 'create:list:groceries{"title": "Groceries"}'
  todoctl run create:item:milk -p list_id=groceries -p title=Milk
  todoctl run read:list:groceries -p include_items=true
  todoctl run mark_done:item:milk --agent planner-1
  todoctl run monitor:system:all --stream""",
)
@click.argument("command")
@click.option("-p", "--param", "pairs", multiple=True, help="Parameter as key=value (repeatable).")
@click.option("--params", "params_json", default=None, help="Parameters as a JSON object.")
@click.option("--session", "session_id", default=None, help="Session id recorded with the command.")
@click.option("--agent", "agent_id", default=None, help="Agent id issuing the command.")
@click.option("--stream", is_flag=True, help="Print progress chunks while the command runs.")
@click.pass_obj
def run(
    app: AppContext,
    command: str,
    pairs: tuple[str, ...],
    params_json: str | None,
    session_id: str | None,
    agent_id: str | None,
    stream: bool,
) -> None:
    """Execute COMMAND, written as action:target_type:target_id{json}."""
    from todoctl.domain.commands import CommandParseError, parse_command
    from todoctl.output.renderers import render_progress

    try:
        parsed = parse_command(command, session_id=session_id, agent_id=agent_id)
    except CommandParseError as exc:
        app.fail(str(exc))
        return

    extra = {**parse_json_object(params_json, option="--params"), **parse_pairs(pairs)}
    if extra:
        parsed = parsed.model_copy(update={"parameters": {**parsed.parameters, **extra}})

    router = app.plane.router
    if not stream:
        app.emit(router.execute_command(parsed))
        return

    final = None
    with router.stream_command(parsed) as chunks:
        for chunk in chunks:
            if chunk.type == "result":
                final = chunk.payload
            elif app.settings.json_output:
                click.echo(chunk.model_dump_json(), err=True)
            elif not app.settings.quiet:
                click.echo(render_progress(chunk), err=True)
    if final is None:
        app.fail(f"{parsed.canonical} produced no result")
        return
    app.emit(final)
