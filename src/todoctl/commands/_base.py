"""Click base classes adding an ``--examples`` flag.

Examples are kept out of ``--help`` so it stays short. Under the root
``--json`` flag they print as a JSON object, which lets an agent fetch
usage patterns for a command without scraping prose.
"""

from __future__ import annotations

import json
import textwrap
from typing import Any

import click


def _example_lines(examples: str) -> list[str]:
    return [line for line in textwrap.dedent(examples).splitlines() if line.strip()]


def _wants_json(ctx: click.Context) -> bool:
    settings = getattr(ctx.find_root().obj, "settings", None)
    return bool(getattr(settings, "json_output", False))


class ExamplesMixin:
    """Registers the eager ``--examples`` option for a command or group."""

    examples: str | None

    def _init_examples(self, examples: str | None) -> None:
        self.examples = examples
        if not examples:
            return
        lines = _example_lines(examples)

        def show(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
            if not value:
                return
            if _wants_json(ctx):
                click.echo(json.dumps({"command": ctx.command_path, "examples": lines}))
            else:
                click.echo(f"Examples for '{ctx.command_path}':\n")
                click.echo("\n".join(f"  {line}" for line in lines))
            ctx.exit(0)

        self.params.append(  # type: ignore[attr-defined]
            click.Option(
                ["--examples"],
                is_flag=True,
                expose_value=False,
                is_eager=True,
                callback=show,
                help="Show usage examples.",
            )
        )


class TodoCommand(ExamplesMixin, click.Command):
    def __init__(self, *args: Any, examples: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._init_examples(examples)


class TodoGroup(ExamplesMixin, click.Group):
    """Group whose subcommands default to :class:`TodoCommand`."""

    command_class = TodoCommand

    def __init__(self, *args: Any, examples: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._init_examples(examples)
