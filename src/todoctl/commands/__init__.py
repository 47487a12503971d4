"""Subcommand modules for todoctl.

Provides register_commands(), which uses deferred imports to keep
``todoctl --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register the command group and standalone commands on the root group."""
    # --- Groups ---
    from todoctl.commands.catalog import catalog

    cli.add_command(catalog)

    # --- Standalone commands ---
    from todoctl.commands.batch import batch
    from todoctl.commands.check import check
    from todoctl.commands.history import history
    from todoctl.commands.run import run
    from todoctl.commands.status import status
    from todoctl.commands.validate import validate

    cli.add_command(run)
    cli.add_command(batch)
    cli.add_command(history)
    cli.add_command(status)
    cli.add_command(check)
    cli.add_command(validate)
