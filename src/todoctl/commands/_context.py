"""AppContext — shared Click context for all commands.

Created once by the root CLI group and handed to subcommands via
``@click.pass_obj``. Provides lazy control-plane initialization and
centralized result emission (stdout/stderr routing and exit codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from todoctl.output.formatters import OutputSettings, format_result, is_success
from todoctl.services.result import Response

if TYPE_CHECKING:
    from todoctl.config.settings import TodoSettings
    from todoctl.output.formatters import Renderable
    from todoctl.services.context import ControlPlane


class AppContext:
    """Shared context flowing through Click's command hierarchy.

    The control plane is built on first use so ``--help``, ``--version``
    and ``--examples`` never open the database.
    """

    def __init__(self, settings: TodoSettings) -> None:
        self.settings = settings
        self._plane: ControlPlane | None = None

        from todoctl.config.logging import configure_logging

        configure_logging(
            verbose=settings.verbose, quiet=settings.quiet, log_json=settings.log_json
        )

        if settings.verbose:
            from todoctl.services.telemetry import enable_telemetry

            enable_telemetry()

    @property
    def output(self) -> OutputSettings:
        return OutputSettings(
            json_output=self.settings.json_output,
            quiet=self.settings.quiet,
            verbose=self.settings.verbose,
        )

    @property
    def plane(self) -> ControlPlane:
        """The initialized control plane (created lazily on first access)."""
        if self._plane is None:
            from todoctl.services.context import ControlPlane

            self._plane = ControlPlane(self.settings).initialize()
        return self._plane

    def close(self) -> None:
        """Release the control plane if one was opened."""
        if self._plane is not None:
            self._plane.cleanup()
            self._plane = None

    def emit(self, payload: Renderable) -> None:
        """Format and output a result with correct exit semantics.

        * Success: writes to stdout and returns. Response warnings go to
          stderr so they don't pollute piped output.
        * Failure: writes to stderr, exits with code 1.
        """
        settings = self.output
        output = format_result(payload, settings=settings)
        if is_success(payload):
            click.echo(output)
            # In JSON mode, warnings are already in the serialized payload.
            if not settings.json_output and isinstance(payload, Response):
                for warning in payload.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
        else:
            click.echo(output, err=True)
            raise SystemExit(1)

    def fail(self, message: str) -> None:
        """Report a CLI-level usage problem (bad file, bad JSON) and exit 1."""
        click.echo(f"ERROR: {message}", err=True)
        raise SystemExit(1)
