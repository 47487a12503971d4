"""Rich Console factory and theme for todoctl output.

Consoles render into a StringIO buffer so every renderer keeps the
``format_result() -> str`` contract. Outside a TTY (tests, pipes) Rich
drops color codes on its own.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

TODO_THEME = Theme(
    {
        "todo.ok": "bold green",
        "todo.error": "bold red",
        "todo.warning": "bold yellow",
        "todo.command": "bold cyan",
        "todo.key": "dim",
        "todo.id": "bold blue",
        "todo.title": "bold",
        "todo.score": "magenta",
        "todo.status.active": "green",
        "todo.status.pending": "yellow",
        "todo.status.completed": "dim green",
        "todo.status.archived": "dim",
        "todo.status.blocked": "red",
        "todo.status.suspended": "red",
    }
)

_STATUS_STYLES: dict[str, str] = {
    "active": "todo.status.active",
    "in_progress": "todo.status.active",
    "healthy": "todo.status.active",
    "pending": "todo.status.pending",
    "degraded": "todo.status.pending",
    "completed": "todo.status.completed",
    "archived": "todo.status.archived",
    "inactive": "todo.status.archived",
    "disabled": "todo.status.archived",
    "blocked": "todo.status.blocked",
    "cancelled": "todo.status.blocked",
    "suspended": "todo.status.suspended",
    "unreachable": "todo.status.suspended",
}


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer.

    Args:
        no_color: Disable ANSI escape codes (used in tests).
        width: Override terminal width (useful for consistent test output).
    """
    return Console(
        file=StringIO(),
        theme=TODO_THEME,
        no_color=no_color,
        highlight=False,
        # command strings like "read:list:l1" must not be read as emoji codes
        emoji=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def style_for_status(status: str) -> str:
    """Return the Rich style name for a record or service status."""
    return _STATUS_STYLES.get(status, "")
