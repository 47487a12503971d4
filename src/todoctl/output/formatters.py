"""Rich/JSON output helpers.

The CLI renders router results for humans (Rich tables, colors) or
machines (``--json``). Results are pydantic models, or lists of them for
history and catalog listings; this layer picks the mode.
"""

from __future__ import annotations

import json as _json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from todoctl.output.renderers import render_quiet, render_result

Renderable = BaseModel | list[BaseModel]


@dataclass(frozen=True)
class OutputSettings:
    """Output mode flags taken from the global CLI options."""

    json_output: bool = False
    quiet: bool = False
    verbose: bool = False


def to_jsonable(payload: Renderable) -> Any:
    """Plain JSON-compatible data for a model or a list of models."""
    if isinstance(payload, list):
        return [to_jsonable(p) for p in payload]
    return payload.model_dump(mode="json")


def is_success(payload: Renderable) -> bool:
    """Whether *payload* reports success; listings always do."""
    if isinstance(payload, list):
        return True
    return bool(getattr(payload, "success", True))


def format_result(payload: Renderable, *, settings: OutputSettings | None = None) -> str:
    """Format a result for display.

    Args:
        payload: A result model or a list of them.
        settings: Output mode; defaults to human-readable, non-verbose.
    """
    settings = settings or OutputSettings()
    if settings.json_output:
        return _json.dumps(to_jsonable(payload), indent=2, default=str)
    if settings.quiet:
        return render_quiet(payload)
    return render_result(payload, verbose=settings.verbose)
