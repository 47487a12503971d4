"""Shared parsing for command parameters given on the command line."""

from __future__ import annotations

import json
from typing import Any

import click


def coerce_value(raw: str) -> Any:
    """JSON-decode a ``-p`` value when it parses, else keep the string.

    >>> coerce_value("3")
    3
    >>> coerce_value("Groceries")
    'Groceries'
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def parse_pairs(pairs: tuple[str, ...]) -> dict[str, Any]:
    """``key=value`` pairs to a parameter dict."""
    out: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            msg = f"Expected key=value, got '{pair}'"
            raise click.BadParameter(msg, param_hint="-p/--param")
        out[key.strip()] = coerce_value(value)
    return out


def parse_json_object(raw: str | None, *, option: str) -> dict[str, Any]:
    """Decode a JSON object option; anything else is a usage error."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON: {exc.msg}"
        raise click.BadParameter(msg, param_hint=option) from exc
    if not isinstance(data, dict):
        msg = "Must be a JSON object"
        raise click.BadParameter(msg, param_hint=option)
    return data
