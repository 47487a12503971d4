"""Shared service-layer helper functions."""

from __future__ import annotations

import secrets
import time
from datetime import UTC, datetime
from typing import Any


def now_iso() -> str:
    """Current UTC time as standard ISO 8601 (for records and audit entries)."""
    return datetime.now(UTC).isoformat()


def parse_iso(value: Any) -> datetime | None:
    """Parse an ISO 8601 string (or pass through a datetime).

    Naive values are taken as UTC. Returns None for empty or unparseable
    input so callers can treat bad dates as absent.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def new_correlation_id() -> str:
    """Correlation id for one command: ``cmd_{epoch_ms}_{random}``."""
    return f"cmd_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def new_record_id(prefix: str) -> str:
    """Random record id with a model prefix, e.g. ``list_3f9a0c2e1b7d``."""
    return f"{prefix}_{secrets.token_hex(6)}"
