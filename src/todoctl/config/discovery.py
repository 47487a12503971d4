"""Locate the todoctl.toml in effect.

Resolution order:

1. ``TODOCTL_CONFIG`` names a file directly (a missing file means "no config").
2. Walking up from the start directory, the first directory holding either
   ``todoctl.toml`` or ``.todoctl/todoctl.toml``. The plain file wins when
   both exist.

The directory where the walk stopped is the data root: relative database
paths resolve against it, so a config tucked inside ``.todoctl/`` still
roots the data beside that directory rather than inside it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import NamedTuple

CONFIG_FILENAME = "todoctl.toml"
CONFIG_DIRNAME = ".todoctl"
CONFIG_ENV_VAR = "TODOCTL_CONFIG"


class ConfigLocation(NamedTuple):
    path: Path
    root: Path


def _candidates(directory: Path) -> tuple[Path, Path]:
    return directory / CONFIG_FILENAME, directory / CONFIG_DIRNAME / CONFIG_FILENAME


def locate_config(start: Path | None = None) -> ConfigLocation | None:
    """Find the config file and the data root it implies."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        path = Path(override).expanduser()
        return ConfigLocation(path, path.parent) if path.is_file() else None

    directory = (start or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        for candidate in _candidates(candidate_dir):
            if candidate.is_file():
                return ConfigLocation(candidate, candidate_dir)
    return None


def find_config(start: Path | None = None) -> Path | None:
    """Path of the config file in effect, or None."""
    location = locate_config(start)
    return location.path if location else None
