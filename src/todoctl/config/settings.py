"""Unified settings — CLI flags, env vars, and TOML config in one object.

Priority chain (highest to lowest):
  1. Init kwargs  — CLI flags passed by Click
  2. Env vars     — ``TODOCTL_*`` prefix, nested sections via ``__``
  3. TOML file    — ``todoctl.toml`` discovered via walk-up
  4. Code defaults — baked into the section models
"""

from __future__ import annotations

import threading
import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from todoctl.config.discovery import ConfigLocation, locate_config
from todoctl.config.models import (
    DatabaseConfig,
    HistoryConfig,
    IntegrityConfig,
    RouterConfig,
    ValidationConfig,
)


class ConfigFileError(ValueError):
    """Raised when todoctl.toml cannot be parsed."""


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Read settings from a discovered ``todoctl.toml``."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path and toml_path.is_file():
            raw = toml_path.read_text(encoding="utf-8")
            try:
                self._data = tomllib.loads(raw)
            except tomllib.TOMLDecodeError as exc:
                msg = f"Invalid TOML in {toml_path}: {exc}"
                raise ConfigFileError(msg) from exc

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        val = self._data.get(field_name)
        return val, field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        return self._data


# TOML path handed to settings_customise_sources during construction.
_tls = threading.local()


class TodoSettings(BaseSettings):
    """Settings for the control plane and the CLI host.

    Attributes:
        data_root: Directory the database path is resolved against (parent
            of ``todoctl.toml``, or CWD if no config found).
        config_path: The TOML file in effect, if any.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "TODOCTL_",
        "env_nested_delimiter": "__",
    }

    data_root: Path = Field(default_factory=Path.cwd)
    config_path: Path | None = None

    # --- CLI flags ---
    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False

    # --- TOML sections ---
    router: RouterConfig = Field(default_factory=RouterConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    integrity: IntegrityConfig = Field(default_factory=IntegrityConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @property
    def db_path(self) -> Path:
        path = Path(self.database.path)
        return path if path.is_absolute() else self.data_root / path

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert TOML source between env vars and defaults."""
        toml_path = getattr(_tls, "toml_path", None)
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, toml_path),
        )

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        data_root: Path | None = None,
        **cli_flags: Any,
    ) -> TodoSettings:
        """Construct settings from a CLI invocation.

        Discovers ``todoctl.toml`` via walk-up (or explicit *config_path*),
        resolves *data_root* from where the config was found, and
        merges CLI flags as highest-priority overrides.
        """
        location: ConfigLocation | None = None
        if config_path:
            p = Path(config_path)
            if p.is_file():
                location = ConfigLocation(p, p.parent)
        else:
            location = locate_config(data_root)

        toml_path = location.path if location else None
        resolved_root = data_root
        if resolved_root is None:
            resolved_root = location.root if location else Path.cwd()

        _tls.toml_path = toml_path
        try:
            return cls(
                data_root=resolved_root,
                config_path=toml_path,
                **cli_flags,
            )
        finally:
            _tls.toml_path = None
