"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, todoctl.toml only contains
overrides. An empty (or absent) file yields a fully working setup.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class RouterConfig(BaseModel):
    """[router] section."""

    model_config = {"frozen": True}

    # Seconds before a dispatched executor is reported as EXECUTION_ERROR; 0 disables.
    command_timeout: float = Field(default=30.0, ge=0)
    max_parallel: int = Field(default=5, ge=1)
    dispatch_workers: int = Field(default=16, ge=1)
    stream_buffer: int = Field(default=1, ge=1)
    history_limit: int = Field(default=50, ge=1)


class ValidationConfig(BaseModel):
    """[validation] section."""

    model_config = {"frozen": True}

    max_list_depth: int = Field(default=5, ge=1)
    depth_warning_ratio: float = Field(default=0.8, gt=0, le=1)
    max_dependency_depth: int = Field(default=25, ge=1)
    depth_violation_code: Literal["BUSINESS_RULE_VIOLATION", "CIRCULAR_DEPENDENCY"] = (
        "BUSINESS_RULE_VIOLATION"
    )
    long_duration_minutes: int = 2400
    duration_overrun_factor: float = 2.0
    distant_due_days: int = 365


class IntegrityConfig(BaseModel):
    """[integrity] section."""

    model_config = {"frozen": True}

    schedule_enabled: bool = False
    interval_seconds: float = Field(default=86400.0, gt=0)
    error_weight: float = Field(default=1.0, ge=0)
    warning_weight: float = Field(default=0.25, ge=0)


class HistoryConfig(BaseModel):
    """[history] section."""

    model_config = {"frozen": True}

    persist: bool = True


class DatabaseConfig(BaseModel):
    """[database] section."""

    model_config = {"frozen": True}

    path: str = ".todoctl/todoctl.db"
