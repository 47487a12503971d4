"""Structured return values for the router, validation engine, and monitor.

INVARIANT: No public router, validation, or integrity operation raises to
its caller. Every path returns one of these frozen models with a code and
a message; the CLI and any transport consume them as-is.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationIssue(BaseModel):
    """One validation error or warning.

    ``model`` and ``record_id`` are set when the issue refers to a stored
    record (integrity sweeps, deletion analysis).
    """

    model_config = {"frozen": True}

    code: str
    message: str
    field: str | None = None
    model: str | None = None
    record_id: str | None = None


class AffectedRecord(BaseModel):
    """A dependent record touched by a deletion."""

    model_config = {"frozen": True}

    model: str
    record_id: str
    relation: str
    action: Literal["cascade", "set_null"]


class DeletionImpact(BaseModel):
    model_config = {"frozen": True}

    classification: Literal["safe", "cascade", "blocked"]
    affected: list[AffectedRecord] = Field(default_factory=list)


class ValidationMetadata(BaseModel):
    model_config = {"frozen": True}

    operation: str
    model: str | None = None
    record_id: str | None = None
    timestamp: str
    impact: DeletionImpact | None = None


class ValidationResult(BaseModel):
    """Outcome of one ``validate_model`` / ``validate_deletion`` call.

    ``success`` is True iff ``errors`` is empty; warnings never affect it.
    """

    model_config = {"frozen": True}

    success: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    metadata: ValidationMetadata
    telemetry: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _success_matches_errors(self) -> ValidationResult:
        if self.success == bool(self.errors):
            msg = "success must be True exactly when errors is empty"
            raise ValueError(msg)
        return self

    @classmethod
    def build(
        cls,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
        metadata: ValidationMetadata,
    ) -> ValidationResult:
        return cls(success=not errors, errors=errors, warnings=warnings, metadata=metadata)


class ValidationStats(BaseModel):
    model_config = {"frozen": True}

    registered_validators: list[str]
    foreign_key_constraints: int
    business_rules: int
    factories_available: list[str]
    system_health: dict[str, Any]


# ---------------------------------------------------------------------------
# Command responses
# ---------------------------------------------------------------------------


class ResponseError(BaseModel):
    """Structured error payload within a Response.

    ``details`` is free text; tracebacks are never included.
    """

    model_config = {"frozen": True}

    code: str
    message: str
    details: str | None = None
    errors: list[ValidationIssue] = Field(default_factory=list)


class ResponseMetadata(BaseModel):
    model_config = {"frozen": True}

    execution_time: float  # milliseconds
    timestamp: str
    correlation_id: str
    agent: str | None = None
    session_id: str | None = None
    log_id: int | None = None


class Response(BaseModel):
    """Outcome of one routed command.

    Attributes:
        success: Whether the command completed.
        command: Canonical ``action:target_type:target_id`` string.
        result: Executor payload on success.
        error: Structured error when ``success`` is False.
        warnings: Non-fatal issues (validation warnings, link misses).
        metadata: Timing, correlation, and audit linkage.
    """

    model_config = {"frozen": True}

    success: bool
    command: str
    result: Any = None
    error: ResponseError | None = None
    warnings: list[str] = Field(default_factory=list)
    metadata: ResponseMetadata
    telemetry: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _one_of_result_or_error(self) -> Response:
        if self.success and self.error is not None:
            msg = "a successful response cannot carry an error"
            raise ValueError(msg)
        if not self.success and self.error is None:
            msg = "a failed response must carry an error"
            raise ValueError(msg)
        return self


class BatchMetadata(BaseModel):
    model_config = {"frozen": True}

    total_commands: int
    success_count: int
    error_count: int
    parallel: bool
    stop_on_error: bool
    execution_time: float  # milliseconds
    timestamp: str


class BatchResponse(BaseModel):
    """Responses of a batch, index-aligned with the submitted commands."""

    model_config = {"frozen": True}

    responses: list[Response]
    metadata: BatchMetadata

    @property
    def success(self) -> bool:
        return self.metadata.error_count == 0


class StreamChunk(BaseModel):
    """One element of a streamed command.

    ``progress`` payloads are dicts with at least a ``stage`` key; the single
    ``result`` chunk carries the final :class:`Response`.
    """

    model_config = {"frozen": True}

    type: Literal["progress", "result"]
    payload: Any


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------


class IntegritySummary(BaseModel):
    model_config = {"frozen": True}

    health_score: int = Field(ge=0, le=100)
    total_records: int = 0
    models_checked: list[str] = Field(default_factory=list)
    violations_by_code: dict[str, int] = Field(default_factory=dict)
    warnings_count: int = 0
    failed_models: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class IntegrityReport(BaseModel):
    """Full-dataset health assessment.

    Found violations are data, not failure: ``success`` is False only when
    a model's dataset could not be enumerated or no check ran at all.
    """

    model_config = {"frozen": True}

    success: bool
    checks_performed: int
    violations: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    summary: IntegritySummary
    error: str | None = None
    timestamp: str
    duration_ms: float = 0.0
    telemetry: dict[str, Any] | None = None
