"""ValidationEngine — schema, foreign-key, business-rule, and hierarchy checks.

Stages of :meth:`ValidationEngine.validate_model`, all evaluated so one call
surfaces every violation:

(a) validator lookup (the only short-circuit: NOT_SUPPORTED)
(b) field-level schema checks, one issue per failing field
(c) foreign-key resolution through the injected query capability
(d) business rules, error outcomes fail, warning outcomes never do
(e) hierarchy walks for cycles and depth

Registrations (validators, constraints, rules, hierarchies) are made at
composition time and only read afterwards, so concurrent validation needs
no locking. The integrity monitor reuses stages (c)–(e) via the public
``check_*`` / ``evaluate_rules`` methods.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_snake

from todoctl.config.models import ValidationConfig
from todoctl.domain.lifecycle import with_completion_stamp
from todoctl.domain.types import ErrorCode, ModelKind, OnDelete, Operation, Severity
from todoctl.services._helpers import now_iso
from todoctl.services.factories import FACTORIES, ModelFactory
from todoctl.services.result import (
    AffectedRecord,
    DeletionImpact,
    ValidationIssue,
    ValidationMetadata,
    ValidationResult,
    ValidationStats,
)
from todoctl.services.telemetry import trace_span, traced

logger = logging.getLogger(__name__)


class EntityQuery(Protocol):
    """Read capability injected into the engine and the integrity monitor."""

    def resolve_by_id(self, model: str, entity_id: str) -> dict[str, Any] | None: ...

    def enumerate_all(self, model: str) -> Iterable[dict[str, Any]]: ...


class QueryFailedError(RuntimeError):
    """The injected query raised while a check depended on its answer."""

    def __init__(self, model: str, entity_id: str | None = None) -> None:
        self.model = str(model)
        self.entity_id = entity_id
        target = f"{self.model} '{entity_id}'" if entity_id else f"{self.model} records"
        super().__init__(f"could not read {target}")


# ---------------------------------------------------------------------------
# Registration records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelValidator:
    """Field-level schemas for one model."""

    model: ModelKind
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]

    def schema_for(self, operation: Operation) -> type[BaseModel]:
        return self.create_schema if operation == Operation.CREATE else self.update_schema


def _references(value: Any, *, many: bool) -> list[str]:
    if value is None or value == "":
        return []
    if many and isinstance(value, (list, tuple)):
        return [str(v) for v in value if v not in (None, "")]
    return [str(value)]


@dataclass(frozen=True)
class ForeignKeyConstraint:
    """``source_model.field`` references ``target_model`` ids."""

    source_model: ModelKind
    field: str
    target_model: ModelKind
    required: bool = False
    on_delete: OnDelete = OnDelete.RESTRICT
    many: bool = False

    @property
    def relation(self) -> str:
        return f"{self.source_model}.{self.field}"

    def referenced_ids(self, entity: Mapping[str, Any]) -> list[str]:
        return _references(entity.get(self.field), many=self.many)


@dataclass(frozen=True)
class RuleOutcome:
    """A rule's finding. ``severity`` overrides the rule's default."""

    message: str
    field: str | None = None
    code: str = ErrorCode.BUSINESS_RULE_VIOLATION
    severity: Severity | None = None


@dataclass(frozen=True)
class RuleContext:
    """What a business rule may consult besides the entity itself."""

    operation: Operation
    record_id: str | None
    current: dict[str, Any] | None
    changes: dict[str, Any]
    query: EntityQuery
    config: ValidationConfig
    now: datetime

    def resolve(self, model: str, entity_id: Any) -> dict[str, Any] | None:
        if not entity_id:
            return None
        return self.query.resolve_by_id(model, str(entity_id))

    def changed(self, *fields: str) -> bool:
        """True on create/audit, or when an update touches any of *fields*."""
        if self.operation != Operation.UPDATE:
            return True
        return any(f in self.changes for f in fields)


_ALL_OPERATIONS = frozenset({Operation.CREATE, Operation.UPDATE, Operation.AUDIT})


@dataclass(frozen=True)
class BusinessRule:
    """A named predicate over one model's records."""

    id: str
    applies_to: ModelKind
    evaluate: Callable[[dict[str, Any], RuleContext], RuleOutcome | None]
    severity: Severity = Severity.ERROR
    description: str = ""
    operations: frozenset[Operation] = _ALL_OPERATIONS


@dataclass(frozen=True)
class Hierarchy:
    """A self-referencing relation that must stay acyclic and bounded."""

    model: ModelKind
    field: str
    max_depth: int
    many: bool = False
    warn_ratio: float | None = None
    label: str = "hierarchy"

    def references(self, entity: Mapping[str, Any] | None) -> list[str]:
        if not entity:
            return []
        return _references(entity.get(self.field), many=self.many)


@dataclass(frozen=True)
class ValidationContext:
    operation: Operation = Operation.CREATE
    record_id: str | None = None


# ---------------------------------------------------------------------------
# Hierarchy walk
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WalkResult:
    cycle: tuple[str, ...] | None
    depth: int


def walk_references(
    first_hops: Iterable[str],
    *,
    candidate_id: str | None,
    neighbours: Callable[[str], Iterable[str]],
    max_hops: int,
) -> WalkResult:
    """Depth-first walk from *first_hops* along *neighbours*.

    A cycle is reported when the walk reaches *candidate_id* or an id
    already on the current path; a direct self-reference is the one-hop
    case of the same check. ``seen`` prunes ids whose subtree was already
    explored. The walk never goes deeper than ``max_hops + 1``; ``depth``
    is the longest path explored.
    """
    seen: set[str] = set()
    deepest = 0
    stack: list[tuple[str, tuple[str, ...]]] = [(hop, ()) for hop in reversed(list(first_hops))]
    while stack:
        node, path = stack.pop()
        if node == candidate_id or node in path:
            return WalkResult(cycle=(*path, node), depth=max(deepest, len(path) + 1))
        hops = len(path) + 1
        deepest = max(deepest, hops)
        if hops > max_hops or node in seen:
            continue
        seen.add(node)
        for nxt in reversed(list(neighbours(node))):
            stack.append((nxt, (*path, node)))
    return WalkResult(cycle=None, depth=deepest)


def cycle_members(cycle: tuple[str, ...]) -> frozenset[str]:
    """The ids forming the loop itself (without any lead-in path)."""
    start = cycle.index(cycle[-1])
    return frozenset(cycle[start:])


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class CheckOutcome:
    """Accumulated issues and the number of individual checks executed."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    checks: int = 0
    # (cycle path, the CIRCULAR_DEPENDENCY issue reporting it)
    cycles: list[tuple[tuple[str, ...], ValidationIssue]] = field(default_factory=list)

    def merge(self, other: CheckOutcome) -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.checks += other.checks
        self.cycles.extend(other.cycles)


def _normalize_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {to_snake(str(k)): v for k, v in data.items()}


def _field_issues(schema: type[BaseModel], exc: SchemaError, kind: ModelKind) -> list[ValidationIssue]:
    by_alias = {(info.alias or name): name for name, info in schema.model_fields.items()}
    issues: list[ValidationIssue] = []
    for err in exc.errors():
        loc = [str(p) for p in err["loc"]]
        if loc:
            loc[0] = by_alias.get(loc[0], loc[0])
        name = ".".join(loc) or None
        issues.append(
            ValidationIssue(
                code=ErrorCode.VALIDATION_ERROR,
                message=f"{name}: {err['msg']}" if name else err["msg"],
                field=name,
                model=kind,
            )
        )
    return issues


def _coerce_context(context: ValidationContext | Mapping[str, Any] | None) -> ValidationContext:
    if context is None:
        return ValidationContext()
    if isinstance(context, ValidationContext):
        return context
    data = _normalize_keys(context)
    return ValidationContext(
        operation=Operation(data.get("operation", Operation.CREATE)),
        record_id=data.get("record_id"),
    )


class ValidationEngine:
    """Validates model payloads and deletions against registered constraints.

    Parameters:
        query: Read capability for referenced and dependent records.
        config: Depth limits and rule thresholds.
        factories: Model factories used to materialize create payloads.
    """

    def __init__(
        self,
        query: EntityQuery,
        *,
        config: ValidationConfig | None = None,
        factories: Mapping[ModelKind, ModelFactory] | None = None,
    ) -> None:
        self._query = query
        self._config = config or ValidationConfig()
        self._factories: dict[ModelKind, ModelFactory] = dict(
            FACTORIES if factories is None else factories
        )
        self._validators: dict[ModelKind, ModelValidator] = {}
        self._foreign_keys: list[ForeignKeyConstraint] = []
        self._rules: list[BusinessRule] = []
        self._hierarchies: list[Hierarchy] = []

    @classmethod
    def with_defaults(
        cls,
        query: EntityQuery,
        config: ValidationConfig | None = None,
    ) -> ValidationEngine:
        """Engine with the stock list/item/agent/session registrations."""
        from todoctl.services import rules

        config = config or ValidationConfig()
        engine = cls(query, config=config)
        for validator in rules.default_validators():
            engine.register_validator(validator)
        for constraint in rules.default_foreign_keys():
            engine.register_foreign_key(constraint)
        for rule in rules.default_rules():
            engine.register_rule(rule)
        for hierarchy in rules.default_hierarchies(config):
            engine.register_hierarchy(hierarchy)
        return engine

    # ------------------------------------------------------------------
    # Registration (composition time only)
    # ------------------------------------------------------------------

    def register_validator(self, validator: ModelValidator) -> None:
        self._validators[validator.model] = validator

    def register_foreign_key(self, constraint: ForeignKeyConstraint) -> None:
        self._foreign_keys.append(constraint)

    def register_rule(self, rule: BusinessRule) -> None:
        if any(r.id == rule.id for r in self._rules):
            msg = f"Business rule already registered: {rule.id}"
            raise ValueError(msg)
        self._rules.append(rule)

    def register_hierarchy(self, hierarchy: Hierarchy) -> None:
        self._hierarchies.append(hierarchy)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def config(self) -> ValidationConfig:
        return self._config

    @property
    def registered_models(self) -> list[ModelKind]:
        return list(self._validators)

    def foreign_keys_for(self, model: ModelKind) -> list[ForeignKeyConstraint]:
        return [fk for fk in self._foreign_keys if fk.source_model == model]

    def foreign_keys_targeting(self, model: ModelKind) -> list[ForeignKeyConstraint]:
        return [fk for fk in self._foreign_keys if fk.target_model == model]

    def rules_for(self, model: ModelKind, operation: Operation | None = None) -> list[BusinessRule]:
        return [
            r
            for r in self._rules
            if r.applies_to == model and (operation is None or operation in r.operations)
        ]

    def hierarchies_for(self, model: ModelKind) -> list[Hierarchy]:
        return [h for h in self._hierarchies if h.model == model]

    def get_validation_stats(self) -> ValidationStats:
        """Introspection surface over the current registrations."""
        return ValidationStats(
            registered_validators=[str(m) for m in self._validators],
            foreign_key_constraints=len(self._foreign_keys),
            business_rules=len(self._rules),
            factories_available=[str(m) for m in self._factories],
            system_health={
                "initialized": True,
                "rules_by_model": {str(m): len(self.rules_for(m)) for m in self._validators},
                "constraints_by_model": {
                    str(m): len(self.foreign_keys_for(m)) for m in self._validators
                },
                "hierarchies": [f"{h.model}.{h.field}" for h in self._hierarchies],
            },
        )

    # ------------------------------------------------------------------
    # Public validation API
    # ------------------------------------------------------------------

    @traced
    def validate_model(
        self,
        model_name: str,
        data: Mapping[str, Any],
        context: ValidationContext | Mapping[str, Any] | None = None,
    ) -> ValidationResult:
        """Validate a create or update payload for *model_name*.

        A ``delete`` context is forwarded to :meth:`validate_deletion`.
        """
        try:
            ctx = _coerce_context(context)
        except ValueError as exc:
            meta = ValidationMetadata(operation="unknown", model=str(model_name), timestamp=now_iso())
            issue = ValidationIssue(code=ErrorCode.VALIDATION_ERROR, message=str(exc))
            return ValidationResult.build([issue], [], meta)
        if ctx.operation == Operation.DELETE and ctx.record_id:
            return self.validate_deletion(model_name, ctx.record_id)

        kind = self._kind(model_name)
        meta = ValidationMetadata(
            operation=ctx.operation,
            model=str(model_name),
            record_id=ctx.record_id,
            timestamp=now_iso(),
        )
        validator = self._validators.get(kind) if kind is not None else None
        if kind is None or validator is None:
            return ValidationResult.build([self._not_supported(model_name)], [], meta)
        if not isinstance(data, Mapping):
            issue = ValidationIssue(
                code=ErrorCode.VALIDATION_ERROR,
                message="Payload must be a mapping of field names to values",
                model=kind,
            )
            return ValidationResult.build([issue], [], meta)

        outcome = CheckOutcome()
        raw = _normalize_keys(data)
        creating = ctx.operation == Operation.CREATE

        # (b) field-level checks
        schema = validator.schema_for(ctx.operation)
        changes: dict[str, Any]
        with trace_span("fields"):
            try:
                parsed = schema.model_validate(raw)
            except SchemaError as exc:
                outcome.errors.extend(_field_issues(schema, exc, kind))
                changes = raw
            else:
                changes = parsed.model_dump(mode="json", exclude_unset=not creating)

        # Existence of the addressed record
        current: dict[str, Any] | None = None
        if ctx.record_id:
            current = self._resolve(self._query, kind, ctx.record_id)
            if creating and current is not None:
                outcome.errors.append(
                    ValidationIssue(
                        code=ErrorCode.VALIDATION_ERROR,
                        message=f"{kind} '{ctx.record_id}' already exists",
                        field="id",
                        model=kind,
                        record_id=ctx.record_id,
                    )
                )
            elif not creating and current is None:
                outcome.errors.append(self._missing_record(kind, ctx.record_id))

        now = datetime.now(UTC)
        entity = self._candidate(kind, raw, changes, current, ctx, now)

        # (c) foreign keys
        with trace_span("foreign_keys"):
            outcome.merge(
                self.check_foreign_keys(
                    kind,
                    entity,
                    only_fields=None if creating else set(changes),
                    enforce_required=creating,
                )
            )

        # (d) business rules
        rule_ctx = RuleContext(
            operation=ctx.operation,
            record_id=ctx.record_id,
            current=current,
            changes=changes,
            query=self._query,
            config=self._config,
            now=now,
        )
        with trace_span("business_rules"):
            outcome.merge(self.evaluate_rules(kind, entity, rule_ctx))

        # (e) structural checks
        hierarchy_fields = {h.field for h in self.hierarchies_for(kind)}
        if creating or hierarchy_fields & set(changes):
            with trace_span("hierarchy"):
                outcome.merge(
                    self.check_hierarchies(kind, entity, candidate_id=ctx.record_id or entity.get("id"))
                )

        return ValidationResult.build(outcome.errors, outcome.warnings, meta)

    @traced
    def validate_deletion(
        self,
        model_name: str,
        record_id: str,
        context: ValidationContext | Mapping[str, Any] | None = None,
    ) -> ValidationResult:
        """Classify deleting *record_id* as safe, cascading, or blocked.

        Walks dependents declared by foreign keys targeting the model:
        ``restrict`` dependents block, ``cascade`` dependents are reported
        and walked recursively, ``set_null`` dependents are reported only.
        """
        kind = self._kind(model_name)
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        def result(impact: DeletionImpact | None) -> ValidationResult:
            meta = ValidationMetadata(
                operation=Operation.DELETE,
                model=str(model_name),
                record_id=record_id,
                timestamp=now_iso(),
                impact=impact,
            )
            return ValidationResult.build(errors, warnings, meta)

        if kind is None or kind not in self._validators:
            errors.append(self._not_supported(model_name))
            return result(None)
        if self._resolve(self._query, kind, record_id) is None:
            errors.append(self._missing_record(kind, record_id))
            return result(None)

        affected: list[AffectedRecord] = []
        datasets: dict[ModelKind, list[dict[str, Any]]] = {}
        visited: set[tuple[ModelKind, str]] = {(kind, record_id)}
        queue: list[tuple[ModelKind, str]] = [(kind, record_id)]

        unreadable: set[ModelKind] = set()
        while queue:
            model, entity_id = queue.pop(0)
            for fk in self.foreign_keys_targeting(model):
                if fk.source_model in unreadable:
                    continue
                if fk.source_model not in datasets:
                    try:
                        datasets[fk.source_model] = self._enumerate(fk.source_model)
                    except QueryFailedError as exc:
                        unreadable.add(fk.source_model)
                        errors.append(
                            ValidationIssue(
                                code=ErrorCode.EXECUTION_ERROR,
                                message=(
                                    f"Cannot delete {kind} '{record_id}': could not "
                                    f"enumerate {fk.source_model} dependents ({exc})"
                                ),
                                model=fk.source_model,
                            )
                        )
                        continue
                for dependent in datasets[fk.source_model]:
                    if entity_id not in fk.referenced_ids(dependent):
                        continue
                    dep_key = (fk.source_model, str(dependent.get("id")))
                    if dep_key in visited:
                        continue
                    if fk.on_delete == OnDelete.RESTRICT:
                        errors.append(
                            ValidationIssue(
                                code=ErrorCode.FOREIGN_KEY_VIOLATION,
                                message=(
                                    f"Cannot delete {model} '{entity_id}': "
                                    f"{dep_key[0]} '{dep_key[1]}' references it via "
                                    f"{fk.relation} (restrict)"
                                ),
                                field=fk.field,
                                model=dep_key[0],
                                record_id=dep_key[1],
                            )
                        )
                        continue
                    action = "cascade" if fk.on_delete == OnDelete.CASCADE else "set_null"
                    affected.append(
                        AffectedRecord(
                            model=dep_key[0],
                            record_id=dep_key[1],
                            relation=fk.relation,
                            action=action,
                        )
                    )
                    if action == "cascade":
                        visited.add(dep_key)
                        queue.append(dep_key)

        if errors:
            classification = "blocked"
        elif affected:
            classification = "cascade"
            warnings.append(
                ValidationIssue(
                    code=ErrorCode.FOREIGN_KEY_VIOLATION,
                    message=(
                        f"Deleting {kind} '{record_id}' affects "
                        f"{len(affected)} dependent record(s)"
                    ),
                    model=kind,
                    record_id=record_id,
                )
            )
        else:
            classification = "safe"
        return result(DeletionImpact(classification=classification, affected=affected))

    # ------------------------------------------------------------------
    # Reusable stages
    # ------------------------------------------------------------------

    def check_foreign_keys(
        self,
        kind: ModelKind,
        entity: Mapping[str, Any],
        query: EntityQuery | None = None,
        *,
        only_fields: set[str] | None = None,
        enforce_required: bool = True,
    ) -> CheckOutcome:
        """Resolve every reference *entity* holds under *kind*'s constraints."""
        query = query or self._query
        out = CheckOutcome()
        record_id = entity.get("id")
        for fk in self.foreign_keys_for(kind):
            if only_fields is not None and fk.field not in only_fields:
                continue
            out.checks += 1
            refs = fk.referenced_ids(entity)
            if not refs:
                if fk.required and enforce_required:
                    out.errors.append(
                        ValidationIssue(
                            code=ErrorCode.FOREIGN_KEY_VIOLATION,
                            message=f"{fk.relation} is required (references {fk.target_model})",
                            field=fk.field,
                            model=kind,
                            record_id=record_id,
                        )
                    )
                continue
            for ref in refs:
                if self._resolve(query, fk.target_model, ref) is None:
                    out.errors.append(
                        ValidationIssue(
                            code=ErrorCode.FOREIGN_KEY_VIOLATION,
                            message=f"{fk.relation} references missing {fk.target_model} '{ref}'",
                            field=fk.field,
                            model=kind,
                            record_id=record_id,
                        )
                    )
        return out

    def evaluate_rules(
        self,
        kind: ModelKind,
        entity: dict[str, Any],
        ctx: RuleContext,
    ) -> CheckOutcome:
        """Run every rule for *kind* that applies to ``ctx.operation``."""
        out = CheckOutcome()
        for rule in self.rules_for(kind, ctx.operation):
            out.checks += 1
            try:
                finding = rule.evaluate(entity, ctx)
            except Exception as exc:
                logger.warning("Rule %s failed to evaluate: %s", rule.id, exc)
                out.warnings.append(
                    ValidationIssue(
                        code=ErrorCode.BUSINESS_RULE_VIOLATION,
                        message=f"Rule '{rule.id}' could not be evaluated: {exc}",
                        model=kind,
                        record_id=entity.get("id"),
                    )
                )
                continue
            if finding is None:
                continue
            issue = ValidationIssue(
                code=finding.code,
                message=finding.message,
                field=finding.field,
                model=kind,
                record_id=entity.get("id"),
            )
            if (finding.severity or rule.severity) == Severity.ERROR:
                out.errors.append(issue)
            else:
                out.warnings.append(issue)
        return out

    def check_hierarchies(
        self,
        kind: ModelKind,
        entity: Mapping[str, Any],
        query: EntityQuery | None = None,
        *,
        candidate_id: str | None,
    ) -> CheckOutcome:
        """Walk each self-referencing relation of *kind* from *entity*."""
        query = query or self._query
        out = CheckOutcome()
        for hierarchy in self.hierarchies_for(kind):
            out.checks += 1
            first = hierarchy.references(entity)
            if not first:
                continue

            def neighbours(node_id: str, h: Hierarchy = hierarchy) -> list[str]:
                return h.references(self._lookup(query, h.model, node_id))

            try:
                walk = walk_references(
                    first,
                    candidate_id=candidate_id,
                    neighbours=neighbours,
                    max_hops=hierarchy.max_depth,
                )
            except QueryFailedError as exc:
                out.errors.append(
                    ValidationIssue(
                        code=ErrorCode.EXECUTION_ERROR,
                        message=f"Could not walk {hierarchy.label}: {exc}",
                        field=hierarchy.field,
                        model=kind,
                        record_id=candidate_id,
                    )
                )
                continue
            if walk.cycle is not None:
                cycle = (candidate_id, *walk.cycle) if candidate_id else walk.cycle
                issue = ValidationIssue(
                    code=ErrorCode.CIRCULAR_DEPENDENCY,
                    message=f"Circular {hierarchy.label} detected: {' -> '.join(cycle)}",
                    field=hierarchy.field,
                    model=kind,
                    record_id=candidate_id,
                )
                out.cycles.append((cycle, issue))
                out.errors.append(issue)
                continue

            level = walk.depth + 1
            if level > hierarchy.max_depth:
                out.errors.append(
                    ValidationIssue(
                        code=self._config.depth_violation_code,
                        message=(
                            f"{hierarchy.label.capitalize()} depth {level} exceeds "
                            f"maximum of {hierarchy.max_depth}"
                        ),
                        field=hierarchy.field,
                        model=kind,
                        record_id=candidate_id,
                    )
                )
            elif hierarchy.warn_ratio and level >= math.ceil(hierarchy.max_depth * hierarchy.warn_ratio):
                out.warnings.append(
                    ValidationIssue(
                        code=ErrorCode.BUSINESS_RULE_VIOLATION,
                        message=(
                            f"{hierarchy.label.capitalize()} depth {level} is approaching "
                            f"the maximum of {hierarchy.max_depth}"
                        ),
                        field=hierarchy.field,
                        model=kind,
                        record_id=candidate_id,
                    )
                )
        return out

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _kind(self, model_name: str) -> ModelKind | None:
        try:
            return ModelKind(str(model_name))
        except ValueError:
            return None

    def _candidate(
        self,
        kind: ModelKind,
        raw: dict[str, Any],
        changes: dict[str, Any],
        current: dict[str, Any] | None,
        ctx: ValidationContext,
        now: datetime,
    ) -> dict[str, Any]:
        """The record as it would be stored if the change were applied."""
        if ctx.operation != Operation.CREATE:
            stamped = with_completion_stamp(changes, current, now.isoformat())
            return {**(current or {}), **stamped}
        factory = self._factories.get(kind)
        if factory is not None:
            try:
                return factory.build(raw, entity_id=ctx.record_id)
            except SchemaError:
                pass
        return {**changes, "id": ctx.record_id}

    def _enumerate(self, model: ModelKind) -> list[dict[str, Any]]:
        try:
            return list(self._query.enumerate_all(model))
        except Exception as exc:
            logger.warning("Could not enumerate %s records", model, exc_info=True)
            raise QueryFailedError(model) from exc

    @staticmethod
    def _lookup(query: EntityQuery, model: str, entity_id: str) -> dict[str, Any] | None:
        """Like :meth:`_resolve`, but a failing query raises QueryFailedError."""
        try:
            return query.resolve_by_id(model, entity_id)
        except Exception as exc:
            logger.warning("Could not resolve %s '%s'", model, entity_id, exc_info=True)
            raise QueryFailedError(model, entity_id) from exc

    @staticmethod
    def _resolve(query: EntityQuery, model: str, entity_id: str) -> dict[str, Any] | None:
        try:
            return query.resolve_by_id(model, entity_id)
        except Exception:
            logger.warning("Could not resolve %s '%s'", model, entity_id, exc_info=True)
            return None

    @staticmethod
    def _not_supported(model_name: str) -> ValidationIssue:
        return ValidationIssue(
            code=ErrorCode.NOT_SUPPORTED,
            message=f"No validator registered for model '{model_name}'",
            model=str(model_name),
        )

    @staticmethod
    def _missing_record(kind: ModelKind, record_id: str) -> ValidationIssue:
        return ValidationIssue(
            code=ErrorCode.VALIDATION_ERROR,
            message=f"{kind} '{record_id}' does not exist",
            field="id",
            model=kind,
            record_id=record_id,
        )
