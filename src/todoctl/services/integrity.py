"""IntegrityMonitor — full-dataset sweep over every registered model.

Reuses the validation engine's foreign-key, business-rule, and hierarchy
stages against stored records. Found violations are data: the report only
fails when a model cannot be enumerated or nothing is registered.

Health score::

    weighted = errors * error_weight + warnings * warning_weight
    health_score = round(100 * (1 - weighted / checks_performed)), clamped to [0, 100]
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from todoctl.config.models import IntegrityConfig
from todoctl.domain.types import ErrorCode, Operation
from todoctl.services._helpers import now_iso
from todoctl.services.result import IntegrityReport, IntegritySummary, ValidationIssue
from todoctl.services.telemetry import trace_span, traced
from todoctl.services.validation import CheckOutcome, RuleContext, cycle_members

if TYPE_CHECKING:
    from todoctl.services.validation import EntityQuery, ValidationEngine

logger = logging.getLogger(__name__)


class SnapshotQuery:
    """Query capability over datasets enumerated once per sweep.

    Lookups for models outside the snapshot fall through to *fallback*.
    """

    def __init__(self, datasets: dict[str, list[dict[str, Any]]], fallback: EntityQuery) -> None:
        self._datasets = datasets
        self._fallback = fallback
        self._index = {
            model: {str(r.get("id")): r for r in records} for model, records in datasets.items()
        }

    def resolve_by_id(self, model: str, entity_id: str) -> dict[str, Any] | None:
        index = self._index.get(str(model))
        if index is None:
            return self._fallback.resolve_by_id(model, entity_id)
        return index.get(str(entity_id))

    def enumerate_all(self, model: str) -> Iterable[dict[str, Any]]:
        records = self._datasets.get(str(model))
        if records is None:
            return self._fallback.enumerate_all(model)
        return records


class IntegrityMonitor:
    """Sweeps the stored dataset and scores its health.

    Parameters:
        validation: Engine whose registrations define the checks.
        query: Enumerates stored records per model.
        config: Violation weights and scheduling.
    """

    def __init__(
        self,
        validation: ValidationEngine,
        query: EntityQuery,
        config: IntegrityConfig | None = None,
    ) -> None:
        self._validation = validation
        self._query = query
        self._config = config or IntegrityConfig()
        self._last_report: IntegrityReport | None = None
        self._lock = threading.Lock()

    @property
    def last_report(self) -> IntegrityReport | None:
        return self._last_report

    @traced
    def perform_integrity_check(self) -> IntegrityReport:
        """Re-run every constraint against every stored record."""
        started = time.perf_counter()
        models = self._validation.registered_models
        if not models:
            report = IntegrityReport(
                success=False,
                checks_performed=0,
                summary=IntegritySummary(health_score=0),
                error="No models registered; nothing to check",
                timestamp=now_iso(),
            )
            self._last_report = report
            return report

        checks = 0
        failed: list[str] = []
        datasets: dict[str, list[dict[str, Any]]] = {}
        with trace_span("enumerate"):
            for model in models:
                checks += 1
                try:
                    datasets[model] = list(self._query.enumerate_all(model))
                except Exception as exc:
                    logger.warning("Integrity check could not enumerate %s: %s", model, exc)
                    failed.append(str(model))

        snapshot = SnapshotQuery(datasets, self._query)
        outcome = CheckOutcome(checks=checks)
        reported_cycles: set[tuple[str, frozenset[str]]] = set()
        now = datetime.now(UTC)

        for model, records in datasets.items():
            with trace_span(f"sweep_{model}"):
                for record in records:
                    outcome.merge(self._check_record(model, record, snapshot, now, reported_cycles))

        duration_ms = round((time.perf_counter() - started) * 1000, 3)
        summary = self._summarize(outcome, datasets, failed)
        report = IntegrityReport(
            success=not failed,
            checks_performed=outcome.checks,
            violations=outcome.errors,
            warnings=outcome.warnings,
            summary=summary,
            error=f"Could not enumerate: {', '.join(failed)}" if failed else None,
            timestamp=now_iso(),
            duration_ms=duration_ms,
        )
        with self._lock:
            self._last_report = report
        logger.info(
            "Integrity check: %d checks, %d violations, score %d",
            report.checks_performed,
            len(report.violations),
            summary.health_score,
        )
        return report

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_record(
        self,
        model: Any,
        record: dict[str, Any],
        snapshot: SnapshotQuery,
        now: datetime,
        reported_cycles: set[tuple[str, frozenset[str]]],
    ) -> CheckOutcome:
        engine = self._validation
        record_id = record.get("id")
        out = CheckOutcome()
        out.merge(engine.check_foreign_keys(model, record, snapshot))

        ctx = RuleContext(
            operation=Operation.AUDIT,
            record_id=record_id,
            current=record,
            changes={},
            query=snapshot,
            config=engine.config,
            now=now,
        )
        out.merge(engine.evaluate_rules(model, record, ctx))

        walked = engine.check_hierarchies(model, record, snapshot, candidate_id=record_id)
        cycle_of = {id(issue): cycle for cycle, issue in walked.cycles}
        for issue in walked.errors:
            cycle = cycle_of.get(id(issue))
            if cycle is not None:
                key = (f"{model}.{issue.field}", cycle_members(cycle))
                if key in reported_cycles:
                    continue
                reported_cycles.add(key)
            out.errors.append(issue)
        out.warnings.extend(walked.warnings)
        out.checks += walked.checks
        return out

    def _summarize(
        self,
        outcome: CheckOutcome,
        datasets: dict[str, list[dict[str, Any]]],
        failed: list[str],
    ) -> IntegritySummary:
        weighted = (
            len(outcome.errors) * self._config.error_weight
            + len(outcome.warnings) * self._config.warning_weight
        )
        score = round(100 * (1 - weighted / outcome.checks)) if outcome.checks else 0
        score = max(0, min(100, score))
        by_code = Counter(str(v.code) for v in outcome.errors)
        return IntegritySummary(
            health_score=score,
            total_records=sum(len(records) for records in datasets.values()),
            models_checked=[str(m) for m in datasets],
            violations_by_code=dict(by_code),
            warnings_count=len(outcome.warnings),
            failed_models=failed,
            recommendations=_recommendations(score, by_code, outcome.warnings, failed),
        )


def _recommendations(
    score: int,
    by_code: Counter[str],
    warnings: list[ValidationIssue],
    failed: list[str],
) -> list[str]:
    advice: list[str] = []
    if failed:
        advice.append(f"Check database access for: {', '.join(failed)}")
    if by_code[ErrorCode.FOREIGN_KEY_VIOLATION]:
        advice.append("Review and fix foreign key constraint violations")
    if by_code[ErrorCode.CIRCULAR_DEPENDENCY]:
        advice.append("Resolve circular references in data relationships")
    if by_code[ErrorCode.BUSINESS_RULE_VIOLATION] or by_code[ErrorCode.INVALID_STATE_TRANSITION]:
        advice.append("Correct records that violate business rules")
    if score < 80:
        advice.append("Consider running integrity checks more frequently")
    if len(warnings) > 10:
        advice.append("Review data quality processes to reduce warnings")
    return advice


class IntegrityScheduler:
    """Runs :meth:`IntegrityMonitor.perform_integrity_check` on a timer.

    The first check runs one interval after :meth:`start`. A failing check
    is logged and the schedule continues.
    """

    def __init__(self, monitor: IntegrityMonitor, interval_seconds: float) -> None:
        self._monitor = monitor
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="todoctl-integrity", daemon=True
        )
        self._thread.start()
        logger.debug("Integrity scheduler started (every %ss)", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._monitor.perform_integrity_check()
            except Exception:
                logger.exception("Scheduled integrity check failed")
            self.runs += 1
