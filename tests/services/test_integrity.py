"""Tests for IntegrityMonitor sweeps, scoring, and scheduling."""

from __future__ import annotations

import time
from typing import Any

import pytest

from todoctl.config.models import IntegrityConfig
from todoctl.domain.types import ErrorCode
from todoctl.services.context import ControlPlane
from todoctl.services.integrity import IntegrityMonitor, IntegrityScheduler, SnapshotQuery
from todoctl.services.validation import ValidationEngine


def _monitor(query: Any, config: IntegrityConfig | None = None) -> IntegrityMonitor:
    return IntegrityMonitor(ValidationEngine.with_defaults(query), query, config)


def _item(item_id: str, **extra: Any) -> dict[str, Any]:
    return {"id": item_id, "list_id": "l1", "title": item_id, "status": "pending", **extra}


@pytest.fixture
def one_list() -> dict[str, Any]:
    return {"id": "l1", "title": "Home", "status": "active", "parent_list_id": None}


class TestIntegrityMonitor:
    def test_empty_dataset_is_healthy(self, make_query: Any) -> None:
        report = _monitor(make_query()).perform_integrity_check()
        assert report.success
        assert report.checks_performed == 4
        assert report.summary.health_score == 100
        assert report.violations == []

    def test_nothing_registered(self, make_query: Any) -> None:
        query = make_query()
        report = IntegrityMonitor(ValidationEngine(query), query).perform_integrity_check()
        assert not report.success
        assert report.checks_performed == 0
        assert report.summary.health_score == 0
        assert report.error

    def test_score_and_checks(self, make_query: Any, one_list: dict[str, Any]) -> None:
        query = make_query(list=[one_list], item=[_item("i1", list_id="missing")])
        report = _monitor(query).perform_integrity_check()
        assert report.success
        assert report.checks_performed == 17
        assert [v.code for v in report.violations] == [ErrorCode.FOREIGN_KEY_VIOLATION]
        assert report.violations[0].record_id == "i1"
        assert report.summary.health_score == 94
        assert report.summary.total_records == 2
        assert report.summary.violations_by_code == {"FOREIGN_KEY_VIOLATION": 1}
        assert "Review and fix foreign key constraint violations" in report.summary.recommendations

    def test_warning_weight(self, make_query: Any, one_list: dict[str, Any]) -> None:
        query = make_query(list=[one_list], item=[_item("i1", status="completed")])
        config = IntegrityConfig(warning_weight=0.0)
        report = _monitor(query, config).perform_integrity_check()
        assert report.summary.warnings_count == 1
        assert report.summary.health_score == 100

    def test_cycle_reported_once(self, make_query: Any, one_list: dict[str, Any]) -> None:
        query = make_query(
            list=[one_list],
            item=[_item("a", dependencies=["b"]), _item("b", dependencies=["a"])],
        )
        report = _monitor(query).perform_integrity_check()
        cycles = [v for v in report.violations if v.code == ErrorCode.CIRCULAR_DEPENDENCY]
        assert len(cycles) == 1
        assert "Resolve circular references in data relationships" in report.summary.recommendations

    def test_unreadable_model(self, make_query: Any, one_list: dict[str, Any]) -> None:
        query = make_query(list=[one_list])
        query.broken.add("item")
        report = _monitor(query).perform_integrity_check()
        assert not report.success
        assert report.summary.failed_models == ["item"]
        assert report.error == "Could not enumerate: item"
        assert "item" not in report.summary.models_checked

    def test_last_report_tracked(self, make_query: Any) -> None:
        monitor = _monitor(make_query())
        assert monitor.last_report is None
        report = monitor.perform_integrity_check()
        assert monitor.last_report == report

    def test_live_control_plane(self, plane: ControlPlane) -> None:
        report = plane.integrity.perform_integrity_check()
        assert report.success
        assert report.summary.health_score == 100


class TestSnapshotQuery:
    def test_falls_back_outside_snapshot(self, make_query: Any) -> None:
        fallback = make_query(agent=[{"id": "bot", "name": "Bot"}])
        snapshot = SnapshotQuery({"list": [{"id": "l1"}]}, fallback)
        assert snapshot.resolve_by_id("list", "l1") == {"id": "l1"}
        assert snapshot.resolve_by_id("list", "l2") is None
        assert snapshot.resolve_by_id("agent", "bot") == {"id": "bot", "name": "Bot"}
        assert list(snapshot.enumerate_all("agent")) == [{"id": "bot", "name": "Bot"}]


class TestIntegrityScheduler:
    def test_runs_on_interval(self, make_query: Any) -> None:
        monitor = _monitor(make_query())
        scheduler = IntegrityScheduler(monitor, 0.05)
        scheduler.start()
        try:
            deadline = time.monotonic() + 5
            while scheduler.runs < 2 and time.monotonic() < deadline:
                time.sleep(0.02)
        finally:
            scheduler.stop()
        assert scheduler.runs >= 2
        assert monitor.last_report is not None
        assert not scheduler.running

    def test_start_is_idempotent(self, make_query: Any) -> None:
        scheduler = IntegrityScheduler(_monitor(make_query()), 60)
        scheduler.start()
        try:
            scheduler.start()
            assert scheduler.running
        finally:
            scheduler.stop()
