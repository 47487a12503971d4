"""Tests for telemetry primitives: Span, trace_span, @traced."""

from __future__ import annotations

import threading
import time
from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor

import pytest

from todoctl.services.result import IntegrityReport, IntegritySummary
from todoctl.services.telemetry import (
    Span,
    _current_span,
    disable_telemetry,
    enable_telemetry,
    get_current_span,
    propagate,
    trace_span,
    traced,
)


@pytest.fixture(autouse=True)
def _reset_telemetry_state() -> Generator[None]:
    """Ensure clean telemetry state for every test."""
    yield
    disable_telemetry()
    _current_span.set(None)


def _report() -> IntegrityReport:
    return IntegrityReport(
        success=True,
        checks_performed=1,
        summary=IntegritySummary(health_score=100),
        timestamp="2026-01-01T00:00:00+00:00",
    )


class TestSpan:
    def test_duration_before_end_is_zero(self) -> None:
        assert Span(name="test").duration_ms == 0.0

    def test_duration_after_end(self) -> None:
        span = Span(name="test")
        time.sleep(0.005)
        span.end()
        assert span.duration_ms > 0

    def test_to_dict_with_children_and_annotations(self) -> None:
        root = Span(name="root")
        child = Span(name="child", parent=root)
        root.children.append(child)
        child.annotate("rows", 3)
        child.end()
        root.end()
        d = root.to_dict()
        assert d["name"] == "root"
        assert "annotations" not in d
        assert d["children"][0]["annotations"] == {"rows": 3}


class TestTraceSpan:
    def test_disabled_yields_none(self) -> None:
        with trace_span("x") as span:
            assert span is None

    def test_no_root_yields_none(self) -> None:
        enable_telemetry()
        with trace_span("x") as span:
            assert span is None

    def test_nested_under_root(self) -> None:
        enable_telemetry()
        root = Span(name="root")
        token = _current_span.set(root)
        try:
            with trace_span("outer") as outer:
                with trace_span("inner"):
                    pass
        finally:
            _current_span.reset(token)
        assert outer is not None
        assert [c.name for c in root.children] == ["outer"]
        assert [c.name for c in outer.children] == ["inner"]


class TestTracedDecorator:
    def test_noop_when_disabled(self) -> None:
        @traced
        def run() -> IntegrityReport:
            return _report()

        assert run().telemetry is None

    def test_injects_telemetry_when_enabled(self) -> None:
        enable_telemetry()

        @traced
        def run() -> IntegrityReport:
            with trace_span("stage"):
                pass
            return _report()

        result = run()
        assert result.telemetry is not None
        assert result.telemetry["name"].endswith("run")
        assert result.telemetry["children"][0]["name"] == "stage"

    def test_non_model_passthrough(self) -> None:
        enable_telemetry()

        @traced
        def run() -> int:
            return 7

        assert run() == 7

    def test_exception_propagates_and_resets(self) -> None:
        enable_telemetry()

        @traced
        def boom() -> None:
            raise ValueError("nope")

        with pytest.raises(ValueError, match="nope"):
            boom()
        assert _current_span.get() is None


class TestGetCurrentSpan:
    def test_returns_none_when_disabled(self) -> None:
        assert get_current_span() is None

    def test_returns_span_when_enabled(self) -> None:
        enable_telemetry()
        span = Span(name="root")
        token = _current_span.set(span)
        try:
            assert get_current_span() is span
        finally:
            _current_span.reset(token)


class TestNesting:
    def test_traced_inside_traced_becomes_child(self) -> None:
        enable_telemetry()

        @traced("inner")
        def inner() -> IntegrityReport:
            return _report()

        @traced("outer")
        def outer() -> IntegrityReport:
            with trace_span("stage"):
                inner()
            return _report()

        tree = outer().telemetry
        assert tree is not None
        assert tree["name"] == "outer"
        stage = tree["children"][0]
        assert stage["name"] == "stage"
        assert stage["children"][0]["name"] == "inner"

    def test_trace_span_annotations(self) -> None:
        enable_telemetry()

        @traced
        def run() -> IntegrityReport:
            with trace_span("dispatch", executor="create:list"):
                pass
            return _report()

        tree = run().telemetry
        assert tree is not None
        assert tree["children"][0]["annotations"] == {"executor": "create:list"}


class TestPropagate:
    def test_disabled_returns_function_unchanged(self) -> None:
        def work() -> int:
            return 1

        assert propagate(work) is work

    def test_spans_from_pool_threads_attach_to_parent(self) -> None:
        enable_telemetry()

        def work(n: int) -> int:
            with trace_span(f"job-{n}"):
                return n * 2

        @traced("batch")
        def run() -> IntegrityReport:
            with ThreadPoolExecutor(max_workers=2) as pool:
                futures = [pool.submit(propagate(work), n) for n in range(3)]
                assert [f.result() for f in futures] == [0, 2, 4]
            return _report()

        tree = run().telemetry
        assert tree is not None
        names = sorted(c["name"] for c in tree["children"])
        assert names == ["job-0", "job-1", "job-2"]
        assert all("thread" in c for c in tree["children"])

    def test_plain_thread_without_propagate_is_untraced(self) -> None:
        enable_telemetry()
        seen: list[Span | None] = []

        @traced
        def run() -> IntegrityReport:
            thread = threading.Thread(target=lambda: seen.append(get_current_span()))
            thread.start()
            thread.join()
            return _report()

        run()
        assert seen == [None]
