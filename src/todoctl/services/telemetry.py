"""Command tracing: Span trees, @traced, trace_span, and pool propagation.

Tracing is off unless ``--verbose`` switches it on, and costs one
ContextVar lookup per call while off. When on, every ``@traced`` call
opens a span under the current one (or a new root), ``trace_span``
marks stages inside it, and the finished tree is copied into the
``telemetry`` field of the returned model.

The router hands work to thread pools. ContextVars do not cross into a
worker thread on their own, so submissions go through :func:`propagate`
and spans opened by an executor land under the dispatch stage that
launched it.
"""

from __future__ import annotations

import contextvars
import functools
import threading
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, ParamSpec, TypeVar, overload

import structlog
from pydantic import BaseModel

log = structlog.get_logger("todoctl.telemetry")

_P = ParamSpec("_P")
_R = TypeVar("_R")

_tracing: ContextVar[bool] = ContextVar("todoctl_tracing", default=False)
_current_span: ContextVar[Span | None] = ContextVar("todoctl_current_span", default=None)


@dataclass
class Span:
    """One timed region. Children may be appended from pool threads."""

    name: str
    parent: Span | None = None
    children: list[Span] = field(default_factory=list)
    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None
    annotations: dict[str, Any] = field(default_factory=dict)
    thread: str = field(default_factory=lambda: threading.current_thread().name)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def duration_ms(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time) * 1000

    def end(self) -> None:
        self.end_time = time.perf_counter()

    def annotate(self, key: str, value: Any) -> None:
        self.annotations[key] = value

    def child(self, name: str) -> Span:
        span = Span(name=name, parent=self)
        with self._lock:
            self.children.append(span)
        return span

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "duration_ms": round(self.duration_ms, 2)}
        if self.annotations:
            out["annotations"] = dict(self.annotations)
        if self.parent is not None and self.thread != self.parent.thread:
            out["thread"] = self.thread
        with self._lock:
            children = list(self.children)
        if children:
            out["children"] = [c.to_dict() for c in children]
        return out


def enable_telemetry() -> None:
    """Turn tracing on for the current context (AppContext does this for -v)."""
    _tracing.set(True)


def disable_telemetry() -> None:
    _tracing.set(False)


def get_current_span() -> Span | None:
    """The innermost open span, or None when tracing is off."""
    return _current_span.get() if _tracing.get() else None


@contextmanager
def trace_span(name: str, **annotations: Any) -> Generator[Span | None]:
    """Mark a stage inside the current span. Yields None when there is no parent."""
    parent = get_current_span()
    if parent is None:
        yield None
        return
    span = parent.child(name)
    span.annotations.update(annotations)
    token = _current_span.set(span)
    try:
        yield span
    finally:
        span.end()
        _current_span.reset(token)


def propagate(func: Callable[_P, _R]) -> Callable[_P, _R]:
    """Bind *func* to a copy of the caller's context, for ``pool.submit``."""
    if not _tracing.get():
        return func
    ctx = contextvars.copy_context()

    @functools.wraps(func)
    def run(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        return ctx.run(func, *args, **kwargs)

    return run


def _attach(result: Any, span: Span) -> Any:
    if isinstance(result, BaseModel) and "telemetry" in type(result).model_fields:
        return result.model_copy(update={"telemetry": span.to_dict()})
    return result


def _wrap(func: Callable[_P, _R], name: str) -> Callable[_P, _R]:
    @functools.wraps(func)
    def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        if not _tracing.get():
            return func(*args, **kwargs)
        parent = _current_span.get()
        span = parent.child(name) if parent is not None else Span(name=name)
        token = _current_span.set(span)
        ok = False
        try:
            result = func(*args, **kwargs)
            ok = True
        finally:
            span.end()
            _current_span.reset(token)
            log.debug(
                "span.complete",
                span_name=span.name,
                duration_ms=round(span.duration_ms, 2),
                ok=ok,
                children=len(span.children),
                nested=parent is not None,
            )
        return _attach(result, span)

    return wrapper


@overload
def traced(func: Callable[_P, _R], /) -> Callable[_P, _R]: ...
@overload
def traced(name: str, /) -> Callable[[Callable[_P, _R]], Callable[_P, _R]]: ...


def traced(target: Any, /) -> Any:
    """Trace a service method; its result model receives the span tree.

    Use bare (``@traced``, span named after the qualified function name)
    or with an explicit span name (``@traced("router.dispatch")``).
    """
    if isinstance(target, str):
        return lambda func: _wrap(func, target)
    return _wrap(target, target.__qualname__)
