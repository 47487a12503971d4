"""ControlPlane — the explicit context object composing every component.

Built with settings, then :meth:`ControlPlane.initialize` opens the
database and wires store -> validation -> integrity -> audit -> executors
-> router. Consumers receive the plane (or a component from it) by
reference; there is no module-level singleton.

Accessors raise :class:`NotInitializedError` before ``initialize()`` and
after ``cleanup()``. Between the two, repeated access returns the same
instance.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, TypeVar

from todoctl.domain.types import Action, TargetType
from todoctl.infrastructure.database.engine import init_database
from todoctl.infrastructure.database.schema import metadata
from todoctl.infrastructure.store import SqlStore
from todoctl.services.audit import AuditLog
from todoctl.services.executors import TodoExecutors
from todoctl.services.integrity import IntegrityMonitor, IntegrityScheduler
from todoctl.services.registry import ExecutorRegistry
from todoctl.services.router import CommandRouter
from todoctl.services.validation import ValidationEngine

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

    from todoctl.config.settings import TodoSettings
    from todoctl.services.registry import ExecutionContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NotInitializedError(RuntimeError):
    """Raised when a component is accessed outside initialize()/cleanup()."""


class ControlPlane:
    """Owns the lifecycle of the router and its collaborators.

    Parameters:
        settings: Effective configuration.
        engine: Pre-built SQLAlchemy engine (tests); otherwise opened from
            ``settings.db_path`` on initialize.
        registry: Extra executors to compose in; the defaults are added
            alongside them.
    """

    def __init__(
        self,
        settings: TodoSettings,
        *,
        engine: Engine | None = None,
        registry: ExecutorRegistry | None = None,
    ) -> None:
        self.settings = settings
        self._given_engine = engine
        self._given_registry = registry
        self._lock = threading.Lock()
        self._engine: Engine | None = None
        self._store: SqlStore | None = None
        self._validation: ValidationEngine | None = None
        self._integrity: IntegrityMonitor | None = None
        self._scheduler: IntegrityScheduler | None = None
        self._audit: AuditLog | None = None
        self._router: CommandRouter | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._router is not None

    def initialize(self) -> ControlPlane:
        """Open storage and compose all components. Idempotent."""
        with self._lock:
            if self._router is not None:
                return self
            settings = self.settings
            engine = self._given_engine or init_database(settings.data_root, settings.db_path)
            if self._given_engine is not None:
                metadata.create_all(engine)

            store = SqlStore(engine)
            validation = ValidationEngine.with_defaults(store, settings.validation)
            integrity = IntegrityMonitor(validation, store, settings.integrity)
            audit = AuditLog(engine if settings.history.persist else None)

            registry = ExecutorRegistry()
            if self._given_registry is not None:
                for action, target in self._given_registry:
                    handler = self._given_registry.resolve(action, target)
                    assert handler is not None
                    registry.register(action, target, handler)
            TodoExecutors(store).register_all(registry)

            router = CommandRouter(
                registry,
                validation,
                audit,
                store,
                config=settings.router,
                integrity=integrity,
                settings_snapshot=self._settings_snapshot(),
            )
            self._register_system_executors(registry, router, integrity)

            scheduler: IntegrityScheduler | None = None
            if settings.integrity.schedule_enabled:
                scheduler = IntegrityScheduler(integrity, settings.integrity.interval_seconds)
                scheduler.start()

            self._engine = engine
            self._store = store
            self._validation = validation
            self._integrity = integrity
            self._audit = audit
            self._scheduler = scheduler
            self._router = router
            logger.debug("Control plane initialized (%d executors)", len(registry))
        return self

    def cleanup(self) -> None:
        """Stop the scheduler, shut down pools, dispose the engine. Idempotent."""
        with self._lock:
            if self._router is None:
                return
            if self._scheduler is not None:
                self._scheduler.stop()
            self._router.close()
            if self._engine is not None and self._given_engine is None:
                self._engine.dispose()
            self._engine = None
            self._store = None
            self._validation = None
            self._integrity = None
            self._audit = None
            self._scheduler = None
            self._router = None
            logger.debug("Control plane cleaned up")

    def __enter__(self) -> ControlPlane:
        return self.initialize()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def _require(self, component: T | None, name: str) -> T:
        if component is None:
            msg = f"Control plane is not initialized; cannot access {name}"
            raise NotInitializedError(msg)
        return component

    @property
    def router(self) -> CommandRouter:
        return self._require(self._router, "router")

    @property
    def validation(self) -> ValidationEngine:
        return self._require(self._validation, "validation")

    @property
    def integrity(self) -> IntegrityMonitor:
        return self._require(self._integrity, "integrity")

    @property
    def history(self) -> AuditLog:
        return self._require(self._audit, "history")

    @property
    def store(self) -> SqlStore:
        return self._require(self._store, "store")

    @property
    def scheduler(self) -> IntegrityScheduler | None:
        return self._scheduler

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _settings_snapshot(self) -> dict[str, Any]:
        return self.settings.model_dump(
            mode="json",
            include={"data_root", "router", "validation", "integrity", "history", "database"},
        )

    @staticmethod
    def _register_system_executors(
        registry: ExecutorRegistry,
        router: CommandRouter,
        integrity: IntegrityMonitor,
    ) -> None:
        def system_status(target_id: str, parameters: dict[str, Any], ctx: ExecutionContext) -> Any:
            return router.get_system_status().model_dump(mode="json")

        def system_monitor(target_id: str, parameters: dict[str, Any], ctx: ExecutionContext) -> Any:
            ctx.report_progress("integrity_check")
            return integrity.perform_integrity_check().model_dump(mode="json")

        registry.register(Action.STATUS, TargetType.SYSTEM, system_status)
        registry.register(Action.MONITOR, TargetType.SYSTEM, system_monitor)
