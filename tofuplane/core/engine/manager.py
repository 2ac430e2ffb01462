"""
Manager — dispatches store changes to controllers.

The manager owns one work queue shared by all registered reconcilers.
Store events become queue keys:

    change to a watched kind   → that object's key
    change to an owned kind    → the controlling owner's key

Worker threads pop keys and run ``reconcile``. The outcome decides what
happens to the key next:

    exception       → add_rate_limited  (exponential backoff)
    requeue_after   → forget + add_after
    requeue         → add_rate_limited
    done            → forget

``run_once()`` processes the queue on the calling thread until it is
idle; the CLI and the tests use it instead of worker threads.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from tofuplane.core.config.settings import Settings
from tofuplane.core.engine.controller import Reconciler, ReconcileResult
from tofuplane.core.engine.execution_controller import (
    DEFAULT_REQUEUE_INTERVAL,
    ExecutionReconciler,
)
from tofuplane.core.engine.module_controller import ModuleReconciler
from tofuplane.core.engine.stack_controller import StackReconciler
from tofuplane.core.models.meta import Resource
from tofuplane.core.observability.metrics import MetricsRegistry
from tofuplane.core.persistence.store import ResourceStore
from tofuplane.core.reliability.work_queue import WorkQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Request:
    """Queue key: which controller should look at which object."""

    controller: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.controller}:{self.namespace}/{self.name}"


@dataclass
class RunSummary:
    """What a ``run_once`` call did."""

    processed: int = 0
    errors: int = 0
    delayed: int = 0

    def to_dict(self) -> dict:
        return {"processed": self.processed, "errors": self.errors, "delayed": self.delayed}


class Manager:
    """Runs registered reconcilers against one store."""

    def __init__(
        self,
        store: ResourceStore,
        workers: int = 2,
        resync_period: float | None = None,
        metrics: MetricsRegistry | None = None,
        queue: WorkQueue[Request] | None = None,
    ):
        self._store = store
        self._workers = max(1, workers)
        self._resync_period = resync_period
        self._metrics = metrics or MetricsRegistry()
        self._queue: WorkQueue[Request] = queue or WorkQueue()
        self._reconcilers: dict[str, Reconciler] = {}
        self._threads: list[threading.Thread] = []
        self._stop = threading.Event()
        store.subscribe(self._on_event)

    @property
    def queue(self) -> WorkQueue[Request]:
        return self._queue

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    @property
    def reconcilers(self) -> list[Reconciler]:
        return list(self._reconcilers.values())

    def register(self, reconciler: Reconciler) -> None:
        if reconciler.name in self._reconcilers:
            raise ValueError(f"Controller {reconciler.name!r} is already registered")
        self._reconcilers[reconciler.name] = reconciler
        logger.debug("Registered %r", reconciler)

    # ── Event mapping ────────────────────────────────────────────

    def _on_event(self, event_type: str, obj: Resource) -> None:
        for request in self.requests_for(obj):
            logger.debug("%s %s %s → %s", event_type, obj.kind, obj.name, request)
            self._queue.add(request)

    def requests_for(self, obj: Resource) -> list[Request]:
        """Queue keys an object change maps to."""
        requests = []
        owner = obj.controller_of()
        for reconciler in self._reconcilers.values():
            if obj.kind == reconciler.for_kind.KIND:
                requests.append(Request(reconciler.name, obj.namespace, obj.name))
            elif (
                owner is not None
                and owner.kind == reconciler.for_kind.KIND
                and any(obj.kind == kind.KIND for kind in reconciler.owns)
            ):
                requests.append(Request(reconciler.name, obj.namespace, owner.name))
        return requests

    def enqueue_all(self) -> int:
        """Queue every object of every watched kind; returns the count."""
        count = 0
        for reconciler in self._reconcilers.values():
            for obj in self._store.list(reconciler.for_kind):
                self._queue.add(Request(reconciler.name, obj.namespace, obj.name))
                count += 1
        return count

    # ── Processing ───────────────────────────────────────────────

    def process(self, request: Request) -> ReconcileResult | None:
        """Run one reconcile and route the key; None means it failed."""
        reconciler = self._reconcilers.get(request.controller)
        if reconciler is None:
            logger.error("No controller named %r for %s", request.controller, request)
            self._queue.forget(request)
            return None

        try:
            with self._metrics.timer("reconcile_duration_ms", controller=request.controller):
                result = reconciler.reconcile(request.namespace, request.name)
        except Exception as e:
            delay = self._queue.add_rate_limited(request)
            self._metrics.counter(
                "reconcile_total", controller=request.controller, result="error"
            ).inc()
            logger.error(
                "Reconcile %s failed (retry in %.2fs): %s", request, delay, e, exc_info=True
            )
            return None

        if result.requeue_after is not None:
            self._queue.forget(request)
            self._queue.add_after(request, result.requeue_after)
            outcome = "requeue_after"
        elif result.requeue:
            self._queue.add_rate_limited(request)
            outcome = "requeue"
        else:
            self._queue.forget(request)
            outcome = "success"

        self._metrics.counter(
            "reconcile_total", controller=request.controller, result=outcome
        ).inc()
        return result

    def run_once(self, settle: float = 0.1, max_passes: int = 1000) -> RunSummary:
        """Reconcile everything on the calling thread until the queue is idle.

        Keys delayed by more than ``settle`` seconds (polling requeues
        of running Jobs, long backoffs) are left in the queue.
        """
        summary = RunSummary()
        self.enqueue_all()
        while summary.processed < max_passes:
            request = self._queue.get(timeout=settle)
            if request is None:
                break
            try:
                if self.process(request) is None:
                    summary.errors += 1
            finally:
                self._queue.done(request)
            summary.processed += 1

        summary.delayed = self._queue.delayed
        self._metrics.gauge("work_queue_depth").set(len(self._queue) + summary.delayed)
        logger.info(
            "Reconcile round: %d processed, %d errors, %d delayed",
            summary.processed, summary.errors, summary.delayed,
        )
        return summary

    # ── Threads ──────────────────────────────────────────────────

    def start(self) -> None:
        """Start worker (and resync) threads."""
        if self._threads:
            raise RuntimeError("Manager already started")
        self._stop.clear()
        queued = self.enqueue_all()
        for i in range(self._workers):
            t = threading.Thread(target=self._worker_loop, daemon=True, name=f"reconcile-{i}")
            t.start()
            self._threads.append(t)
        if self._resync_period:
            t = threading.Thread(target=self._resync_loop, daemon=True, name="resync")
            t.start()
            self._threads.append(t)
        logger.info(
            "Manager started: %d workers, %d controllers, %d objects queued",
            self._workers, len(self._reconcilers), queued,
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self._queue.shut_down()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []
        logger.info("Manager stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``stop()`` is called; True if stopped."""
        return self._stop.wait(timeout)

    def _worker_loop(self) -> None:
        while True:
            request = self._queue.get()
            if request is None:
                return
            try:
                self.process(request)
            finally:
                self._queue.done(request)

    def _resync_loop(self) -> None:
        while not self._stop.wait(self._resync_period):
            count = self.enqueue_all()
            logger.debug("Resync queued %d objects", count)


def create_manager(
    store: ResourceStore,
    settings: Settings,
    workers: int = 2,
    resync_period: float | None = None,
    metrics: MetricsRegistry | None = None,
    clock: Callable[[], datetime] | None = None,
    requeue_interval: float = DEFAULT_REQUEUE_INTERVAL,
) -> Manager:
    """A manager with the execution, module and stack controllers registered."""
    manager = Manager(store, workers=workers, resync_period=resync_period, metrics=metrics)
    manager.register(
        ExecutionReconciler(store, settings, clock=clock, requeue_interval=requeue_interval)
    )
    manager.register(ModuleReconciler(store))
    manager.register(StackReconciler(store, clock=clock))
    return manager
