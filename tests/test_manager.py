"""
Tests for the manager — event mapping, result routing and full rounds.
"""

import pytest

from tofuplane.core.engine.controller import Reconciler, ReconcileResult
from tofuplane.core.engine.manager import Manager, Request, create_manager
from tofuplane.core.models import Execution, Job, Module, Stack
from tofuplane.core.observability.metrics import MetricsRegistry
from tofuplane.core.persistence.memory_store import MemoryStore


class ScriptedReconciler(Reconciler):
    """Returns queued results (or raises) and records calls."""

    name = "scripted"
    for_kind = Module
    owns = (Execution,)

    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = []

    def reconcile(self, namespace, name):
        self.calls.append((namespace, name))
        outcome = self.results.pop(0) if self.results else ReconcileResult()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


# ── Event mapping ────────────────────────────────────────────────


class TestEventMapping:
    def test_primary_and_owned_kinds(self, store, make_module, make_execution, make_job, settings):
        manager = create_manager(store, settings)
        module = make_module()
        execution = make_execution(module)
        job = make_job(execution)

        assert manager.requests_for(module) == [Request("module", "default", module.name)]
        assert set(manager.requests_for(execution)) == {
            Request("execution", "default", execution.name),
            Request("module", "default", module.name),
        }
        assert manager.requests_for(job) == [Request("execution", "default", execution.name)]

    def test_stack_owned_execution_maps_to_stack_only(self, store, settings):
        manager = create_manager(store, settings)
        stack = store.create(Stack.model_validate({"metadata": {"name": "edge"}}))
        execution = Execution.model_validate({"metadata": {"name": "edge-1"}})
        execution.set_controller_reference(stack)

        assert set(manager.requests_for(execution)) == {
            Request("execution", "default", "edge-1"),
            Request("stack", "default", "edge"),
        }

    def test_orphan_job_maps_nowhere(self, settings, store):
        manager = create_manager(store, settings)
        assert manager.requests_for(Job.model_validate({"metadata": {"name": "j"}})) == []

    def test_store_events_fill_queue(self, store, settings, make_module):
        manager = create_manager(store, settings)
        make_module()
        assert len(manager.queue) == 1

    def test_duplicate_registration_rejected(self, store):
        manager = Manager(store)
        manager.register(ScriptedReconciler())
        with pytest.raises(ValueError):
            manager.register(ScriptedReconciler())


# ── Result routing ───────────────────────────────────────────────


class TestProcess:
    def _manager(self, results):
        metrics = MetricsRegistry()
        manager = Manager(MemoryStore(), metrics=metrics)
        reconciler = ScriptedReconciler(results)
        manager.register(reconciler)
        return manager, reconciler, metrics

    def test_exception_backs_off(self):
        manager, _, metrics = self._manager([RuntimeError("boom")])
        request = Request("scripted", "default", "m")

        assert manager.process(request) is None
        assert manager.queue.num_requeues(request) == 1
        assert manager.queue.delayed == 1
        assert metrics.value("reconcile_total", controller="scripted", result="error") == 1

    def test_requeue_after_forgets_failures(self):
        manager, _, metrics = self._manager([RuntimeError("boom"), ReconcileResult(requeue_after=30)])
        request = Request("scripted", "default", "m")

        manager.process(request)
        manager.process(request)

        assert manager.queue.num_requeues(request) == 0
        assert metrics.value("reconcile_total", controller="scripted", result="requeue_after") == 1

    def test_requeue_is_rate_limited(self):
        manager, _, _ = self._manager([ReconcileResult(requeue=True)])
        request = Request("scripted", "default", "m")
        manager.process(request)
        assert manager.queue.num_requeues(request) == 1

    def test_success_forgets(self):
        manager, _, metrics = self._manager([RuntimeError("boom"), ReconcileResult()])
        request = Request("scripted", "default", "m")
        manager.process(request)
        manager.process(request)
        assert manager.queue.num_requeues(request) == 0
        assert metrics.value("reconcile_total", controller="scripted", result="success") == 1
        assert metrics.histogram("reconcile_duration_ms", controller="scripted").count == 2

    def test_unknown_controller(self):
        manager, _, _ = self._manager([])
        assert manager.process(Request("nope", "default", "m")) is None


# ── Full rounds ──────────────────────────────────────────────────


class TestRunOnce:
    def test_module_to_job_in_one_round(self, store, settings, make_module):
        module = make_module()
        manager = create_manager(store, settings)

        summary = manager.run_once()

        assert summary.errors == 0
        executions = store.list(Execution)
        assert len(executions) == 1
        jobs = store.list(Job)
        assert len(jobs) == 1
        assert jobs[0].controller_of().name == executions[0].name
        status = store.get(Module, module.namespace, module.name).status
        assert status.last_execution_name == executions[0].name
        assert status.phase == "Pending"
        assert summary.delayed >= 1  # polling requeue of the pending execution

    def test_job_success_propagates_to_module(self, store, settings, make_module, set_job_status):
        module = make_module()
        manager = create_manager(store, settings)
        manager.run_once()

        set_job_status(store.list(Job)[0], succeeded=1)
        manager.run_once()

        execution = store.list(Execution)[0]
        assert execution.status.phase == "Succeeded"
        assert store.get(Module, module.namespace, module.name).status.phase == "Succeeded"

    def test_spec_change_after_success_starts_new_execution(
        self, store, settings, make_module, set_job_status,
    ):
        module = make_module()
        manager = create_manager(store, settings)
        manager.run_once()
        set_job_status(store.list(Job)[0], succeeded=1)
        manager.run_once()

        current = store.get(Module, module.namespace, module.name)
        current.spec.version = "v2"
        store.update(current)
        manager.run_once()

        assert len(store.list(Execution)) == 2
        assert len(store.list(Job)) == 2
        status = store.get(Module, module.namespace, module.name).status
        assert status.observed_generation == 2
        assert status.phase == "Pending"

    def test_unloaded_settings_counted_as_errors(self, store, unloaded_settings, make_module):
        make_module()
        metrics = MetricsRegistry()
        manager = create_manager(store, unloaded_settings, metrics=metrics)

        summary = manager.run_once(settle=0.05)

        assert summary.errors >= 1
        assert store.list(Job) == []
        assert metrics.value("reconcile_total", controller="execution", result="error") >= 1

    def test_running_execution_polled_by_one_chain(
        self, store, settings, make_module, set_job_status,
    ):
        make_module()
        manager = create_manager(store, settings)
        manager.run_once()
        set_job_status(store.list(Job)[0], active=1)

        delays = [manager.run_once().delayed for _ in range(5)]

        assert store.list(Execution)[0].status.phase == "Running"
        assert delays == [1, 1, 1, 1, 1]


# ── Threads ──────────────────────────────────────────────────────


class TestWorkers:
    def test_start_and_stop(self, store, settings, make_module):
        make_module()
        manager = create_manager(store, settings, workers=2)
        manager.start()
        try:
            for _ in range(200):
                if store.list(Job):
                    break
                manager.wait(0.01)
        finally:
            manager.stop()

        assert len(store.list(Job)) == 1

    def test_double_start_rejected(self, store, settings):
        manager = create_manager(store, settings, workers=1)
        manager.start()
        try:
            with pytest.raises(RuntimeError):
                manager.start()
        finally:
            manager.stop()
