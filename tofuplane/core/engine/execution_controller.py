"""
Execution controller — drives one Execution through its Job.

Each pass:
    1. Fetch the Execution (gone → nothing to do)
    2. Find the Job it controls; create one if there is none
    3. Prune duplicate Jobs, keeping the newest
    4. Fold the Job's counters into phase, summary and a Ready condition
    5. Write status once, only if something changed
    6. Requeue while the Job is still pending or running
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from tofuplane.core.config.settings import Settings
from tofuplane.core.engine.controller import Reconciler, ReconcileResult, utcnow
from tofuplane.core.engine.job_builder import construct_job
from tofuplane.core.engine.ownership import newest_first, owned_children
from tofuplane.core.engine.phase import is_terminal, job_phase, ready_condition, summary_for
from tofuplane.core.models.execution import Execution
from tofuplane.core.models.job import Job
from tofuplane.core.models.meta import (
    GENERATION_ANNOTATION,
    TRIGGERED_BY_ANNOTATION,
    set_condition,
)
from tofuplane.core.models.module import Module
from tofuplane.core.persistence.store import ConflictError, NotFoundError, ResourceStore

logger = logging.getLogger(__name__)

DEFAULT_REQUEUE_INTERVAL = 5.0


class ExecutionReconciler(Reconciler):
    name = "execution"
    for_kind = Execution
    owns = (Job,)

    def __init__(
        self,
        store: ResourceStore,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
        requeue_interval: float = DEFAULT_REQUEUE_INTERVAL,
    ):
        self._store = store
        self._settings = settings
        self._clock = clock or utcnow
        self._requeue_interval = requeue_interval

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            execution = self._store.get(Execution, namespace, name)
        except NotFoundError:
            logger.debug("Execution %s/%s is gone", namespace, name)
            return ReconcileResult()

        job = self.active_job(execution)
        if job is None:
            created = self._store.create(self.construct_job(execution))
            logger.info(
                "Created Job %s for %s %s/%s",
                created.name, execution.spec.action, namespace, name,
            )
            return ReconcileResult(requeue=True)

        phase = self.sync_status(execution, job)
        if is_terminal(phase):
            return ReconcileResult()
        return ReconcileResult(requeue_after=self._requeue_interval)

    # ── Jobs ─────────────────────────────────────────────────────

    def construct_job(self, execution: Execution) -> Job:
        """Build the Job for ``execution``.

        Raises:
            SettingsNotLoadedError: Before settings are loaded.
            NotFoundError: If the referenced module does not exist.
        """
        execution_settings = self._settings.execution()
        ref = execution.spec.module_ref
        module = self._store.get(Module, ref.namespace or execution.namespace, ref.name)
        return construct_job(execution, module, execution_settings.default_image)

    def active_job(self, execution: Execution) -> Job | None:
        """The newest Job owned by ``execution``; older ones are deleted."""
        jobs = newest_first(owned_children(self._store, execution, Job))
        if not jobs:
            return None

        active, stale = jobs[0], jobs[1:]
        for job in stale:
            try:
                self._store.delete(Job, job.namespace, job.name)
                logger.info("Pruned duplicate Job %s of %s", job.name, execution.name)
            except NotFoundError:
                pass
            except Exception as e:
                logger.error("Failed to prune Job %s of %s: %s", job.name, execution.name, e)
        return active

    # ── Status ───────────────────────────────────────────────────

    def sync_status(self, execution: Execution, job: Job) -> str:
        """Fold ``job`` into the execution's status; return the phase."""
        phase = job_phase(job)
        status = execution.status
        summary = status.execution_summary
        annotations = execution.metadata.annotations

        desired = {
            "job_name": job.name,
            "started_at": job.status.start_time,
            "finished_at": job.status.completion_time,
            "summary": summary_for(phase, execution.spec.action),
            "triggered_by": annotations.get(TRIGGERED_BY_ANNOTATION, summary.triggered_by),
            "revision": annotations.get(GENERATION_ANNOTATION, summary.revision),
        }

        changed = False
        for field, value in desired.items():
            if getattr(summary, field) != value:
                setattr(summary, field, value)
                changed = True

        if status.phase != phase:
            status.phase = phase
            changed = True

        condition = ready_condition(phase, desired["summary"], execution.metadata.generation)
        if set_condition(status.conditions, condition, self._clock()):
            changed = True

        if not changed:
            return phase

        try:
            self._store.update_status(execution)
        except ConflictError:
            logger.info("Execution %s changed during reconcile; skipping status write", execution.name)
            return phase

        logger.info("Execution %s/%s is %s", execution.namespace, execution.name, phase)
        return phase
