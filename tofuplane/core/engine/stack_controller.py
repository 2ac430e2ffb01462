"""
Stack controller — Module-style execution management plus drift checks.

A Stack points at a Module and carries its own execution template.
Executions are gated on the Stack's generation exactly like a Module's.
With drift detection enabled, a finished Execution is followed by a
fresh one every ``interval``; with ``autoApply`` those runs apply
instead of plan.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from tofuplane.core.engine.controller import Reconciler, ReconcileResult, utcnow
from tofuplane.core.engine.execution_factory import (
    DRIFT_CHECK,
    SPEC_CHANGE,
    STACK_CREATED,
    new_execution,
)
from tofuplane.core.engine.module_controller import current_execution
from tofuplane.core.engine.phase import (
    READY_CONDITION,
    drift_remaining,
    last_activity,
    needs_new_execution,
)
from tofuplane.core.models.execution import Execution
from tofuplane.core.models.meta import (
    GENERATION_ANNOTATION,
    STACK_LABEL,
    find_condition,
    set_condition,
)
from tofuplane.core.models.stack import Stack
from tofuplane.core.persistence.store import ConflictError, NotFoundError, ResourceStore

logger = logging.getLogger(__name__)


class StackReconciler(Reconciler):
    name = "stack"
    for_kind = Stack
    owns = (Execution,)

    def __init__(
        self,
        store: ResourceStore,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._clock = clock or utcnow

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            stack = self._store.get(Stack, namespace, name)
        except NotFoundError:
            logger.debug("Stack %s/%s is gone", namespace, name)
            return ReconcileResult()

        current = current_execution(self._store, stack)
        stamped = current.metadata.annotations.get(GENERATION_ANNOTATION) if current else None

        if needs_new_execution(
            has_current=current is not None,
            current_phase=current.status.phase if current else None,
            stamped_generation=stamped,
            generation=stack.metadata.generation,
        ):
            created = self.create_execution(
                stack, STACK_CREATED if current is None else SPEC_CHANGE
            )
            logger.info("Stack %s/%s: created Execution %s", namespace, name, created.name)
            return ReconcileResult()

        remaining = drift_remaining(
            stack.spec.drift_detection,
            current.status.phase,
            last_activity(current),
            self._clock(),
        )
        if remaining == 0.0:
            action = "apply" if stack.spec.auto_apply else None
            created = self.create_execution(stack, DRIFT_CHECK, action=action)
            logger.info(
                "Stack %s/%s: drift check due, created Execution %s (%s)",
                namespace, name, created.name, created.spec.action,
            )
            return ReconcileResult()

        self.mirror_status(stack, current)
        if remaining is not None:
            return ReconcileResult(requeue_after=remaining)
        return ReconcileResult()

    def create_execution(
        self,
        stack: Stack,
        triggered_by: str,
        action: str | None = None,
    ) -> Execution:
        execution = new_execution(
            stack,
            stack.spec.execution_template,
            stack.spec.module_ref,
            triggered_by=triggered_by,
            labels={STACK_LABEL: stack.name},
            action=action,
        )
        return self._store.create(execution)

    def mirror_status(self, stack: Stack, execution: Execution) -> bool:
        """Mirror name, phase, run summary and Ready into the stack's status.

        Returns:
            True if the status was written.
        """
        status = stack.status
        changed = False

        if status.last_execution_name != execution.name:
            status.last_execution_name = execution.name
            changed = True
        if status.phase != execution.status.phase:
            status.phase = execution.status.phase
            changed = True

        summary = execution.status.execution_summary
        if execution.spec.action == "apply":
            if status.last_apply != summary:
                status.last_apply = summary.model_copy()
                changed = True
        elif status.last_plan != summary:
            status.last_plan = summary.model_copy()
            changed = True

        ready = find_condition(execution.status.conditions, READY_CONDITION)
        if ready is not None:
            mirrored = ready.model_copy(
                update={"observed_generation": stack.metadata.generation}
            )
            if set_condition(status.conditions, mirrored, self._clock()):
                changed = True

        if not changed:
            return False

        status.observed_generation = stack.metadata.generation
        try:
            self._store.update_status(stack)
        except ConflictError:
            logger.info("Stack %s changed during reconcile; skipping status write", stack.name)
            return False

        logger.info(
            "Stack %s/%s: %s is %s",
            stack.namespace, stack.name, execution.name, execution.status.phase,
        )
        return True
