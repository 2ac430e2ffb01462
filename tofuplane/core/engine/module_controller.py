"""
Module controller — keeps a current Execution per Module.

A Module gets its first Execution when it is created, and a new one
whenever its spec generation moves past the generation stamped on the
current Execution, but only once that Execution has finished. The
Module's status mirrors the current Execution's name and phase.
"""

from __future__ import annotations

import logging

from tofuplane.core.engine.controller import Reconciler, ReconcileResult
from tofuplane.core.engine.execution_factory import MODULE_CREATED, SPEC_CHANGE, new_execution
from tofuplane.core.engine.ownership import newest_first, owned_children
from tofuplane.core.engine.phase import needs_new_execution
from tofuplane.core.models.execution import Execution, ObjectRef
from tofuplane.core.models.meta import GENERATION_ANNOTATION
from tofuplane.core.models.module import Module
from tofuplane.core.persistence.store import ConflictError, NotFoundError, ResourceStore

logger = logging.getLogger(__name__)


def current_execution(store: ResourceStore, owner) -> Execution | None:
    """The newest Execution controlled by ``owner``, if any."""
    executions = newest_first(owned_children(store, owner, Execution))
    return executions[0] if executions else None


class ModuleReconciler(Reconciler):
    name = "module"
    for_kind = Module
    owns = (Execution,)

    def __init__(self, store: ResourceStore):
        self._store = store

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            module = self._store.get(Module, namespace, name)
        except NotFoundError:
            logger.debug("Module %s/%s is gone", namespace, name)
            return ReconcileResult()

        current = current_execution(self._store, module)
        stamped = current.metadata.annotations.get(GENERATION_ANNOTATION) if current else None

        if needs_new_execution(
            has_current=current is not None,
            current_phase=current.status.phase if current else None,
            stamped_generation=stamped,
            generation=module.metadata.generation,
        ):
            created = self._store.create(
                new_execution(
                    module,
                    module.spec.execution_template,
                    ObjectRef(name=module.name, namespace=module.namespace),
                    triggered_by=MODULE_CREATED if current is None else SPEC_CHANGE,
                )
            )
            if current is None:
                logger.info("Module %s/%s: created Execution %s", namespace, name, created.name)
            else:
                logger.info(
                    "Module %s/%s spec changed (generation %s → %d): created Execution %s",
                    namespace, name, stamped, module.metadata.generation, created.name,
                )
            return ReconcileResult()

        self.mirror_status(module, current)
        return ReconcileResult()

    def mirror_status(self, module: Module, execution: Execution) -> bool:
        """Copy the execution's name and phase into the module's status.

        Returns:
            True if the status was written.
        """
        status = module.status
        if (
            status.last_execution_name == execution.name
            and status.phase == execution.status.phase
        ):
            return False

        status.last_execution_name = execution.name
        status.phase = execution.status.phase
        status.observed_generation = module.metadata.generation
        try:
            self._store.update_status(module)
        except ConflictError:
            logger.info("Module %s changed during reconcile; skipping status write", module.name)
            return False

        logger.info(
            "Module %s/%s: %s is %s",
            module.namespace, module.name, execution.name, execution.status.phase,
        )
        return True
