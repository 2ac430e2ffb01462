"""
Execution factory — builds the Execution a Module or Stack creates.
"""

from __future__ import annotations

from tofuplane.core.models.execution import Execution, ExecutionTemplate, ObjectRef
from tofuplane.core.models.meta import (
    GENERATION_ANNOTATION,
    TRIGGERED_BY_ANNOTATION,
    ObjectMeta,
    Resource,
)

# triggered-by values
MODULE_CREATED = "module-created"
STACK_CREATED = "stack-created"
SPEC_CHANGE = "spec-change"
DRIFT_CHECK = "drift-detection"


def new_execution(
    owner: Resource,
    template: ExecutionTemplate,
    module_ref: ObjectRef,
    triggered_by: str,
    labels: dict[str, str] | None = None,
    action: str | None = None,
) -> Execution:
    """Build an Execution controlled by ``owner``.

    The owner's current generation is stamped into the generation
    annotation; the template's labels and annotations are copied, and
    ``labels`` is layered on top.

    Raises:
        ValueError: If ``owner`` has not been stored yet (no uid).
    """
    annotations = dict(template.metadata.annotations)
    annotations[GENERATION_ANNOTATION] = str(owner.metadata.generation)
    annotations[TRIGGERED_BY_ANNOTATION] = triggered_by

    spec = template.spec.model_copy(deep=True)
    spec.module_ref = ObjectRef(
        name=module_ref.name,
        namespace=module_ref.namespace or owner.namespace,
    )
    if action is not None:
        spec.action = action

    execution = Execution(
        metadata=ObjectMeta(
            generate_name=template.metadata.generate_name or f"{owner.name}-",
            namespace=owner.namespace,
            labels={**template.metadata.labels, **(labels or {})},
            annotations=annotations,
        ),
        spec=spec,
    )
    execution.set_controller_reference(owner)
    return execution
