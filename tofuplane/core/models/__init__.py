"""
Domain models — Pydantic types for the tofuplane resources.

All models are re-exported here for convenient access:

    from tofuplane.core.models import Module, Execution, Stack, Job
"""

from __future__ import annotations

from typing import Any

from tofuplane.core.models.execution import (
    ACTIONS,
    FAILED,
    PENDING,
    RUNNING,
    SUCCEEDED,
    TERMINAL_PHASES,
    EngineSpec,
    EnvVar,
    Execution,
    ExecutionSpec,
    ExecutionStatus,
    ExecutionSummary,
    ExecutionTemplate,
    JobTemplateSpec,
    ObjectRef,
)
from tofuplane.core.models.job import Container, Job, JobSpec, JobStatus, PodSpec
from tofuplane.core.models.meta import (
    GENERATION_ANNOTATION,
    STACK_LABEL,
    TRIGGERED_BY_ANNOTATION,
    Condition,
    ObjectMeta,
    OwnerReference,
    Resource,
    TemplateMetadata,
    find_condition,
    parse_duration,
    set_condition,
)
from tofuplane.core.models.module import (
    BackendSpec,
    KeyRef,
    Module,
    ModuleSpec,
    ModuleStatus,
    OutputSpec,
    OutputTarget,
    ProviderRef,
    ValueFrom,
)
from tofuplane.core.models.stack import DriftDetectionSpec, Stack, StackSpec, StackStatus

# kind → model class, for decoding manifests and state files
RESOURCE_KINDS: dict[str, type[Resource]] = {
    cls.KIND: cls for cls in (Module, Execution, Stack, Job)
}


def resource_from_dict(data: dict[str, Any]) -> Resource:
    """Decode a wire-format object into its model class by ``kind``.

    Raises:
        ValueError: If the kind is unknown.
    """
    kind = data.get("kind", "")
    cls = RESOURCE_KINDS.get(kind)
    if cls is None:
        raise ValueError(f"Unknown resource kind: {kind!r}")
    return cls.model_validate(data)


__all__ = [
    "ACTIONS",
    "FAILED",
    "GENERATION_ANNOTATION",
    "PENDING",
    "RESOURCE_KINDS",
    "RUNNING",
    "STACK_LABEL",
    "SUCCEEDED",
    "TERMINAL_PHASES",
    "TRIGGERED_BY_ANNOTATION",
    # module.py
    "BackendSpec",
    # meta.py
    "Condition",
    # job.py
    "Container",
    "DriftDetectionSpec",
    # execution.py
    "EngineSpec",
    "EnvVar",
    "Execution",
    "ExecutionSpec",
    "ExecutionStatus",
    "ExecutionSummary",
    "ExecutionTemplate",
    "Job",
    "JobSpec",
    "JobStatus",
    "JobTemplateSpec",
    "KeyRef",
    "Module",
    "ModuleSpec",
    "ModuleStatus",
    "ObjectMeta",
    "ObjectRef",
    "OutputSpec",
    "OutputTarget",
    "OwnerReference",
    "PodSpec",
    "ProviderRef",
    "Resource",
    # stack.py
    "Stack",
    "StackSpec",
    "StackStatus",
    "TemplateMetadata",
    "ValueFrom",
    "find_condition",
    "parse_duration",
    "resource_from_dict",
    "set_condition",
]
