"""
Execution model — one concrete plan or apply run of a module.

An Execution is always owned by a Module or a Stack. The execution
controller backs it with exactly one Job and folds the Job's progress
back into ``status``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import Field

from tofuplane.core.models.meta import Condition, Resource, TemplateMetadata, WireModel

# ── Phases ───────────────────────────────────────────────────────

PENDING = "Pending"
RUNNING = "Running"
SUCCEEDED = "Succeeded"
FAILED = "Failed"

TERMINAL_PHASES = frozenset({SUCCEEDED, FAILED})

ACTIONS = ("plan", "apply")


class ObjectRef(WireModel):
    """Reference to a named object; empty namespace means "same namespace"."""

    name: str = ""
    namespace: str = ""


class EngineSpec(WireModel):
    """Which IaC binary runs the execution."""

    name: str = ""       # tofu, opentofu, terraform, or a custom image name
    version: str = ""    # image tag; empty = settings default image


class EnvVar(WireModel):
    name: str
    value: str | None = None
    value_from: dict[str, Any] | None = None


class JobTemplateSpec(WireModel):
    """Overrides applied to the Job an execution runs in."""

    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)
    env: list[EnvVar] = Field(default_factory=list)
    env_from: list[dict[str, Any]] = Field(default_factory=list)
    service_account_name: str = ""


class ExecutionSpec(WireModel):
    action: Literal["plan", "apply"] = "plan"
    module_ref: ObjectRef = Field(default_factory=ObjectRef)
    job_template: JobTemplateSpec | None = None
    engine: EngineSpec = Field(default_factory=EngineSpec)


class ExecutionSummary(WireModel):
    """Human-facing summary of a run, also reused by Stack status."""

    revision: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None
    summary: str = ""
    triggered_by: str = ""
    job_name: str = ""


class ExecutionStatus(WireModel):
    phase: str = PENDING
    execution_summary: ExecutionSummary = Field(default_factory=ExecutionSummary)
    conditions: list[Condition] = Field(default_factory=list)


class ExecutionTemplate(WireModel):
    """Metadata and spec for Executions generated by a Module or Stack."""

    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)
    spec: ExecutionSpec = Field(default_factory=ExecutionSpec)


class Execution(Resource):
    KIND: ClassVar[str] = "TofuExecution"
    RESOURCE: ClassVar[str] = "tofuexecutions.opentofu.tofuplane.io"

    spec: ExecutionSpec = Field(default_factory=ExecutionSpec)
    status: ExecutionStatus = Field(default_factory=ExecutionStatus)

    @property
    def is_terminal(self) -> bool:
        return self.status.phase in TERMINAL_PHASES
