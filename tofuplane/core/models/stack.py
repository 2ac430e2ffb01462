"""
Stack model — a module reference plus a recurring execution policy.

Stacks produce Executions like Modules do, and additionally re-run
them on a drift-detection interval.
"""

from __future__ import annotations

from typing import ClassVar

from pydantic import Field, field_validator

from tofuplane.core.models.execution import ExecutionSummary, ExecutionTemplate, ObjectRef
from tofuplane.core.models.meta import Condition, Resource, WireModel, parse_duration


class DriftDetectionSpec(WireModel):
    """How often a Stack re-checks its module for drift."""

    enabled: bool = False
    interval: str = ""   # Go duration string, e.g. "30m", "1h30m"

    @field_validator("interval")
    @classmethod
    def _valid_interval(cls, value: str) -> str:
        parse_duration(value)
        return value

    @property
    def interval_seconds(self) -> float:
        return parse_duration(self.interval)

    @property
    def active(self) -> bool:
        """Enabled with a usable interval."""
        return self.enabled and self.interval_seconds > 0


class StackSpec(WireModel):
    module_ref: ObjectRef = Field(default_factory=ObjectRef, alias="moduleTemplate")
    execution_template: ExecutionTemplate = Field(default_factory=ExecutionTemplate)
    auto_apply: bool = False
    drift_detection: DriftDetectionSpec | None = None


class StackStatus(WireModel):
    phase: str = ""
    observed_generation: int = 0
    last_plan: ExecutionSummary | None = None
    last_apply: ExecutionSummary | None = None
    conditions: list[Condition] = Field(default_factory=list)
    last_execution_name: str = Field(default="", alias="lastExecution")


class Stack(Resource):
    KIND: ClassVar[str] = "TofuStack"
    RESOURCE: ClassVar[str] = "tofustacks.opentofu.tofuplane.io"

    spec: StackSpec = Field(default_factory=StackSpec)
    status: StackStatus = Field(default_factory=StackStatus)
