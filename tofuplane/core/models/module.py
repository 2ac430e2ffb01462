"""
Module model — the desired IaC source and how to run it.

A Module names a git source pinned at a version, the backend and
providers it needs, its inputs and outputs, and the template for the
Executions the module controller creates on its behalf.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import Field

from tofuplane.core.models.execution import ExecutionTemplate
from tofuplane.core.models.meta import Resource, WireModel


class KeyRef(WireModel):
    """A key inside a Secret or ConfigMap."""

    name: str
    key: str


class ValueFrom(WireModel):
    secret_ref: KeyRef | None = None
    config_map_ref: KeyRef | None = None


class BackendSpec(WireModel):
    """State backend configuration."""

    type: str = "local"
    raw_config: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    value_sources: dict[str, ValueFrom] = Field(default_factory=dict)


class ProviderRef(WireModel):
    name: str
    alias: str = ""


class OutputTarget(WireModel):
    kind: str   # Secret, ConfigMap
    name: str
    key: str


class OutputSpec(WireModel):
    from_: str = Field(alias="from")
    to: list[OutputTarget] = Field(default_factory=list)


class ModuleSpec(WireModel):
    source: str
    version: str = ""            # git ref; empty = remote HEAD
    workdir: str = ""            # path inside the repository; empty = "."
    backend: BackendSpec = Field(default_factory=BackendSpec)
    providers: list[ProviderRef] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    value_sources: dict[str, ValueFrom] = Field(default_factory=dict)
    outputs: list[OutputSpec] = Field(default_factory=list)
    execution_template: ExecutionTemplate = Field(default_factory=ExecutionTemplate)


class ModuleStatus(WireModel):
    phase: str = ""
    observed_generation: int = 0
    last_execution_name: str = Field(default="", alias="lastExecution")


class Module(Resource):
    KIND: ClassVar[str] = "TofuModule"
    RESOURCE: ClassVar[str] = "tofumodules.opentofu.tofuplane.io"

    spec: ModuleSpec
    status: ModuleStatus = Field(default_factory=ModuleStatus)
