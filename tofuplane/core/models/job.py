"""
Job model — the batch/v1 Job subset the controllers read and write.

Jobs belong to the platform, not to tofuplane; only the fields the
execution controller builds or consumes are modelled.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from pydantic import Field

from tofuplane.core.models.execution import EnvVar
from tofuplane.core.models.meta import Resource, WireModel


class Container(WireModel):
    name: str
    image: str
    command: list[str] = Field(default_factory=list)
    env: list[EnvVar] = Field(default_factory=list)
    env_from: list[dict[str, Any]] = Field(default_factory=list)


class PodSpec(WireModel):
    restart_policy: str = "Never"
    service_account_name: str = ""
    containers: list[Container] = Field(default_factory=list)


class PodMetadata(WireModel):
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class PodTemplateSpec(WireModel):
    metadata: PodMetadata = Field(default_factory=PodMetadata)
    spec: PodSpec = Field(default_factory=PodSpec)


class JobSpec(WireModel):
    backoff_limit: int | None = None
    template: PodTemplateSpec = Field(default_factory=PodTemplateSpec)


class JobStatus(WireModel):
    active: int = 0
    succeeded: int = 0
    failed: int = 0
    terminating: int | None = None
    uncounted_terminated_pods: dict[str, Any] | None = None
    start_time: datetime | None = None
    completion_time: datetime | None = None


class Job(Resource):
    KIND: ClassVar[str] = "Job"
    API_VERSION: ClassVar[str] = "batch/v1"
    RESOURCE: ClassVar[str] = "jobs.batch"

    spec: JobSpec = Field(default_factory=JobSpec)
    status: JobStatus = Field(default_factory=JobStatus)
