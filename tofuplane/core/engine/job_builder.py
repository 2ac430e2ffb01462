"""
Job construction for an Execution.

Builds the batch/v1 Job that clones the module source and runs the
engine. The controller owns when a Job is created; this module only
decides what it looks like.
"""

from __future__ import annotations

import shlex

from tofuplane.core.models.execution import EngineSpec, EnvVar, Execution, JobTemplateSpec
from tofuplane.core.models.job import (
    Container,
    Job,
    JobSpec,
    PodMetadata,
    PodSpec,
    PodTemplateSpec,
)
from tofuplane.core.models.meta import ObjectMeta
from tofuplane.core.models.module import Module

DEFAULT_ENGINE = "tofu"
CONTAINER_NAME = "tofu"

# Read by the worker agent inside the Job
EXECUTION_NAME_ENV = "TOFU_EXECUTION_NAME"
EXECUTION_NAMESPACE_ENV = "TOFU_EXECUTION_NAMESPACE"

_CANONICAL_IMAGES = {
    "terraform": "hashicorp/terraform",
    "tofu": "ghcr.io/opentofu/opentofu",
    "opentofu": "ghcr.io/opentofu/opentofu",
}

# Binary invoked for each engine name
_BINARIES = {"opentofu": "tofu"}


def engine_name(engine: EngineSpec) -> str:
    return engine.name or DEFAULT_ENGINE


def resolve_image(engine: EngineSpec, default_image: str) -> str:
    """Container image for ``engine``.

    Without a version the settings default image is used regardless of
    the engine name.
    """
    if not engine.version:
        return default_image
    name = engine_name(engine)
    repo = _CANONICAL_IMAGES.get(name, name)
    return f"{repo}:{engine.version}"


def build_command(module: Module, engine: EngineSpec, action: str) -> str:
    """Shell script: clone the module source, then init and run."""
    spec = module.spec
    binary = _BINARIES.get(engine_name(engine), engine_name(engine))
    clone = ["git", "clone", "--depth", "1"]
    if spec.version:
        clone += ["--branch", spec.version]
    clone += [spec.source, "."]

    steps = [
        "mkdir -p workspace",
        "cd workspace",
        " ".join(shlex.quote(part) for part in clone),
        f"cd {shlex.quote(spec.workdir or '.')}",
        f"{shlex.quote(binary)} init",
        f"{shlex.quote(binary)} {shlex.quote(action)}",
    ]
    return "\n".join(steps)


def construct_job(execution: Execution, module: Module, default_image: str) -> Job:
    """Build (but do not store) the Job for ``execution``.

    Raises:
        ValueError: If the execution has no uid to own the Job.
    """
    template = execution.spec.job_template or JobTemplateSpec()
    prefix = template.metadata.generate_name or execution.name

    env = [e.model_copy() for e in template.env]
    env += [
        EnvVar(name=EXECUTION_NAME_ENV, value=execution.name),
        EnvVar(name=EXECUTION_NAMESPACE_ENV, value=execution.namespace),
    ]

    container = Container(
        name=CONTAINER_NAME,
        image=resolve_image(execution.spec.engine, default_image),
        command=[
            "sh",
            "-exc",
            build_command(module, execution.spec.engine, execution.spec.action),
        ],
        env=env,
        env_from=[dict(source) for source in template.env_from],
    )

    job = Job(
        metadata=ObjectMeta(
            generate_name=f"{prefix}-",
            namespace=execution.namespace,
            labels=dict(template.metadata.labels),
            annotations=dict(template.metadata.annotations),
        ),
        spec=JobSpec(
            template=PodTemplateSpec(
                metadata=PodMetadata(
                    labels=dict(template.metadata.labels),
                    annotations=dict(template.metadata.annotations),
                ),
                spec=PodSpec(
                    restart_policy="Never",
                    service_account_name=template.service_account_name,
                    containers=[container],
                ),
            ),
        ),
    )
    job.set_controller_reference(execution)
    return job
