"""
Tests for Job construction — image choice, command and metadata.
"""

import pytest

from tofuplane.core.engine.job_builder import (
    EXECUTION_NAME_ENV,
    EXECUTION_NAMESPACE_ENV,
    build_command,
    construct_job,
    resolve_image,
)
from tofuplane.core.models import (
    EngineSpec,
    EnvVar,
    Execution,
    ExecutionSpec,
    JobTemplateSpec,
    Module,
    ModuleSpec,
    ObjectMeta,
    TemplateMetadata,
)

DEFAULT = "tofuutils/tenv:latest"


def _module(**spec) -> Module:
    spec.setdefault("source", "https://git.example.com/infra/network.git")
    return Module(metadata=ObjectMeta(name="network", uid="m-1"), spec=ModuleSpec(**spec))


def _execution(**spec) -> Execution:
    return Execution(
        metadata=ObjectMeta(name="network-x1", namespace="infra", uid="e-1"),
        spec=ExecutionSpec(**spec),
    )


# ── Image ────────────────────────────────────────────────────────


class TestResolveImage:
    @pytest.mark.parametrize(
        "name, version, expected",
        [
            ("terraform", "1.7.5", "hashicorp/terraform:1.7.5"),
            ("tofu", "1.8.0", "ghcr.io/opentofu/opentofu:1.8.0"),
            ("opentofu", "1.8.0", "ghcr.io/opentofu/opentofu:1.8.0"),
            ("", "1.8.0", "ghcr.io/opentofu/opentofu:1.8.0"),
            ("acme/terragrunt", "0.55", "acme/terragrunt:0.55"),
        ],
    )
    def test_versioned_engines(self, name, version, expected):
        assert resolve_image(EngineSpec(name=name, version=version), DEFAULT) == expected

    @pytest.mark.parametrize("name", ["", "tofu", "terraform", "custom"])
    def test_no_version_uses_default(self, name):
        assert resolve_image(EngineSpec(name=name), DEFAULT) == DEFAULT


# ── Command ──────────────────────────────────────────────────────


class TestBuildCommand:
    def test_pinned_version_and_workdir(self):
        cmd = build_command(_module(version="v1.2.0", workdir="envs/prod"), EngineSpec(), "plan")
        lines = cmd.splitlines()
        assert lines[0] == "mkdir -p workspace"
        assert lines[1] == "cd workspace"
        assert lines[2] == (
            "git clone --depth 1 --branch v1.2.0 "
            "https://git.example.com/infra/network.git ."
        )
        assert lines[3] == "cd envs/prod"
        assert lines[4] == "tofu init"
        assert lines[5] == "tofu plan"

    def test_head_and_default_workdir(self):
        cmd = build_command(_module(), EngineSpec(name="terraform"), "apply")
        assert "--branch" not in cmd
        assert "cd ." in cmd
        assert cmd.endswith("terraform init\nterraform apply")

    def test_opentofu_runs_tofu_binary(self):
        cmd = build_command(_module(), EngineSpec(name="opentofu"), "plan")
        assert cmd.endswith("tofu init\ntofu plan")

    def test_source_is_shell_quoted(self):
        cmd = build_command(_module(source="https://x/y.git; rm -rf /"), EngineSpec(), "plan")
        assert "'https://x/y.git; rm -rf /'" in cmd


# ── Job ──────────────────────────────────────────────────────────


class TestConstructJob:
    def test_shape(self):
        job = construct_job(_execution(action="apply"), _module(), DEFAULT)

        assert job.metadata.generate_name == "network-x1-"
        assert job.metadata.namespace == "infra"
        pod = job.spec.template.spec
        assert pod.restart_policy == "Never"
        assert len(pod.containers) == 1
        container = pod.containers[0]
        assert container.image == DEFAULT
        assert container.command[:2] == ["sh", "-exc"]
        assert container.command[2].endswith("tofu apply")

    def test_controlled_by_execution(self):
        job = construct_job(_execution(), _module(), DEFAULT)
        ref = job.controller_of()
        assert ref is not None
        assert ref.uid == "e-1"
        assert ref.kind == "TofuExecution"

    def test_empty_template_gives_empty_maps(self):
        job = construct_job(_execution(), _module(), DEFAULT)
        assert job.metadata.labels == {}
        assert job.metadata.annotations == {}
        assert job.spec.template.metadata.labels == {}
        assert job.spec.template.metadata.annotations == {}

    def test_template_copied_to_job_and_pod(self):
        template = JobTemplateSpec(
            metadata=TemplateMetadata(
                labels={"team": "net"},
                annotations={"note": "x"},
                generate_name="custom",
            ),
            env=[EnvVar(name="TF_LOG", value="info")],
            env_from=[{"secretRef": {"name": "creds"}}],
            service_account_name="runner",
        )
        job = construct_job(_execution(job_template=template), _module(), DEFAULT)

        assert job.metadata.generate_name == "custom-"
        assert job.metadata.labels == {"team": "net"}
        assert job.spec.template.metadata.labels == {"team": "net"}
        assert job.spec.template.metadata.annotations == {"note": "x"}
        pod = job.spec.template.spec
        assert pod.service_account_name == "runner"
        container = pod.containers[0]
        assert container.env_from == [{"secretRef": {"name": "creds"}}]
        assert container.env[0].name == "TF_LOG"

        # the template itself is not aliased
        job.metadata.labels["extra"] = "1"
        assert template.metadata.labels == {"team": "net"}

    def test_agent_environment_injected(self):
        job = construct_job(_execution(), _module(), DEFAULT)
        env = {e.name: e.value for e in job.spec.template.spec.containers[0].env}
        assert env[EXECUTION_NAME_ENV] == "network-x1"
        assert env[EXECUTION_NAMESPACE_ENV] == "infra"

    def test_execution_without_uid_rejected(self):
        execution = _execution()
        execution.metadata.uid = ""
        with pytest.raises(ValueError):
            construct_job(execution, _module(), DEFAULT)
