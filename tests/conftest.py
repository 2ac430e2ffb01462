"""
Shared test fixtures and configuration.
"""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from tofuplane.core.config.settings import Settings
from tofuplane.core.models import (
    Execution,
    ExecutionSpec,
    Job,
    JobStatus,
    Module,
    ModuleSpec,
    ObjectMeta,
    ObjectRef,
)
from tofuplane.core.models.meta import GENERATION_ANNOTATION
from tofuplane.core.persistence.memory_store import MemoryStore

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class TickingClock:
    """Returns a later time on every call, so creation order is strict."""

    def __init__(self, start: datetime = T0, step: float = 1.0):
        self.now = start
        self.step = timedelta(seconds=step)

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FixedClock:
    """Always returns the same time until advanced."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def store(clock: TickingClock) -> MemoryStore:
    """An empty in-memory store stamping times from ``clock``."""
    return MemoryStore(clock=clock)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings loaded from a YAML file with a custom default image."""
    path = tmp_path / "config.yaml"
    path.write_text("execution:\n  defaultImage: example/runner:1\n")
    s = Settings()
    s.init([path])
    return s


@pytest.fixture
def unloaded_settings() -> Settings:
    return Settings()


@pytest.fixture
def make_module(store: MemoryStore):
    """Create a Module in the store."""

    def _make(name: str = "network", namespace: str = "default", **spec) -> Module:
        spec.setdefault("source", "https://git.example.com/infra/network.git")
        module = Module(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=ModuleSpec(**spec),
        )
        return store.create(module)

    return _make


@pytest.fixture
def make_execution(store: MemoryStore):
    """Create an Execution controlled by ``owner``, stamped with a generation."""

    def _make(
        owner: Module,
        name: str | None = None,
        generation: int | None = None,
        phase: str | None = None,
        action: str = "plan",
    ) -> Execution:
        execution = Execution(
            metadata=ObjectMeta(
                name=name or "",
                generate_name=f"{owner.name}-",
                namespace=owner.namespace,
                annotations={
                    GENERATION_ANNOTATION: str(
                        owner.metadata.generation if generation is None else generation
                    )
                },
            ),
            spec=ExecutionSpec(
                action=action,
                module_ref=ObjectRef(name=owner.name, namespace=owner.namespace),
            ),
        )
        execution.set_controller_reference(owner)
        if phase is not None:
            execution.status.phase = phase
        return store.create(execution)

    return _make


@pytest.fixture
def make_job(store: MemoryStore):
    """Create a Job controlled by ``execution`` with the given counters."""

    def _make(execution: Execution, name: str | None = None, **status) -> Job:
        job = Job(
            metadata=ObjectMeta(
                name=name or "",
                generate_name=f"{execution.name}-",
                namespace=execution.namespace,
            ),
            status=JobStatus(**status),
        )
        job.set_controller_reference(execution)
        return store.create(job)

    return _make


@pytest.fixture
def set_job_status(store: MemoryStore):
    """Overwrite a stored Job's counters the way the Job controller would."""

    def _set(job: Job, **status) -> Job:
        current = store.get(Job, job.namespace, job.name)
        current.status = JobStatus(**status)
        return store.update_status(current)

    return _set


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock(T0 + timedelta(hours=1))
