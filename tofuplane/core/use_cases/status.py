"""
Status use case — tabulate resources and their phases.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from tofuplane.core.engine.ownership import creation_time
from tofuplane.core.engine.phase import job_phase
from tofuplane.core.models import RESOURCE_KINDS
from tofuplane.core.models.meta import Resource
from tofuplane.core.persistence.store import ResourceStore

# CLI spellings → kind
KIND_ALIASES = {
    "module": "TofuModule",
    "modules": "TofuModule",
    "tofumodule": "TofuModule",
    "execution": "TofuExecution",
    "executions": "TofuExecution",
    "tofuexecution": "TofuExecution",
    "stack": "TofuStack",
    "stacks": "TofuStack",
    "tofustack": "TofuStack",
    "job": "Job",
    "jobs": "Job",
}


def resolve_kind(name: str) -> type[Resource]:
    """Model class for a CLI kind name (``modules``, ``TofuStack`` ...).

    Raises:
        ValueError: If the name matches no kind.
    """
    kind = KIND_ALIASES.get(name.lower(), name)
    cls = RESOURCE_KINDS.get(kind)
    if cls is None:
        valid = ", ".join(sorted({k for k in KIND_ALIASES if not k.endswith("s")}))
        raise ValueError(f"Unknown kind {name!r}. Valid: {valid}")
    return cls


def _phase(obj: Resource) -> str:
    status = getattr(obj, "status", None)
    phase = getattr(status, "phase", None)
    if phase is not None:
        return phase or "-"
    # Jobs carry counters, not a phase
    return job_phase(obj)


def _detail(obj: Resource) -> str:
    status = getattr(obj, "status", None)
    if hasattr(status, "last_execution_name"):
        return status.last_execution_name
    if hasattr(status, "execution_summary"):
        return status.execution_summary.summary
    return ""


@dataclass
class ResourceRow:
    kind: str
    namespace: str
    name: str
    phase: str
    detail: str = ""
    created: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "phase": self.phase,
            "detail": self.detail,
            "created": self.created,
        }


@dataclass
class ResourceListing:
    kind: str
    rows: list[ResourceRow] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "items": [r.to_dict() for r in self.rows]}


def get_resources(
    store: ResourceStore,
    kind: str,
    namespace: str | None = None,
) -> ResourceListing:
    """List resources of ``kind`` with their phase, oldest first."""
    cls = resolve_kind(kind)
    objs = sorted(
        store.list(cls, namespace),
        key=lambda o: (o.namespace, creation_time(o), o.name),
    )
    listing = ResourceListing(kind=cls.KIND)
    for obj in objs:
        ts = obj.metadata.creation_timestamp
        listing.rows.append(
            ResourceRow(
                kind=obj.kind,
                namespace=obj.namespace,
                name=obj.name,
                phase=_phase(obj),
                detail=_detail(obj),
                created=ts.isoformat() if ts else "",
            )
        )
    return listing
