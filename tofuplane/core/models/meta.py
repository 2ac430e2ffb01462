"""
Object metadata shared by every resource kind.

Resources follow the Kubernetes object layout: ``apiVersion``, ``kind``,
``metadata``, ``spec`` and ``status``. Python attributes are snake_case;
the wire format (JSON/YAML) is camelCase through pydantic aliases, so
a model always round-trips with ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Stamped on every Execution: the owner's generation at creation time.
GENERATION_ANNOTATION = "opentofu.tofuplane.io/generation"
# Why an Execution was created (module-created, spec-change, drift, ...).
TRIGGERED_BY_ANNOTATION = "opentofu.tofuplane.io/triggered-by"
STACK_LABEL = "opentofu.tofuplane.io/stack"

GROUP_VERSION = "opentofu.tofuplane.io/v1alpha1"


class WireModel(BaseModel):
    """Base for every serialized model: camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class OwnerReference(WireModel):
    """Pointer from a dependent to one of its owners."""

    api_version: str = ""
    kind: str = ""
    name: str = ""
    uid: str = ""
    controller: bool | None = None
    block_owner_deletion: bool | None = None


class ObjectMeta(WireModel):
    """Identity and bookkeeping fields of a stored object."""

    name: str = ""
    generate_name: str = ""
    namespace: str = "default"
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    creation_timestamp: datetime | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)


class TemplateMetadata(WireModel):
    """Labels, annotations and name prefix applied to generated objects."""

    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    generate_name: str = ""


class Condition(WireModel):
    """A single observation about an object's state."""

    type: str
    status: str = "Unknown"  # True, False, Unknown
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None
    observed_generation: int = 0


def set_condition(
    conditions: list[Condition],
    new: Condition,
    now: datetime,
) -> bool:
    """Insert or update ``new`` in ``conditions`` by type.

    ``last_transition_time`` only moves when the status flips, so
    re-applying an identical condition is a no-op.

    Returns:
        True if the list changed.
    """
    for existing in conditions:
        if existing.type != new.type:
            continue
        changed = False
        if existing.status != new.status:
            existing.status = new.status
            existing.last_transition_time = new.last_transition_time or now
            changed = True
        for attr in ("reason", "message", "observed_generation"):
            if getattr(existing, attr) != getattr(new, attr):
                setattr(existing, attr, getattr(new, attr))
                changed = True
        return changed

    conditions.append(
        new.model_copy(
            update={"last_transition_time": new.last_transition_time or now}
        )
    )
    return True


def find_condition(conditions: list[Condition], type_: str) -> Condition | None:
    """Look up a condition by type."""
    for cond in conditions:
        if cond.type == type_:
            return cond
    return None


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string (``30m``, ``1h30m``, ``45s``) to seconds.

    Raises:
        ValueError: If the string is not a valid duration.
    """
    text = value.strip()
    if not text:
        return 0.0
    if text == "0":
        return 0.0

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


class Resource(WireModel):
    """Common shape of every stored object.

    Subclasses set ``KIND``, ``API_VERSION`` and ``RESOURCE`` (the
    plural resource name the API server knows them by).
    """

    KIND: ClassVar[str] = ""
    API_VERSION: ClassVar[str] = GROUP_VERSION
    RESOURCE: ClassVar[str] = ""

    api_version: str = ""
    kind: str = ""
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    def model_post_init(self, __context: Any) -> None:
        if not self.api_version:
            self.api_version = self.API_VERSION
        if not self.kind:
            self.kind = self.KIND

    # ── Identity ─────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> tuple[str, str, str]:
        """(kind, namespace, name) — unique within a store."""
        return (self.kind, self.metadata.namespace, self.metadata.name)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase, no nulls)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    # ── Ownership ────────────────────────────────────────────────

    def controller_reference(self) -> OwnerReference:
        """An owner reference naming this object as controller."""
        return OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.metadata.name,
            uid=self.metadata.uid,
            controller=True,
            block_owner_deletion=True,
        )

    def controller_of(self) -> OwnerReference | None:
        """The owner reference with ``controller`` set, if any."""
        for ref in self.metadata.owner_references:
            if ref.controller:
                return ref
        return None

    def set_controller_reference(self, owner: Resource) -> None:
        """Make ``owner`` the controlling owner of this object.

        Raises:
            ValueError: If the owner has no uid yet, or a different
                controller is already set.
        """
        if not owner.metadata.uid:
            raise ValueError(
                f"{owner.kind} {owner.namespace}/{owner.name} has no uid; "
                "it must be stored before owning anything"
            )
        existing = self.controller_of()
        if existing is not None and existing.uid != owner.metadata.uid:
            raise ValueError(
                f"{self.kind} {self.namespace}/{self.name or self.metadata.generate_name} "
                f"is already controlled by {existing.kind} {existing.name}"
            )
        refs = [r for r in self.metadata.owner_references if r.uid != owner.metadata.uid]
        refs.append(owner.controller_reference())
        self.metadata.owner_references = refs


def new_uid() -> str:
    return str(uuid.uuid4())
