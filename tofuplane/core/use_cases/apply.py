"""
Apply use case — create or update resources from a manifest file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from tofuplane.core.config.manifest_loader import ManifestError, load_manifests
from tofuplane.core.models.meta import Resource
from tofuplane.core.persistence.store import NotFoundError, ResourceStore, StoreError

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Outcome of applying a manifest."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "errors": self.errors,
        }


def _label(obj: Resource) -> str:
    return f"{obj.kind}/{obj.namespace}/{obj.name}"


def apply_resource(store: ResourceStore, obj: Resource, result: ApplyResult) -> None:
    """Create ``obj``, or update its spec and metadata if it exists."""
    if not obj.name:
        created = store.create(obj)
        result.created.append(_label(created))
        return

    try:
        current = store.get(type(obj), obj.namespace, obj.name)
    except NotFoundError:
        store.create(obj)
        result.created.append(_label(obj))
        return

    desired = current.model_copy(deep=True)
    desired.metadata.labels = dict(obj.metadata.labels)
    desired.metadata.annotations = dict(obj.metadata.annotations)
    if hasattr(obj, "spec"):
        desired.spec = obj.spec.model_copy(deep=True)

    if desired == current:
        result.unchanged.append(_label(obj))
        return

    store.update(desired)
    result.updated.append(_label(obj))


def apply_manifest(store: ResourceStore, path: Path) -> ApplyResult:
    """Apply every resource in the manifest at ``path``.

    A failing resource is recorded and the rest are still applied.
    """
    result = ApplyResult()
    try:
        resources = load_manifests(path)
    except ManifestError as e:
        result.errors.append(str(e))
        return result

    for obj in resources:
        try:
            apply_resource(store, obj, result)
        except StoreError as e:
            logger.error("Apply %s failed: %s", _label(obj), e)
            result.errors.append(f"{_label(obj)}: {e}")

    return result
