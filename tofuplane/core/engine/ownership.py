"""
Owned-children lookup.

Children are found by listing the parent's namespace and keeping the
objects whose *controller* owner reference carries the parent's uid.
Plain (non-controller) owner references never count.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Iterable

from tofuplane.core.models.meta import Resource
from tofuplane.core.persistence.store import R, ResourceStore

_EPOCH = datetime.min.replace(tzinfo=UTC)


def is_controlled_by(obj: Resource, parent: Resource) -> bool:
    """Whether ``parent`` is the controlling owner of ``obj``."""
    if not parent.metadata.uid:
        return False
    return any(
        ref.controller and ref.uid == parent.metadata.uid
        for ref in obj.metadata.owner_references
    )


def filter_owned(parent: Resource, candidates: Iterable[R]) -> list[R]:
    """Keep only the candidates controlled by ``parent``, in input order."""
    return [c for c in candidates if is_controlled_by(c, parent)]


def owned_children(store: ResourceStore, parent: Resource, cls: type[R]) -> list[R]:
    """List the objects of kind ``cls`` that ``parent`` controls."""
    return filter_owned(parent, store.list(cls, parent.namespace))


def creation_time(obj: Resource) -> datetime:
    return obj.metadata.creation_timestamp or _EPOCH


def newest_first(objs: Iterable[R]) -> list[R]:
    """Sort by creation timestamp, newest first.

    Equal timestamps are ordered by name (descending), so the result
    never depends on the order the store listed them in.
    """
    return sorted(objs, key=lambda o: (creation_time(o), o.name), reverse=True)
