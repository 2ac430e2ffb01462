"""
Resource store — the API surface controllers talk to.

A store holds typed resources keyed by (kind, namespace, name) and
enforces optimistic concurrency on ``metadata.resourceVersion``. The
controllers only ever see this interface, never a concrete backend.

Implementations:
    - MemoryStore   (in-process, optionally persisted to a JSON file)
    - KubectlStore  (tofuplane.adapters.kubectl, a real cluster)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, TypeVar

from tofuplane.core.models.meta import Resource

R = TypeVar("R", bound=Resource)

# (event_type, object) — event_type is "added", "modified" or "deleted"
Listener = Callable[[str, Resource], None]


class StoreError(Exception):
    """Base class for store failures; anything else is a transient error."""


class NotFoundError(StoreError):
    """The requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExistsError(StoreError):
    """An object with the same name already exists."""


class ConflictError(StoreError):
    """The object was modified since it was read (stale resourceVersion)."""


class InvalidError(StoreError):
    """The object was rejected as malformed (e.g. it has no name)."""


class ResourceStore(ABC):
    """Abstract resource store.

    Every returned object is a private copy: mutating it never changes
    stored state until it is written back with ``update`` or
    ``update_status``.
    """

    # Whether subscribe() delivers change notifications.
    emits_events: bool = False

    @abstractmethod
    def get(self, cls: type[R], namespace: str, name: str) -> R:
        """Fetch one object.

        Raises:
            NotFoundError: If it does not exist.
        """

    @abstractmethod
    def list(self, cls: type[R], namespace: str | None = None) -> list[R]:
        """List objects of a kind, optionally restricted to a namespace."""

    @abstractmethod
    def create(self, obj: R) -> R:
        """Create an object, resolving ``generateName`` if no name is set.

        Raises:
            AlreadyExistsError: If the name is taken.
            InvalidError: If it has neither a name nor a generateName.
        """

    @abstractmethod
    def update(self, obj: R) -> R:
        """Replace metadata and spec; status is left untouched.

        Raises:
            NotFoundError: If the object is gone.
            ConflictError: If ``resourceVersion`` is stale.
        """

    @abstractmethod
    def update_status(self, obj: R) -> R:
        """Replace status only.

        Raises:
            NotFoundError: If the object is gone.
            ConflictError: If ``resourceVersion`` is stale.
        """

    @abstractmethod
    def delete(self, cls: type[Resource], namespace: str, name: str) -> None:
        """Delete an object.

        Raises:
            NotFoundError: If it does not exist.
        """

    def subscribe(self, listener: Listener) -> None:
        """Register a change listener. No-op for stores without events."""
