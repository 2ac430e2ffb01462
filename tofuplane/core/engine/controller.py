"""
Reconciler base — the contract between the manager and controllers.

A reconciler is invoked with a resource identity (namespace + name),
compares desired with observed state, acts, and returns what should
happen next. Raising means "failed, retry with backoff".

To create a new controller:
    1. Subclass Reconciler
    2. Set name, for_kind and owns
    3. Implement reconcile
    4. Register it on the Manager
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ClassVar

from tofuplane.core.models.meta import Resource


@dataclass(frozen=True)
class ReconcileResult:
    """What the manager should do after a successful pass.

    ``requeue_after`` wins over ``requeue``; neither means "wait for
    the next change notification".
    """

    requeue: bool = False
    requeue_after: float | None = None

    @property
    def done(self) -> bool:
        return not self.requeue and self.requeue_after is None


def utcnow() -> datetime:
    return datetime.now(UTC)


class Reconciler(ABC):
    """Abstract base class for all controllers."""

    # Manager queue name, e.g. "execution"
    name: ClassVar[str] = ""
    # Primary kind: changes to it enqueue its own key
    for_kind: ClassVar[type[Resource]]
    # Child kinds: changes enqueue the controlling owner's key
    owns: ClassVar[tuple[type[Resource], ...]] = ()

    @abstractmethod
    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconcile pass for a single object."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
