"""
In-memory resource store with optional JSON persistence.

Behaves like a small API server: assigns uids, resource versions,
generations and creation timestamps, resolves ``generateName``,
rejects stale writes and notifies listeners after every mutation.

When a ``path`` is given, the full object set is saved to a JSON file
after each mutation (atomic write: temp file, then rename) and loaded
back on construction, so CLI invocations share state.
"""

from __future__ import annotations

import json
import logging
import random
import tempfile
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

from tofuplane.core.models import resource_from_dict
from tofuplane.core.models.meta import Resource, new_uid
from tofuplane.core.persistence.store import (
    AlreadyExistsError,
    ConflictError,
    InvalidError,
    Listener,
    NotFoundError,
    R,
    ResourceStore,
)

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "resources.json"

# Same alphabet the API server uses for generated name suffixes
_SUFFIX_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"
_SUFFIX_LEN = 5


def default_store_path(project_root: Path) -> Path:
    """Get the default state file path under a directory."""
    return project_root / DEFAULT_STATE_DIR / DEFAULT_STATE_FILE


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryStore(ResourceStore):
    """Thread-safe in-process store."""

    emits_events = True

    def __init__(
        self,
        path: Path | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._path = path
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._objects: dict[tuple[str, str, str], Resource] = {}
        self._listeners: list[Listener] = []
        self._version = 0

        if path and path.is_file():
            self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    # ── Reads ────────────────────────────────────────────────────

    def get(self, cls: type[R], namespace: str, name: str) -> R:
        with self._lock:
            obj = self._objects.get((cls.KIND, namespace, name))
            if obj is None:
                raise NotFoundError(cls.KIND, namespace, name)
            return obj.model_copy(deep=True)

    def list(self, cls: type[R], namespace: str | None = None) -> list[R]:
        with self._lock:
            return [
                obj.model_copy(deep=True)
                for (kind, ns, _), obj in self._objects.items()
                if kind == cls.KIND and (namespace is None or ns == namespace)
            ]

    # ── Writes ───────────────────────────────────────────────────

    def create(self, obj: R) -> R:
        with self._lock:
            stored = obj.model_copy(deep=True)
            meta = stored.metadata
            if not meta.name:
                if not meta.generate_name:
                    raise InvalidError(f"{stored.kind} needs a name or generateName")
                meta.name = self._generate_name(stored.kind, meta.namespace, meta.generate_name)
            if stored.key in self._objects:
                raise AlreadyExistsError(
                    f"{stored.kind} {meta.namespace}/{meta.name} already exists"
                )

            meta.uid = new_uid()
            meta.generation = 1
            meta.creation_timestamp = self._clock()
            meta.resource_version = self._next_version()
            self._objects[stored.key] = stored
            self._save()
            result = stored.model_copy(deep=True)

        logger.debug("Created %s %s/%s", result.kind, result.namespace, result.name)
        self._notify("added", result)
        return result

    def update(self, obj: R) -> R:
        with self._lock:
            current = self._current_for_write(obj)
            stored = obj.model_copy(deep=True)
            meta = stored.metadata
            meta.uid = current.metadata.uid
            meta.creation_timestamp = current.metadata.creation_timestamp
            meta.generation = current.metadata.generation
            if getattr(stored, "spec", None) != getattr(current, "spec", None):
                meta.generation += 1
            if hasattr(current, "status"):
                stored.status = current.status.model_copy(deep=True)
            meta.resource_version = self._next_version()
            self._objects[stored.key] = stored
            self._save()
            result = stored.model_copy(deep=True)

        self._notify("modified", result)
        return result

    def update_status(self, obj: R) -> R:
        with self._lock:
            current = self._current_for_write(obj)
            stored = current.model_copy(deep=True)
            stored.status = obj.status.model_copy(deep=True)
            stored.metadata.resource_version = self._next_version()
            self._objects[stored.key] = stored
            self._save()
            result = stored.model_copy(deep=True)

        self._notify("modified", result)
        return result

    def delete(self, cls: type[Resource], namespace: str, name: str) -> None:
        with self._lock:
            obj = self._objects.pop((cls.KIND, namespace, name), None)
            if obj is None:
                raise NotFoundError(cls.KIND, namespace, name)
            self._save()

        logger.debug("Deleted %s %s/%s", cls.KIND, namespace, name)
        self._notify("deleted", obj)

    def add(self, obj: Resource) -> Resource:
        """Seed an object as-is (keeps its uid, timestamps and status).

        Missing uid / resourceVersion / creation timestamp are filled in.
        Does not notify listeners.
        """
        with self._lock:
            stored = obj.model_copy(deep=True)
            meta = stored.metadata
            meta.uid = meta.uid or new_uid()
            meta.generation = meta.generation or 1
            meta.creation_timestamp = meta.creation_timestamp or self._clock()
            meta.resource_version = self._next_version()
            self._objects[stored.key] = stored
            self._save()
            return stored.model_copy(deep=True)

    # ── Events ───────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _notify(self, event_type: str, obj: Resource) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event_type, obj)
            except Exception as e:
                logger.error("Store listener failed on %s %s: %s", event_type, obj.name, e)

    # ── Internals ────────────────────────────────────────────────

    def _current_for_write(self, obj: Resource) -> Resource:
        current = self._objects.get(obj.key)
        if current is None:
            raise NotFoundError(obj.kind, obj.namespace, obj.name)
        if obj.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError(
                f"Operation cannot be fulfilled on {obj.kind} {obj.namespace}/{obj.name}: "
                "the object has been modified; please apply your changes to the latest version"
            )
        return current

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _generate_name(self, kind: str, namespace: str, prefix: str) -> str:
        while True:
            suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=_SUFFIX_LEN))
            name = f"{prefix}{suffix}"
            if (kind, namespace, name) not in self._objects:
                return name

    def _save(self) -> None:
        if self._path is None:
            return

        data = {
            "resource_version": self._version,
            "objects": [obj.to_dict() for obj in self._objects.values()],
        }
        content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

        self._path.parent.mkdir(parents=True, exist_ok=True)
        _fd, tmp_path = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=".resources_",
            suffix=".tmp",
        )
        tmp = Path(tmp_path)
        try:
            with open(_fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(self._path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def _load(self) -> None:
        assert self._path is not None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Corrupt store file %s: %s — starting empty", self._path, e)
            return

        for raw in data.get("objects", []):
            try:
                obj = resource_from_dict(raw)
            except Exception as e:
                logger.warning("Skipping unreadable object in %s: %s", self._path, e)
                continue
            self._objects[obj.key] = obj
        self._version = int(data.get("resource_version", 0))
        logger.info("Loaded %d objects from %s", len(self._objects), self._path)
