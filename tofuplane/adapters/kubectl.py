"""
Kubectl store — the resource store backed by a real cluster.

Every operation is one ``kubectl`` call with JSON in and out, so the
store works with whatever context and credentials kubectl is set up
with. No watch: pair it with the manager's periodic resync.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import Any

from tofuplane.core.models.meta import Resource
from tofuplane.core.persistence.store import (
    AlreadyExistsError,
    ConflictError,
    InvalidError,
    NotFoundError,
    R,
    ResourceStore,
    StoreError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# Server-assigned metadata that must not be sent back on create
_SERVER_FIELDS = ("uid", "resourceVersion", "generation", "creationTimestamp")


def kubectl_available(binary: str = "kubectl") -> bool:
    return shutil.which(binary) is not None


def _manifest(obj: Resource, for_create: bool = False) -> str:
    data = obj.to_dict()
    meta = data.get("metadata", {})
    for key in list(meta):
        if meta[key] in ("", None, [], {}) and key != "name":
            del meta[key]
    if for_create:
        for key in _SERVER_FIELDS:
            meta.pop(key, None)
        if not meta.get("name"):
            meta.pop("name", None)
    return json.dumps(data)


class KubectlStore(ResourceStore):
    """ResourceStore over the kubectl CLI."""

    def __init__(
        self,
        binary: str = "kubectl",
        context: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self._binary = binary
        self._context = context
        self._timeout = timeout

    # ── Reads ────────────────────────────────────────────────────

    def get(self, cls: type[R], namespace: str, name: str) -> R:
        result = self._run_kubectl(
            "get", cls.RESOURCE, name, "-n", namespace, "-o", "json",
            kind=cls.KIND, namespace=namespace, name=name,
        )
        return cls.model_validate(result)

    def list(self, cls: type[R], namespace: str | None = None) -> list[R]:
        scope = ["-n", namespace] if namespace else ["--all-namespaces"]
        result = self._run_kubectl("get", cls.RESOURCE, *scope, "-o", "json", kind=cls.KIND)
        return [cls.model_validate(item) for item in result.get("items", [])]

    # ── Writes ───────────────────────────────────────────────────

    def create(self, obj: R) -> R:
        result = self._run_kubectl(
            "create", "-f", "-", "-o", "json",
            input_text=_manifest(obj, for_create=True),
            kind=obj.kind, namespace=obj.namespace, name=obj.name,
        )
        created = type(obj).model_validate(result)
        logger.debug("Created %s %s/%s", created.kind, created.namespace, created.name)
        return created

    def update(self, obj: R) -> R:
        result = self._run_kubectl(
            "replace", "-f", "-", "-o", "json",
            input_text=_manifest(obj),
            kind=obj.kind, namespace=obj.namespace, name=obj.name,
        )
        return type(obj).model_validate(result)

    def update_status(self, obj: R) -> R:
        result = self._run_kubectl(
            "replace", "--subresource=status", "-f", "-", "-o", "json",
            input_text=_manifest(obj),
            kind=obj.kind, namespace=obj.namespace, name=obj.name,
        )
        return type(obj).model_validate(result)

    def delete(self, cls: type[Resource], namespace: str, name: str) -> None:
        self._run_kubectl(
            "delete", cls.RESOURCE, name, "-n", namespace, "--wait=false",
            kind=cls.KIND, namespace=namespace, name=name, parse=False,
        )
        logger.debug("Deleted %s %s/%s", cls.KIND, namespace, name)

    # ── kubectl ──────────────────────────────────────────────────

    def _run_kubectl(
        self,
        *args: str,
        input_text: str | None = None,
        kind: str = "",
        namespace: str = "",
        name: str = "",
        parse: bool = True,
    ) -> dict[str, Any]:
        """Run kubectl and decode its JSON output.

        Raises:
            NotFoundError / AlreadyExistsError / ConflictError: Mapped
                from kubectl's error output.
            StoreError: Any other failure.
        """
        cmd = [self._binary]
        if self._context:
            cmd += ["--context", self._context]
        cmd += list(args)

        try:
            result = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise StoreError(f"{self._binary} not found") from e
        except subprocess.TimeoutExpired as e:
            raise StoreError(f"{self._binary} {args[0]} timed out after {self._timeout}s") from e

        if result.returncode != 0:
            raise self._map_error(result.stderr.strip(), kind, namespace, name)

        if not parse:
            return {}
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise StoreError(f"Unexpected kubectl output for {args[0]}: {e}") from e

    @staticmethod
    def _map_error(stderr: str, kind: str, namespace: str, name: str) -> StoreError:
        if "NotFound" in stderr or "not found" in stderr:
            return NotFoundError(kind, namespace, name)
        if "AlreadyExists" in stderr or "already exists" in stderr:
            return AlreadyExistsError(stderr)
        if "the object has been modified" in stderr or "Conflict" in stderr:
            return ConflictError(stderr)
        if "is invalid" in stderr or "(Invalid)" in stderr:
            return InvalidError(stderr)
        return StoreError(stderr or "kubectl failed")
