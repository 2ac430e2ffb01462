"""
Manifest loader — reads multi-document YAML into resource models.

Accepts the same manifests ``kubectl apply -f`` would: one or more
``---``-separated documents, each with ``apiVersion`` and ``kind``.
``kind: List`` documents are flattened.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tofuplane.core.models import resource_from_dict
from tofuplane.core.models.meta import Resource

logger = logging.getLogger(__name__)


class ManifestError(Exception):
    """Raised when a manifest cannot be read or decoded."""


def parse_manifests(text: str, source: str = "<string>") -> list[Resource]:
    """Decode every document in ``text``.

    Raises:
        ManifestError: On invalid YAML, an unknown kind or a schema error.
    """
    try:
        documents = [doc for doc in yaml.safe_load_all(text) if doc]
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid YAML in {source}: {e}") from e

    resources: list[Resource] = []
    for index, doc in enumerate(_flatten(documents)):
        if not isinstance(doc, dict):
            raise ManifestError(f"{source}: document {index + 1} is not a mapping")
        try:
            resources.append(resource_from_dict(doc))
        except (ValueError, ValidationError) as e:
            raise ManifestError(f"{source}: document {index + 1}: {e}") from e

    logger.debug("Parsed %d resources from %s", len(resources), source)
    return resources


def load_manifests(path: Path) -> list[Resource]:
    """Read and decode a manifest file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Cannot read {path}: {e}") from e
    return parse_manifests(text, source=str(path))


def _flatten(documents: list[Any]) -> list[Any]:
    flat: list[Any] = []
    for doc in documents:
        if isinstance(doc, dict) and doc.get("kind") == "List":
            flat.extend(doc.get("items") or [])
        else:
            flat.append(doc)
    return flat
