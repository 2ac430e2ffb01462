"""
Settings check use case — validate settings files and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from tofuplane.core.config.settings import (
    DEFAULT_IMAGE,
    SettingsError,
    TofuplaneSettings,
    hydrate,
    load_tree,
)


@dataclass
class SettingsCheckResult:
    """Result of settings validation."""

    valid: bool = False
    settings: TofuplaneSettings | None = None
    paths: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "paths": [str(p) for p in self.paths],
            "errors": self.errors,
            "warnings": self.warnings,
            "execution": (
                self.settings.execution.model_dump(by_alias=True) if self.settings else None
            ),
        }


def check_settings(paths: list[Path]) -> SettingsCheckResult:
    """Load and validate settings without installing them anywhere."""
    result = SettingsCheckResult(paths=list(paths))

    try:
        settings = hydrate(load_tree(paths))
    except SettingsError as e:
        result.errors.append(str(e))
        return result

    result.settings = settings
    if not paths:
        result.warnings.append("No settings files given; built-in defaults apply.")
    if settings.execution.default_image == DEFAULT_IMAGE:
        result.warnings.append(
            f"execution.defaultImage is the built-in default ({DEFAULT_IMAGE})."
        )

    result.valid = True
    return result
