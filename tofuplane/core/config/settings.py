"""
Settings — runtime knobs for the controllers, loaded from YAML.

One or more YAML files are deep-merged in order (later files win) and
validated with Pydantic. The result is cached as an immutable snapshot;
readers call ``snapshot()`` or ``execution()`` and get either the
current values or ``SettingsNotLoadedError``.

Lifecycle:
    init(paths, watch)  → first load; a failure leaves settings unloaded
    reload()            → re-read; a failure keeps the previous snapshot
    watch               → daemon thread polling file mtimes

A Settings object is passed to the controllers that need it; there is
no module-level instance.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tofuplane.core.observability.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

DEFAULT_PATHS = ["config.yaml"]
DEFAULT_IMAGE = "tofuutils/tenv:latest"

POLL_INTERVAL_S = 2.0


# ── Errors ───────────────────────────────────────────────────────


class SettingsError(Exception):
    """Base class for settings failures."""


class SettingsNotLoadedError(SettingsError):
    """Raised when settings are read before the first successful load."""

    def __init__(self) -> None:
        super().__init__("settings not loaded")


class SettingsValidationError(SettingsError):
    """A settings field failed validation."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"settings validation failed for {field}: {reason}")


# ── Schema ───────────────────────────────────────────────────────


class ExecutionSettings(BaseModel):
    """Defaults applied when building execution Jobs."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    default_image: str = Field(DEFAULT_IMAGE, alias="defaultImage", min_length=1)


class TofuplaneSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested mappings merge too."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_tree(paths: list[Path]) -> dict[str, Any]:
    """Read and merge the YAML files at ``paths``.

    Raises:
        SettingsError: If a file is missing, unreadable or not a mapping.
    """
    tree: dict[str, Any] = {}
    for path in paths:
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise SettingsError(f"Cannot read {path}: {e}") from e

        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise SettingsError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            continue
        if not isinstance(data, dict):
            raise SettingsError(
                f"Expected a YAML mapping in {path}, got {type(data).__name__}"
            )
        tree = deep_merge(tree, data)
    return tree


def hydrate(tree: dict[str, Any]) -> TofuplaneSettings:
    """Validate a merged tree into settings.

    Raises:
        SettingsValidationError: Naming the first failing field.
    """
    try:
        return TofuplaneSettings.model_validate(tree)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "<root>"
        raise SettingsValidationError(field, first["msg"]) from e


# ── Settings holder ──────────────────────────────────────────────


class Settings:
    """Thread-safe holder of the current settings snapshot."""

    def __init__(
        self,
        metrics: MetricsRegistry | None = None,
        poll_interval: float = POLL_INTERVAL_S,
    ):
        self._lock = threading.RLock()
        self._metrics = metrics or MetricsRegistry()
        self._poll_interval = poll_interval
        self._paths: list[Path] = []
        self._current: TofuplaneSettings | None = None
        self._stop = threading.Event()
        self._watcher: threading.Thread | None = None

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._current is not None

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    def init(self, paths: list[str | Path] | None = None, watch: bool = False) -> None:
        """Load settings for the first time.

        A no-op once loaded. On any failure (including watch setup)
        settings remain unloaded and ``init`` may be called again.

        Args:
            paths: YAML files to merge, in order. None means
                ``config.yaml``; an empty list means built-in defaults.
            watch: Start a daemon thread that reloads on file changes.
        """
        with self._lock:
            if self._current is not None:
                logger.info("Settings already initialized")
                return

            resolved = [Path(p) for p in (DEFAULT_PATHS if paths is None else paths)]
            try:
                current = hydrate(load_tree(resolved))
            except SettingsError:
                self._record_failure("init")
                raise

            if watch:
                try:
                    self._start_watcher(resolved)
                except (OSError, RuntimeError) as e:
                    self._record_failure("watch")
                    raise SettingsError(f"Cannot watch settings files: {e}") from e

            self._paths = resolved
            self._current = current

        logger.info(
            "Settings loaded from %s (defaultImage=%s)",
            [str(p) for p in resolved] or "<defaults>",
            current.execution.default_image,
        )

    def reload(self) -> None:
        """Re-read every configured file.

        Raises:
            SettingsError: The previous snapshot is kept.
        """
        with self._lock:
            paths = list(self._paths)
        try:
            current = hydrate(load_tree(paths))
        except SettingsError:
            self._record_failure("reload")
            raise
        with self._lock:
            self._current = current
        logger.info("Settings reloaded")

    def snapshot(self) -> TofuplaneSettings:
        with self._lock:
            if self._current is None:
                raise SettingsNotLoadedError()
            return self._current

    def execution(self) -> ExecutionSettings:
        """Execution settings with defaults applied."""
        return self.snapshot().execution

    def stop(self) -> None:
        """Stop the watcher thread, if any."""
        self._stop.set()
        if self._watcher is not None:
            self._watcher.join(timeout=self._poll_interval * 2)
            self._watcher = None

    # ── Watch ────────────────────────────────────────────────────

    def _record_failure(self, stage: str) -> None:
        self._metrics.counter("settings_reload_failures_total", stage=stage).inc()

    def _start_watcher(self, paths: list[Path]) -> None:
        mtimes = {p: _mtime(p) for p in paths}
        self._stop.clear()
        t = threading.Thread(
            target=self._poll_loop,
            args=(mtimes,),
            daemon=True,
            name="settings-watcher",
        )
        t.start()
        self._watcher = t
        logger.info("Settings watch enabled (poll every %.1fs)", self._poll_interval)

    def _poll_loop(self, mtimes: dict[Path, float]) -> None:
        while not self._stop.wait(self._poll_interval):
            changed = [p for p in mtimes if _mtime(p) != mtimes[p]]
            if not changed:
                continue
            for p in changed:
                mtimes[p] = _mtime(p)
            logger.info("Settings changed (%s); reloading", ", ".join(map(str, changed)))
            try:
                self.reload()
            except SettingsError as e:
                logger.error("Settings reload failed: %s", e)


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0
