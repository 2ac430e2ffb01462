"""
Logging configuration — central setup for the CLI and the manager.

Called once at startup by main.py. Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Levels are resolved in precedence order:
    CLI flag  >  TOFUPLANE_LOG_LEVEL env var  >  WARNING (default)

Optional file output via TOFUPLANE_LOG_FILE / TOFUPLANE_LOG_FILE_LEVEL.
TOFUPLANE_LOG_FORMAT=json switches the console to one JSON object per
line, which is what log collectors in a cluster expect.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

# WARNING level — minimal, no noise
_FMT_MINIMAL = "%(levelname)s %(message)s"

# INFO level — timestamped with module context
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# DEBUG level and files — full diagnostic with file:line and thread
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    log_format: str | None = None,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file.
        log_file_level: Optional separate level for the log file.
            Defaults to the same as ``level``.
        log_format: "json" for structured console output, otherwise text.
    """
    numeric_level = _parse_level(level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    if (log_format or "").lower() == "json":
        console.setFormatter(JsonFormatter())
    elif numeric_level <= logging.DEBUG:
        console.setFormatter(logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_DEBUG))
    elif numeric_level <= logging.INFO:
        console.setFormatter(logging.Formatter(_FMT_VERBOSE, datefmt=_DATEFMT_VERBOSE))
    else:
        console.setFormatter(logging.Formatter(_FMT_MINIMAL))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    # Effective root level = minimum of console and file levels
    effective_level = numeric_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_DEBUG))
        root.addHandler(fh)

    root.setLevel(effective_level)

    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
