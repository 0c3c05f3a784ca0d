"""Logging configuration for fleetguard.

Records are written as one JSON object per line to stderr, and optionally to a
size-bounded rotating file when ``serve`` runs for long periods.

Context passed through ``extra=`` (alert, rule, session and mission ids) is
copied into the JSON object::

    logger.info("Alert fired", extra={"alert_id": alert.id, "rule_id": rule.id})

    {"ts": "2026-10-16T09:12:03.120Z", "level": "INFO", "logger": "fleetguard.alerts",
     "message": "Alert fired", "alert_id": "alert-1a2b3c4d", "rule_id": "rule-9f8e7d6c"}
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

# Attributes lifted from LogRecord.__dict__ into the JSON line when present
_CONTEXT_FIELDS = ("alert_id", "rule_id", "session_id", "mission_id", "cluster", "phase")

# Libraries whose INFO output drowns the evaluation loop
_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "kubernetes")


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + f".{record.msecs:03.0f}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            value = record.__dict__.get(field)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """Configure the ``fleetguard`` logger hierarchy.

    Args:
        level: Log level name. Unknown names fall back to INFO.
        log_file: Optional rotating log file, written in addition to stderr.
        max_bytes: Rotation size per file.
        backup_count: Rotated files to keep.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = _JsonFormatter()

    root = logging.getLogger("fleetguard")
    root.setLevel(numeric_level)
    root.handlers.clear()
    root.propagate = False

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        root.debug("Logging to %s (max_bytes=%d, backups=%d)", path, max_bytes, backup_count)

    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
