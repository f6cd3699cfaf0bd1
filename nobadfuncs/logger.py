"""Structured JSON logging for nobadfuncs.

All output goes to stderr (stdout carries diagnostic lines).
Message text and file contents never reach the log, only their sizes.

Configuration via environment variables:
  NOBADFUNCS_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: WARNING)
  NOBADFUNCS_LOG_FILE: optional path to also write logs to a file
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time

ROOT_LOGGER = "nobadfuncs"
LEVEL_ENV = "NOBADFUNCS_LOG_LEVEL"
FILE_ENV = "NOBADFUNCS_LOG_FILE"

# Keys whose values are user content
_REDACT_CONTENT_KEYS = frozenset({"config", "config_json", "message", "source"})


def redact_value(key: str, value: object) -> object:
    """Replace user content with a size indicator like "<512 chars>"."""
    if key not in _REDACT_CONTENT_KEYS:
        return value
    if isinstance(value, str):
        return f"<{len(value)} chars>"
    if isinstance(value, dict):
        return f"<dict with {len(value)} keys>"
    if isinstance(value, (list, tuple)):
        return f"<list with {len(value)} items>"
    return "<redacted>"


def redact_data(data: dict | None) -> dict:
    if not data:
        return {}
    return {key: redact_value(key, value) for key, value in data.items()}


class _JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data is not None:
            entry["data"] = data
        if record.exc_info:
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


_CONFIGURED = False


def configure_logging() -> None:
    """Configure the nobadfuncs root logger (idempotent)."""
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        return
    _CONFIGURED = True

    root = logging.getLogger(ROOT_LOGGER)

    level_name = os.environ.get(LEVEL_ENV, "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    if not isinstance(level, int):
        level = logging.WARNING
    root.setLevel(level)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_JSONFormatter())
    root.addHandler(stderr_handler)

    log_file = os.environ.get(FILE_ENV)
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(_JSONFormatter())
        root.addHandler(file_handler)

    root.propagate = False


def log_event(logger: logging.Logger, level: int, event: str, data: dict | None = None) -> None:
    """Emit a structured log entry with redacted data."""
    logger.log(level, event, extra={"data": redact_data(data)})


class scan_timer:
    """Context manager that measures elapsed time in milliseconds.

    Usage:
        with scan_timer() as t:
            run_scan()
        elapsed = t.ms
    """

    __slots__ = ("_start", "ms")

    def __enter__(self) -> scan_timer:
        self._start = time.monotonic()
        self.ms = 0.0
        return self

    def __exit__(self, *_: object) -> None:
        self.ms = (time.monotonic() - self._start) * 1000
