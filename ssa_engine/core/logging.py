"""Structured logging for verification and monitor runs.

Provides:
  - JSON lines for unattended monitor runs (staging/production)
  - Colored single-line output for interactive CLI use
  - Target / source / rule correlation fields lifted from ``extra=``
  - A run filter that stamps the monitor run id onto every record
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

CONTEXT_FIELDS = ("target", "source", "rule_id", "fingerprint", "duration_ms", "scan_id")

_QUIET_LOGGERS = ("httpcore", "httpx", "asyncio")


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; context fields sit at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_record_context(record))

        if record.exc_info and record.exc_info[1]:
            exc_type, exc, _tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """Colored human-readable formatter for the terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    TARGET_WIDTH = 18

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        clock = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        tags = []
        target = getattr(record, "target", None)
        if target:
            tags.append(f"[{str(target)[: self.TARGET_WIDTH]}]")
        source = getattr(record, "source", None)
        if source:
            tags.append(f"<{source}>")
        message = " ".join(tags + [record.getMessage()])

        line = f"{color}{clock} [{record.levelname:>8s}]{self.RESET} {record.name}: {message}"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


class RunContextFilter(logging.Filter):
    """Stamp ``scan_id`` onto records that do not already carry one."""

    def __init__(self, scan_id: str) -> None:
        super().__init__()
        self.scan_id = scan_id

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "scan_id"):
            record.scan_id = self.scan_id  # type: ignore[attr-defined]
        return True


def setup_logging(env: str = "development", log_level: str = "INFO") -> None:
    """Configure the root logger.

    Output goes to stderr so that ``--json`` command output on stdout stays
    parseable.

    Args:
        env: Application environment (development/staging/production)
        log_level: Minimum log level
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if env in ("staging", "production") else DevFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
