"""
dsconfig Logging — Console logging setup with secret redaction, plus a
JSON-lines event log for validation and diagnostic runs.

Implements:
- SecretRedactionFilter: masks passwords in every log record
- JsonFormatter: one JSON object per console line (DSCONFIG_LOG_FORMAT=json)
- FileLogger: per-category event files {log_dir}/{category}/{YYYY-MM-DD}.jsonl
- Entry builders for validation and diagnostic events
"""

from __future__ import annotations

import json
import logging
import re
import sys
import threading
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("dsconfig.engine.logging")

CATEGORIES = ("validation", "diagnostics")

_REDACTIONS = (
    (re.compile(r"(?i)(password\s*[=:]\s*)('[^']*'|\"[^\"]*\"|[^\s&;,]+)"), r"\1***"),
    (re.compile(r"(//[^/:@\s]+:)[^@/\s]+(@)"), r"\1***\2"),
    (re.compile(r"ENC\([^)]*\)"), "ENC(***)"),
)


def redact(text: str) -> str:
    """Mask ``password=...``, ``password: ...``, URL userinfo and ENC(...) tokens."""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Rewrites each record's message with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    """Formats a record as a compact JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            data["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(data, default=str, separators=(",", ":"))


def configure_logging(level: str = "INFO", fmt: str = "text", stream=None) -> logging.Logger:
    """
    Install a single console handler on the ``dsconfig`` logger.

    Calling it again replaces the handler it installed before.
    """
    root = logging.getLogger("dsconfig")
    for handler in list(root.handlers):
        if getattr(handler, "_dsconfig_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler._dsconfig_handler = True  # type: ignore[attr-defined]
    handler.addFilter(SecretRedactionFilter())
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))

    root.addHandler(handler)
    root.setLevel(level.upper())
    root.propagate = False
    return root


# ---------------------------------------------------------------------------
# Event log
# ---------------------------------------------------------------------------

class LogEntry:
    """A structured event destined for a category file."""

    __slots__ = ("category", "data")

    def __init__(self, category: str, data: Dict[str, Any]):
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return redact(json.dumps(self.data, default=str, separators=(",", ":")))


class FileLogger:
    """
    Appends structured JSON entries to per-category files.
    Files rotate daily: {log_dir}/{category}/{YYYY-MM-DD}.jsonl

    Thread-safe: one lock per file path.
    """

    def __init__(self, log_dir: str = ".dsconfig/logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)

    def write(self, entry: LogEntry) -> Path:
        """Write a single entry and return the file it went to."""
        if entry.category not in CATEGORIES:
            raise ValueError(f"Unknown log category '{entry.category}'")
        file_path = self._resolve_path(entry.category)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with self._file_locks[str(file_path)]:
            with open(file_path, "a", encoding="utf-8") as f:
                f.write(entry.to_json())
                f.write("\n")
        return file_path

    def _resolve_path(self, category: str) -> Path:
        return self._log_dir / category / f"{date.today().isoformat()}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def read(self, category: str, day: Optional[date] = None) -> List[Dict[str, Any]]:
        """Read all entries of one category for *day* (default today)."""
        day = day or date.today()
        file_path = self._log_dir / category / f"{day.isoformat()}.jsonl"
        if not file_path.exists():
            return []
        entries: List[Dict[str, Any]] = []
        with open(file_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line in %s", file_path)
        return entries


def _base_entry(event: str, level: str, source: Optional[str], **extra: Any) -> Dict[str, Any]:
    """Build a base entry with common fields."""
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        "source": source,
    }
    entry.update(extra)
    return entry


def log_validation_event(
    source: Optional[str],
    success: bool,
    profiles: Optional[List[str]] = None,
    record: Optional[Dict[str, Any]] = None,
    errors: Optional[List[Dict[str, Any]]] = None,
) -> LogEntry:
    """Build a validation log entry. *record* must already be masked."""
    data = _base_entry(
        event="config_validated",
        level="INFO" if success else "ERROR",
        source=source,
        success=success,
        profiles=profiles or [],
    )
    if record is not None:
        data["record"] = record
    if errors:
        data["errors"] = errors
    return LogEntry("validation", data)


def log_diagnostic_event(source: Optional[str], report: Dict[str, Any]) -> LogEntry:
    """Build a diagnostic-run log entry from ``DiagnosticReport.to_dict()``."""
    data = _base_entry(
        event="connection_diagnosed",
        level="INFO" if report.get("status") == "healthy" else "ERROR",
        source=source,
        target=report.get("target"),
        status=report.get("status"),
        checks=report.get("checks", []),
    )
    if report.get("error"):
        data["error"] = report["error"]
    return LogEntry("diagnostics", data)
