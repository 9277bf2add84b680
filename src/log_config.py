"""
Structured logging for the gateway.

Every record is a single JSON line on stdout:

    {"ts": "...", "level": "info", "logger": "supervisor", "event": "gateway.ready", ...}

Callers log dotted event names with keyword fields instead of formatted
messages. Passing ``exc=<exception>`` adds ``error_type`` and ``error`` fields.
"""

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Any

_CONFIGURED = False


class JsonFormatter(logging.Formatter):
    """Render a record and its structured fields as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if fields:
            payload.update(fields)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    """Install the JSON handler on the root logger. Safe to call repeatedly."""
    global _CONFIGURED

    resolved = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(resolved)

    if _CONFIGURED:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    _CONFIGURED = True


class StructuredLogger:
    """Thin wrapper over a stdlib logger that carries bound context fields."""

    def __init__(self, logger: logging.Logger, context: dict[str, Any]):
        self._logger = logger
        self.context = context

    def bind(self, **context: Any) -> "StructuredLogger":
        return StructuredLogger(self._logger, {**self.context, **context})

    def _log(self, level: int, event: str, fields: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return

        exc = fields.pop("exc", None)
        merged = {**self.context, **fields}
        if exc is not None:
            merged["error_type"] = type(exc).__name__
            merged["error"] = str(exc)

        self._logger.log(level, event, extra={"fields": merged})

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, fields)

    def warn(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, fields)

    warning = warn

    def error(self, event: str, **fields: Any) -> None:
        self._log(logging.ERROR, event, fields)


def get_logger(name: str, **context: Any) -> StructuredLogger:
    """Return a structured logger named ``name`` with ``context`` bound to every event."""
    return StructuredLogger(logging.getLogger(name), context)
