"""Logging setup for the Tiebreak API.

Production output is one JSON object per line; debug output is a single
human-readable line. Both formatters attach the current request context
(request id, caller, decision id) from ContextVars, so service code only
calls ``get_logger(__name__)`` and passes ad-hoc fields via ``extra=``.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

CONTEXT_FIELDS = ("request_id", "user_id", "decision_id")

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None) for name in CONTEXT_FIELDS
}

# Libraries that log every HTTP round trip at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "uvicorn.access", "sqlalchemy.engine")

# Every LogRecord has these; anything else arrived through extra={...}
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def set_request_context(**values: str | None) -> None:
    """Bind context fields for the current task; None leaves a field as is."""
    for name, value in values.items():
        if name not in _context:
            raise ValueError(f"Unknown log context field: {name}")
        if value is not None:
            _context[name].set(value)


def clear_request_context() -> None:
    for var in _context.values():
        var.set(None)


def get_request_context() -> dict[str, str]:
    """The bound context fields, unset ones omitted."""
    return {name: var.get() for name, var in _context.items() if var.get()}


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    {"timestamp": ..., "level": "INFO", "logger": "services.oracle",
     "message": ..., "request_id": ..., "user_id": ..., "extra": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **get_request_context(),
        }

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception_type"] = record.exc_info[0].__name__
            entry["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """Single-line format for local development.

    14:30:05.123 | INFO     | services.oracle | [3f2a9c1e user-1] message
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        context = get_request_context()
        tags = " ".join(
            value[:8] if name == "request_id" else value
            for name, value in context.items()
            if name != "decision_id"
        )
        prefix = f"[{tags}] " if tags else ""

        line = f"{timestamp} | {record.levelname:<8} | {record.name} | {prefix}{record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(level: str = "INFO", json_format: bool | None = None) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Root log level name
        json_format: JSON lines when True; when None, JSON unless the
            DEBUG environment variable is truthy
    """
    if json_format is None:
        json_format = os.getenv("DEBUG", "false").lower() not in ("true", "1", "yes")

    root = logging.getLogger()
    root.setLevel(level.upper())
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else HumanReadableFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures defaults if the app has not done so yet."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)
