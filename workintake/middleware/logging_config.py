"""
Structured logging configuration.

- Development / testing: one readable line per record, workflow context
  appended as ``key=value`` pairs
- Production: one JSON object per record
- Level: LOG_LEVEL env variable

Engine code attaches workflow context through ``extra=``::

    logger.info("Advanced", extra={"work_item_id": 7, "transition_id": 3})

Everything goes to stderr so CLI commands keep stdout for their JSON output.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# ``extra=`` keys surfaced by both formatters, in display order
CONTEXT_KEYS = (
    "work_item_id",
    "transition_id",
    "scope_id",
    "actor",
    "from_stage",
    "to_stage",
    "job_name",
    "duration_ms",
    "event_type",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic")


def record_context(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in CONTEXT_KEYS
            if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            **record_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Single-line coloured output for local runs."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"
        context = " ".join(f"{k}={v}" for k, v in record_context(record).items())
        line = f"{stamp} {level} {record.name}: {record.getMessage()}"
        if context:
            line += f"  [{context}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_level(default: str) -> tuple[str, int]:
    name = os.getenv("LOG_LEVEL", default).upper()
    return name, getattr(logging, name, logging.INFO)


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Production (neither DEBUG nor TESTING) logs JSON at INFO; everything
    else logs readable lines at DEBUG. Re-running replaces the handler, so
    test sessions that build several apps do not duplicate output.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing
    level_name, level = _resolve_level("INFO" if is_prod else "DEBUG")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter(use_color=not is_testing))
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
