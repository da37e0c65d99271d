"""
Structured logging configuration.

Two output formats share one set of context fields:

- readable: coloured single line per record, for development and tests
- json:     one JSON object per record, for log aggregation in production

Services pass occurrence / event / recipient context through ``extra``:

    logger.info("Occurrence referred", extra={"occurrence_id": occ.id, "user_id": actor_id})

Environment:
    LOG_LEVEL    DEBUG | INFO | WARNING ... (default DEBUG in dev, INFO in prod)
    LOG_FORMAT   json | readable (default json in prod, readable otherwise)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Keys lifted from ``extra`` into every structured record
CONTEXT_FIELDS = (
    "occurrence_id",
    "occurrence_no",
    "event_type",
    "event_id",
    "user_id",
    "department_id",
    "channel",
    "status",
    "duration_ms",
)

NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "alembic")


def _context(record):
    return {k: getattr(record, k) for k in CONTEXT_FIELDS if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured one-line formatter; the occurrence tag leads the message."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        tags = []
        occ = getattr(record, "occurrence_no", None) or getattr(record, "occurrence_id", None)
        if occ:
            tags.append(occ)
        event_type = getattr(record, "event_type", None)
        if event_type:
            tags.append(event_type)
        channel = getattr(record, "channel", None)
        if channel:
            tags.append(channel)
        tag_str = f" [{' '.join(tags)}]" if tags else ""

        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}{tag_str} {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Runs first in create_app so extension setup is logged with the same format.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = os.getenv("LOG_FORMAT", "json" if is_prod else "readable").lower()
    formatter = JSONFormatter() if fmt == "json" else ReadableFormatter()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app may run more than once per process (tests, CLI)
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
