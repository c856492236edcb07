"""
Logging setup for the tryout engine.

Production emits one JSON object per line. Development uses a plain format
that still shows the request ID, so a single start/answer/submit flow can be
followed through the console.
"""
import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from tryout.core.config import settings

# Set by RequestLoggingMiddleware for the duration of a request.
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Structured fields copied from ``extra=`` onto JSON log entries when present.
_EXTRA_FIELDS = (
    # request
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_host",
    "user_identifier",
    "error_id",
    # session engine
    "session_id",
    "package_id",
    "question_id",
    "trigger",
    "remaining_seconds",
)


class RequestIdFilter(logging.Filter):
    """Expose the current request ID as ``%(request_id)s`` for plain formats."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_context.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_context.get()
        if request_id:
            log_entry["request_id"] = request_id

        log_entry.update(
            {field: getattr(record, field) for field in _EXTRA_FIELDS if hasattr(record, field)}
        )

        if record.levelno >= logging.ERROR:
            log_entry["source"] = f"{record.pathname}:{record.lineno}"

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging() -> None:
    """
    Configure the root, ``tryout`` and third-party loggers.

    The countdown ticker logs once per tick at DEBUG; it is held at INFO unless
    ``DEBUG`` is enabled so streaming sessions do not flood the console.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    handler_formatter = "json" if settings.ENV == "production" else "plain"

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIdFilter},
        },
        "formatters": {
            "plain": {
                "format": "%(asctime)s [%(request_id)s] %(levelname)s %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": JSONFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": handler_formatter,
                "filters": ["request_id"],
                "stream": sys.stdout,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
        "loggers": {
            "tryout": {"level": log_level},
            "tryout.core.engine.ticker": {
                "level": logging.DEBUG if settings.DEBUG else max(log_level, logging.INFO),
            },
            "uvicorn.access": {
                "level": logging.WARNING if settings.DEBUG else logging.INFO,
                "handlers": ["console"],
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": logging.WARNING,
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(logging_config)
