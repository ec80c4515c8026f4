"""Structured JSON logging (one object per line on stdout).

`severity` is the key Cloud Logging reads for the level. `correlationId`
ties a webhook request to every job it produced. Structured fields go in
`extra={"extra_fields": safe_log_context(...)}` and can never overwrite the
core keys.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

_CORE_KEYS = ("timestamp", "severity", "logger", "message", "service")


def _service_name() -> str | None:
    return os.environ.get("K_SERVICE") or os.environ.get("APP_ROLE") or None


class JsonFormatter(logging.Formatter):
    """JSON formatter with service name, correlation ID and extra fields."""

    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service:
            entry["service"] = self.service

        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlationId"] = correlation_id

        if record.exc_info and record.exc_info[0] is not None:
            entry["error_type"] = record.exc_info[0].__name__
            entry["exception"] = self.formatException(record.exc_info)

        extra = getattr(record, "extra_fields", None)
        if isinstance(extra, dict):
            for key, value in extra.items():
                if key not in _CORE_KEYS:
                    entry[key] = value

        return json.dumps(entry, default=str)


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Get a logger configured for JSON output (LOG_LEVEL, default INFO)."""
    logger = logging.getLogger(name)

    # Only configure once per logger name
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter(service=_service_name()))
        logger.addHandler(handler)
        logger.setLevel(_level_from_env())
        logger.propagate = False

    return logger
