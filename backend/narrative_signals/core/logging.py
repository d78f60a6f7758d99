import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict

from .config import get_settings

_LOGGING_CONFIGURED = False

_CONTEXT_FIELDS = (
    "project_id",
    "source_id",
    "execution_id",
    "signal_id",
    "platform",
    "step",
    "duration_ms",
)


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter for structured logs.

    Known context keys passed via ``extra=`` are lifted into the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": getattr(record, "service", "narrative_signals"),
        }

        for field in _CONTEXT_FIELDS:
            if hasattr(record, field):
                log_record[field] = getattr(record, field)

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def configure_logging(level: str | None = None) -> None:
    """
    Configure root logger once with JSON output at LOG_LEVEL (or ``level``).

    Safe to call multiple times; subsequent calls are no-ops.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.setLevel((level or get_settings().LOG_LEVEL).upper())
    root.handlers.clear()
    root.addHandler(handler)

    _LOGGING_CONFIGURED = True
