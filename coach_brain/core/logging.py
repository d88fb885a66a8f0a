"""
Structured logging for the knowledge engine.

Every record carries the user and domain it concerns, so one user's load
or one domain's failures can be filtered out of the aggregated stream:

    logger.warning("...", extra=log_context(user_id, Domain.NUTRITION, outcome="failed"))

JSON output in production (or LOG_FORMAT=json), plain text otherwise.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from coach_brain.core.config import settings

# Hoisted out of extra_fields; always present in JSON records (null when unknown)
CONTEXT_FIELDS = ("user_id", "domain")


def log_context(user_id: Optional[str], domain: Any = None, **fields: Any) -> Dict[str, Any]:
    """Build the `extra` mapping for a log call about one user (and domain)."""
    extra_fields: Dict[str, Any] = {"user_id": user_id, "domain": getattr(domain, "value", domain)}
    extra_fields.update(fields)
    return {"extra_fields": extra_fields}


class JSONFormatter(logging.Formatter):
    """JSON formatter with user/domain context."""

    def format(self, record: logging.LogRecord) -> str:
        extra_fields: Dict[str, Any] = dict(getattr(record, "extra_fields", None) or {})

        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = extra_fields.pop(name, None)
            log_data[name] = getattr(value, "value", value)
        log_data.update({
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        })

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if extra_fields:
            log_data["context"] = extra_fields

        return json.dumps(log_data, default=str)


class ContextTextFormatter(logging.Formatter):
    """Text formatter that appends [user=... domain=...] when known."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra_fields = getattr(record, "extra_fields", None) or {}
        tags = [
            f"{name.split('_')[0]}={getattr(extra_fields[name], 'value', extra_fields[name])}"
            for name in CONTEXT_FIELDS
            if extra_fields.get(name) is not None
        ]
        return f"{line} [{' '.join(tags)}]" if tags else line


def setup_logging():
    """
    Configure application-wide logging.

    Uses JSON format in production, text format in development.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = ContextTextFormatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return root_logger
