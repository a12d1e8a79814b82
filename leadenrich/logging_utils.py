"""Structured JSON logging helpers.

Every record is emitted as one JSON object: ``event`` is the log message and
``data`` carries whatever the caller passed in ``extra``. Sensitive lead fields
are redacted at any nesting depth before serialization.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

_RESERVED_LOG_RECORD_FIELDS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "asctime",
    "message",
    "taskName",
}

REDACTED = "[REDACTED]"
SENSITIVE_FIELDS = frozenset(
    {"ssn", "ssn_last4", "date_of_birth", "encrypted_payload", "client_secret", "access_token", "password"}
)


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: (REDACTED if k in SENSITIVE_FIELDS else redact(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = redact(
            {
                key: value
                for key, value in record.__dict__.items()
                if key not in _RESERVED_LOG_RECORD_FIELDS and not key.startswith("_")
            }
        )
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "module": record.name,
            "event": record.getMessage(),
            "data": data,
        }
        return json.dumps(payload, default=str, separators=(",", ":"))


def configure_logging(level: int | str | None = None) -> None:
    """Install the JSON handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if getattr(root, "_leadenrich_json_logging", False):
        return
    if level is None:
        from leadenrich.config import settings

        level = settings.LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)
    root._leadenrich_json_logging = True  # type: ignore[attr-defined]


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **data) -> None:
    logger.log(level, event, extra=data)
