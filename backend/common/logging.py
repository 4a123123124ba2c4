"""Structured JSON logging for the API process."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger.json import JsonFormatter


class LeaveJsonFormatter(JsonFormatter):
    """Adds an ISO timestamp and an upper-case level to every record."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname.upper()


def setup_logging(level: str = "info") -> None:
    """Install the JSON handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if not any(isinstance(h.formatter, LeaveJsonFormatter) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(LeaveJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
        root.addHandler(handler)
    root.setLevel(level.upper())

    # SQL echo is handled by the engine; keep library chatter down.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
