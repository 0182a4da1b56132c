"""One-JSON-object-per-line logging for the channel.

All wacloud loggers hang off the ``wacloud`` package logger, which owns a
single stdout handler. Structured context goes in
``extra={"extra_fields": safe_log_context(...)}``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import current_correlation_id

CHANNEL_NAME = "whatsapp-cloud"
ROOT_LOGGER = "wacloud"


class JsonFormatter(logging.Formatter):
    """Renders a record as JSON tagged with the channel and correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "channel": CHANNEL_NAME,
            "message": record.getMessage(),
        }

        cid = current_correlation_id()
        if cid:
            entry["correlationId"] = cid

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(getattr(record, "extra_fields", None) or {})
        return json.dumps(entry, default=str)


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _json_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [
        h
        for h in logger.handlers
        if isinstance(h, logging.StreamHandler) and isinstance(h.formatter, JsonFormatter)
    ]


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not _json_handlers(root):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
        root.setLevel(_level_from_env())
        root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Logger for a wacloud module; output goes through the package handler."""
    _configure_root()
    return logging.getLogger(name)
