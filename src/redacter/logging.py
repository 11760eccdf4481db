"""Structured logging helpers (JSON).

Use `get_logger(__name__)` to emit JSON logs. Structured fields go through
``extra={"extra": {...}}`` and are merged into the top-level payload.
"""

from __future__ import annotations

import logging
import os

import orjson


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra") and isinstance(getattr(record, "extra"), dict):
            payload.update(getattr(record, "extra"))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def get_logger(name: str = "redacter") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(JsonFormatter())
        logger.addHandler(h)
        logger.setLevel(os.environ.get("REDACTER_LOG_LEVEL", "WARNING").upper())
        logger.propagate = False
    return logger
