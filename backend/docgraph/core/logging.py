"""Logging utilities for docgraph."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("DOCG_LOG_LEVEL", "INFO")
_CTX_PREFIX = "ctx_"


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `ctx_` extras become top-level fields."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - thin wrapper
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info
        for key, value in record.__dict__.items():
            if key.startswith(_CTX_PREFIX):
                payload[key[len(_CTX_PREFIX) :]] = value
        return orjson.dumps(payload, default=str).decode("utf-8")


def ctx(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping for structured log fields."""
    return {f"{_CTX_PREFIX}{key}": value for key, value in fields.items()}


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Configure root logger with optional JSON formatting."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]


def get_logger(name: str = "docgraph") -> logging.Logger:
    """Return configured logger, configuring root on first call."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "ctx", "get_logger"]
