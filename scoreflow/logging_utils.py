"""Logging helpers: logger factory plus environment-driven configuration."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d:%(funcName)s %(message)s"

_STANDARD_LOG_RECORD_KEYS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())


class JsonFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")
        payload = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
            "message": record.getMessage(),
        }
        extras = {key: value for key, value in record.__dict__.items() if key not in _STANDARD_LOG_RECORD_KEYS}
        if extras:
            payload.update(extras)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _use_json_logs() -> bool:
    """Return True when environment config requests JSON logs."""
    return os.getenv("LOG_FORMAT", "").lower() == "json"


def build_formatter() -> logging.Formatter:
    """Build the active log formatter based on environment settings."""
    if _use_json_logs():
        return JsonFormatter()
    return logging.Formatter(DEFAULT_LOG_FORMAT)


def configure_logging(level: int | str | None = None) -> None:
    """
    Configure the ``scoreflow`` logger hierarchy.

    The level comes from the argument, then ``LOG_LEVEL``, then WARNING.
    Calling this again replaces the handler instead of stacking another one.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "WARNING")
    if isinstance(level, str):
        level = level.upper()

    logger = logging.getLogger("scoreflow")
    for handler in list(logger.handlers):
        if getattr(handler, "_scoreflow_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter())
    setattr(handler, "_scoreflow_handler", True)
    logger.addHandler(handler)
    logger.setLevel(level)


def get_logger(module_name: str) -> logging.Logger:
    """Return the logger for a scoreflow module."""
    return logging.getLogger(module_name)
