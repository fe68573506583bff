"""
Logging setup providing JSON or plain-text structured logs.

Context travels on records as ``extra={"extra_payload": {...}}``.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict


def _extra_payload(record: logging.LogRecord) -> Dict[str, Any]:
    payload = getattr(record, "extra_payload", None)
    return payload if isinstance(payload, dict) else {}


class JsonLogFormatter(logging.Formatter):
    """Logging formatter that outputs JSON objects per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_payload["exc_info"] = self.formatException(record.exc_info)
        log_payload.update(_extra_payload(record))
        return json.dumps(log_payload, ensure_ascii=False, default=str)


class TextLogFormatter(logging.Formatter):
    """Human-oriented formatter: level, message, then key=value context."""

    def __init__(self) -> None:
        super().__init__("%(levelname)-7s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _extra_payload(record)
        if context:
            pairs = " ".join(f"{key}={value}" for key, value in context.items())
            line = f"{line} [{pairs}]"
        return line


def configure_logging(log_level: str, log_format: str = "text") -> None:
    """Configure root logging with the requested formatter."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Avoid duplicate handlers when reconfigured (tests, watch mode).
    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter() if log_format == "json" else TextLogFormatter())

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for noisy_logger in ("urllib3", "apscheduler", "requests"):
        logging.getLogger(noisy_logger).setLevel(os.environ.get("LIB_LOG_LEVEL", "WARNING"))
