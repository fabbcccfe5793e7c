"""Structured JSON logging for outboxd."""

import json
import logging
from datetime import UTC, datetime
from typing import Any

# Derived at import time so attributes added by newer Pythons (taskName) are skipped too
_STANDARD_LOGRECORD_KEYS: frozenset[str] = frozenset(
    logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
    ).__dict__.keys()
)

_OUTBOX_FIELDS = ("event_id", "event_type", "handler", "retry_count", "status", "worker_id")


class JSONFormatter(logging.Formatter):
    """JSON formatter with UTC ISO8601 timestamps."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for field in _OUTBOX_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        for key, value in vars(record).items():
            if key not in _STANDARD_LOGRECORD_KEYS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data["exc_info"] = self.formatException(record.exc_info)

        try:
            return json.dumps(log_data, default=str)
        except Exception:
            return str(log_data)


def _setup_handler(logger: logging.Logger, level: int, json_logs: bool) -> None:
    if not logger.handlers:
        handler = logging.StreamHandler()
        if json_logs:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(
                logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
            )
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


def configure_dispatcher_logger(
    level: int | str = logging.INFO, json_logs: bool = True
) -> logging.Logger:
    """Configure and return the dispatcher logger.

    Args:
        level: The logging level to set. Defaults to logging.INFO.
        json_logs: Emit one JSON object per line instead of plain text.
    """
    logger = logging.getLogger("outboxd.dispatcher")
    _setup_handler(logger, _coerce_level(level), json_logs)
    return logger


def get_logger(
    name: str = "outboxd", level: int | str = logging.INFO, json_logs: bool = True
) -> logging.Logger:
    """Get a logger configured like the dispatcher logger."""
    logger = logging.getLogger(name)
    _setup_handler(logger, _coerce_level(level), json_logs)
    return logger


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved
