"""
Structured logging utilities with JSON formatting and context injection.

This module provides:
- JSON formatted log output for machine-readable logs
- Embedding of ErrorRecord tracebacks passed via ``extra={"error_record": ...}``
- Context injection via LoggerAdapter
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from logging import LogRecord
from typing import Any, Dict, MutableMapping, Optional

from tracechain.errors import SerializationFailed

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "taskName", "exc_info", "exc_text", "stack_info",
    "error_record",
])


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON with standard fields:
    - timestamp: ISO 8601 formatted timestamp
    - level: Log level (INFO, WARNING, ERROR, etc.)
    - logger: Logger name
    - message: Log message
    - context: Additional fields passed through ``extra``
    - traceback: Structured ErrorRecord, when one is attached
    - error: Exception details (when exc_info is set)
    - source: File, line and function that emitted the log
    """

    def format(self, record: LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra_fields = {
            key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_data["context"] = extra_fields

        error_record = getattr(record, "error_record", None)
        if error_record is not None:
            try:
                log_data["traceback"] = error_record.to_structured()
            except SerializationFailed:
                log_data["traceback"] = {"text": error_record.render_text()}

        if record.exc_info:
            log_data["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stack_trace": "".join(traceback.format_exception(*record.exc_info)),
            }

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_data, default=str)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that injects context fields into all log records.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextLoggerAdapter":
        """
        Create a new logger adapter with additional context.

        Args:
            **context: Additional context fields

        Returns:
            New logger adapter with merged context
        """
        new_extra = dict(self.extra)
        new_extra.update(context)
        return ContextLoggerAdapter(self.logger, new_extra)


def setup_logging(log_level: Optional[str] = None) -> None:
    """
    Configure JSON logging on the root logger.

    Args:
        log_level: Log level name; defaults to Settings.log_level
    """
    if log_level is None:
        from tracechain.config import get_settings

        log_level = get_settings().log_level

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter())
    console_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)


def get_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    """
    Get a context-aware logger for a module.

    Example:
        logger = get_logger(__name__, project="billing")
        logger.info("Report written")  # context includes project
    """
    return ContextLoggerAdapter(logging.getLogger(name), context)


def log_error_record(logger: logging.LoggerAdapter, record: Any, message: Optional[str] = None) -> None:
    """
    Log an ErrorRecord at ERROR level with its structured traceback attached.

    Args:
        logger: Logger to use
        record: ErrorRecord to log
        message: Log message, defaults to the record's headline
    """
    logger.error(
        message if message is not None else record.headline,
        extra={"error_record": record, "frames": len(record)},
    )
