"""
Utility modules for tracechain.
"""

from tracechain.utils.logging import (
    ContextLoggerAdapter,
    JSONFormatter,
    get_logger,
    log_error_record,
    setup_logging,
)

__all__ = [
    "ContextLoggerAdapter",
    "JSONFormatter",
    "get_logger",
    "log_error_record",
    "setup_logging",
]
