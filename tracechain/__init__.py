"""Structured error records with accumulated tracebacks."""

from tracechain.engine import extend, from_json, from_structured, render_text, to_json, to_structured
from tracechain.errors import InvalidLocation, SerializationFailed, TracechainError, TracedError
from tracechain.handlers import report, reset_handler, set_handler, write_json_file
from tracechain.models import ErrorRecord, SourceLocation, TraceFrame
from tracechain.propagation import caller_location, capture, traced

__all__ = [
    # Models
    "ErrorRecord",
    "SourceLocation",
    "TraceFrame",
    # Engine
    "extend",
    "render_text",
    "to_structured",
    "to_json",
    "from_structured",
    "from_json",
    # Propagation
    "caller_location",
    "capture",
    "traced",
    # Reporting
    "report",
    "set_handler",
    "reset_handler",
    "write_json_file",
    # Errors
    "TracechainError",
    "InvalidLocation",
    "SerializationFailed",
    "TracedError",
]
