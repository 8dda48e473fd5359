"""Data models for tracechain error records."""

from .frame import TraceFrame
from .location import SourceLocation
from .record import METADATA_FIELDS, ErrorRecord

__all__ = [
    # Location models
    "SourceLocation",
    # Frame models
    "TraceFrame",
    # Record models
    "ErrorRecord",
    "METADATA_FIELDS",
]
