"""Exceptions raised and carried by tracechain."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tracechain.models.record import ErrorRecord


class TracechainError(Exception):
    """Base class for errors raised by the library itself."""
    pass


class InvalidLocation(TracechainError):
    """Raised when a source location has a negative line number."""

    def __init__(self, file: str, line: int) -> None:
        super().__init__(f"Invalid source location {file}:{line}: line must be non-negative")
        self.file = file
        self.line = line


class SerializationFailed(TracechainError):
    """Raised when a record cannot be converted to or from its structured form."""
    pass


class TracedError(Exception):
    """Raisable carrier for an ErrorRecord."""

    def __init__(self, record: "ErrorRecord") -> None:
        super().__init__(record.headline)
        self.record = record

    def __str__(self) -> str:
        return self.record.headline
