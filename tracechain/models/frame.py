"""Trace frame data model."""

from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from tracechain.models.location import SourceLocation

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TraceFrame(BaseModel):
    """One point where an error was observed or propagated."""

    model_config = ConfigDict(frozen=True)

    message: str
    location: SourceLocation
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, timestamp: datetime) -> datetime:
        if timestamp.tzinfo is None:
            return timestamp.replace(tzinfo=timezone.utc)
        return timestamp

    @property
    def file(self) -> str:
        return self.location.file

    @property
    def line(self) -> int:
        return self.location.line

    def render(self) -> str:
        return f"{self.location}: {self.message}"


def stamp(clock: Optional[Clock] = None, not_before: Optional[datetime] = None) -> datetime:
    """
    Read the clock, clamped so frame timestamps never go backwards.

    Args:
        clock: Time source returning an aware datetime (defaults to UTC now)
        not_before: Timestamp of the previous frame, if any

    Returns:
        The current time, or not_before if the clock reports an earlier time
    """
    now = (clock or utcnow)()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if not_before is not None and now < not_before:
        return not_before
    return now
