"""Source location data model."""

from typing import Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

from tracechain.errors import InvalidLocation


class SourceLocation(BaseModel):
    """File path and line number of a call site."""

    model_config = ConfigDict(frozen=True)

    file: str
    line: int

    # InvalidLocation is not a ValueError, so pydantic lets it propagate as is
    @field_validator("line")
    @classmethod
    def _check_line(cls, line: int, info: ValidationInfo) -> int:
        if line < 0:
            raise InvalidLocation(info.data.get("file", "<unknown>"), line)
        return line

    def __str__(self) -> str:
        return f"{self.file}:{self.line}"


LocationLike = Union[SourceLocation, Tuple[str, int]]


def as_location(location: LocationLike) -> SourceLocation:
    """
    Normalize a location argument.

    Args:
        location: SourceLocation or a (file, line) pair

    Returns:
        Validated SourceLocation

    Raises:
        InvalidLocation: If the line number is negative
    """
    if isinstance(location, SourceLocation):
        return location
    file, line = location
    return SourceLocation(file=file, line=line)
