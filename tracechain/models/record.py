"""Error record data model."""

import copy
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tracechain.models.frame import Clock, TraceFrame, stamp
from tracechain.models.location import LocationLike, as_location

if TYPE_CHECKING:
    from tracechain.config import Settings

# Rendering order of the well-known metadata fields
METADATA_FIELDS = ("project", "computer_name", "username")

# Keys owned by the structured output format
RESERVED_KEYS = ("frames", "extra_data")


def copy_payload(payload: Any) -> Any:
    """
    Deep copy a payload so records never share it with their callers.

    Payloads that cannot be copied (locks, sockets, very deep nesting) are
    kept by reference; serializing them raises SerializationFailed later.
    """
    try:
        return copy.deepcopy(payload)
    except (TypeError, copy.Error, RecursionError):
        return payload


class ErrorRecord(BaseModel):
    """
    An error value with its propagation history.

    Records are immutable. Every builder call (``with_*``, ``extend``) returns
    a new record with its own copies of the payload and metadata, so
    references taken before a call keep observing the old value:

        base = ErrorRecord.new("db timeout", ("db.py", 42))
        tagged = base.with_project("billing")
        assert base.project is None
    """

    model_config = ConfigDict(frozen=True)

    frames: Tuple[TraceFrame, ...] = Field(min_length=1)
    extra_data: Optional[Any] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_timestamps(self) -> "ErrorRecord":
        for earlier, later in zip(self.frames, self.frames[1:]):
            if later.timestamp < earlier.timestamp:
                raise ValueError(
                    f"frame timestamps must not decrease: {later.timestamp} follows {earlier.timestamp}"
                )
        return self

    @classmethod
    def new(cls, message: str, location: LocationLike, *, clock: Optional[Clock] = None) -> "ErrorRecord":
        """
        Create a record holding a single frame.

        Args:
            message: Description of the original failure
            location: Call site as SourceLocation or (file, line)
            clock: Optional time source, defaults to UTC now

        Returns:
            New ErrorRecord without payload or metadata

        Raises:
            InvalidLocation: If the line number is negative
        """
        frame = TraceFrame(message=message, location=as_location(location), timestamp=stamp(clock))
        return cls(frames=(frame,))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ErrorRecord):
            return NotImplemented
        return (
            self.frames == other.frames
            and self.extra_data == other.extra_data
            and self.metadata == other.metadata
        )

    __hash__ = None  # type: ignore[assignment]

    def __len__(self) -> int:
        return len(self.frames)

    def __str__(self) -> str:
        return self.headline

    @property
    def first_frame(self) -> TraceFrame:
        return self.frames[0]

    @property
    def last_frame(self) -> TraceFrame:
        return self.frames[-1]

    @property
    def headline(self) -> str:
        """Message of the most recent frame."""
        return self.frames[-1].message

    @property
    def project(self) -> Optional[str]:
        return self.metadata.get("project")

    @property
    def computer_name(self) -> Optional[str]:
        return self.metadata.get("computer_name")

    @property
    def username(self) -> Optional[str]:
        return self.metadata.get("username")

    def derive(self, **update: Any) -> "ErrorRecord":
        """Copy of this record with update applied. Containers are never shared."""
        update.setdefault("metadata", dict(self.metadata))
        if "extra_data" not in update:
            update["extra_data"] = copy_payload(self.extra_data)
        return self.model_copy(update=update)

    def with_extra_data(self, payload: Any) -> "ErrorRecord":
        """Replace the payload. The previous payload is dropped, not merged."""
        return self.derive(extra_data=copy_payload(payload))

    def with_metadata(self, key: str, value: str) -> "ErrorRecord":
        """
        Set a metadata field, overwriting any previous value.

        Raises:
            ValueError: If key collides with a structured output key
        """
        if key in RESERVED_KEYS:
            raise ValueError(f"'{key}' is reserved and cannot be used as a metadata key")
        return self.derive(metadata={**self.metadata, key: value})

    def with_project(self, name: str) -> "ErrorRecord":
        return self.with_metadata("project", name)

    def with_computer_name(self, name: str) -> "ErrorRecord":
        return self.with_metadata("computer_name", name)

    def with_username(self, name: str) -> "ErrorRecord":
        return self.with_metadata("username", name)

    def with_environment(self, settings: Optional["Settings"] = None) -> "ErrorRecord":
        """
        Fill project, computer_name and username from configuration.

        Only values the settings define are applied; the rest stay absent.
        """
        from tracechain.config import get_settings

        settings = settings or get_settings()
        record = self
        for field in METADATA_FIELDS:
            value = getattr(settings, field)
            if value is not None:
                record = record.with_metadata(field, value)
        return record

    def extend(self, message: str, location: LocationLike, *, clock: Optional[Clock] = None) -> "ErrorRecord":
        from tracechain import engine

        return engine.extend(self, message, location, clock=clock)

    def render_text(self) -> str:
        from tracechain import engine

        return engine.render_text(self)

    def to_structured(self) -> Dict[str, Any]:
        from tracechain import engine

        return engine.to_structured(self)

    def to_json(self, indent: Optional[int] = None) -> str:
        from tracechain import engine

        return engine.to_json(self, indent=indent)

    @classmethod
    def from_structured(cls, data: Dict[str, Any]) -> "ErrorRecord":
        from tracechain import engine

        return engine.from_structured(data)

    @classmethod
    def from_json(cls, text: str) -> "ErrorRecord":
        from tracechain import engine

        return engine.from_json(text)
