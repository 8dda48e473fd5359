"""
Accumulation and rendering engine for error records.

This module provides:
- extend() to append a trace frame as an error crosses a boundary
- render_text() for the human-readable form
- to_structured()/from_structured() and to_json()/from_json() for the
  JSON-compatible interchange form

Structured layout (key order is stable):

    {
        "frames": [{"message", "file", "line", "timestamp"}, ...],
        "project": ..., "computer_name": ..., "username": ..., <other keys>,
        "extra_data": <payload or null>
    }

Metadata keys that were never set are omitted. ``extra_data`` is always
present and is null when the record carries no payload.

The structured form is lossy for payloads in one way: tuples are emitted as
JSON arrays, so a payload holding tuples comes back from from_structured()
with lists in their place. Payloads made of dicts, lists, strings, numbers,
booleans and None round-trip to an equal record.
"""

import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import ValidationError

from tracechain.errors import InvalidLocation, SerializationFailed
from tracechain.models.frame import Clock, TraceFrame, stamp
from tracechain.models.location import LocationLike, SourceLocation, as_location
from tracechain.models.record import METADATA_FIELDS, RESERVED_KEYS, ErrorRecord, copy_payload


def extend(record: ErrorRecord, message: str, location: LocationLike, *, clock: Optional[Clock] = None) -> ErrorRecord:
    """
    Append a frame to a record.

    Args:
        record: Record being propagated
        message: Context added at this boundary
        location: Call site of the propagation
        clock: Optional time source, defaults to UTC now

    Returns:
        New record with one more frame; payload and metadata carried over
        as copies

    Raises:
        InvalidLocation: If the line number is negative
    """
    frame = TraceFrame(
        message=message,
        location=as_location(location),
        timestamp=stamp(clock, not_before=record.last_frame.timestamp),
    )
    return record.derive(frames=record.frames + (frame,))


def ordered_metadata(record: ErrorRecord) -> Iterator[Tuple[str, str]]:
    """Yield metadata items, well-known fields first, then insertion order."""
    for key in METADATA_FIELDS:
        if key in record.metadata:
            yield key, record.metadata[key]
    for key, value in record.metadata.items():
        if key not in METADATA_FIELDS:
            yield key, value


def _payload_text(payload: Any) -> str:
    try:
        return json.dumps(payload)
    except (TypeError, ValueError, RecursionError):
        pass
    try:
        return repr(payload)
    except RecursionError:
        return f"<{type(payload).__name__} nested too deeply to render>"


def render_text(record: ErrorRecord) -> str:
    """
    Render a record as multi-line text.

    Frames come oldest first as ``file:line: message``, followed by an
    ``Error: <headline>`` line, metadata as ``key=value`` lines and finally
    the payload as ``extra_data=<json>``. Payloads JSON cannot encode are
    shown with repr() instead.
    """
    lines = [frame.render() for frame in record.frames]
    lines.append(f"Error: {record.headline}")
    lines.extend(f"{key}={value}" for key, value in ordered_metadata(record))
    if record.extra_data is not None:
        lines.append(f"extra_data={_payload_text(record.extra_data)}")
    return "\n".join(lines)


def format_timestamp(timestamp: datetime) -> str:
    return timestamp.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _json_value(value: Any, path: str, active: Set[int]) -> Any:
    # Returns a fresh copy so the structured output never aliases the record.
    # active holds the ids of the containers on the current path.
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationFailed(f"extra_data{path}: {value!r} is not representable in JSON")
        return value
    if not isinstance(value, (list, tuple, dict)):
        raise SerializationFailed(
            f"extra_data{path}: value of type {type(value).__name__} is not representable in JSON"
        )

    if id(value) in active:
        raise SerializationFailed(f"extra_data{path}: circular reference")
    active.add(id(value))
    try:
        if isinstance(value, dict):
            result = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise SerializationFailed(f"extra_data{path}: key {key!r} is not a string")
                result[key] = _json_value(item, f"{path}.{key}", active)
            return result
        return [_json_value(item, f"{path}[{index}]", active) for index, item in enumerate(value)]
    finally:
        active.discard(id(value))


def to_structured(record: ErrorRecord) -> Dict[str, Any]:
    """
    Convert a record to its JSON-compatible structured form.

    Raises:
        SerializationFailed: If the payload holds values JSON cannot represent,
            references itself, or is nested too deeply
    """
    data: Dict[str, Any] = {
        "frames": [
            {
                "message": frame.message,
                "file": frame.file,
                "line": frame.line,
                "timestamp": format_timestamp(frame.timestamp),
            }
            for frame in record.frames
        ]
    }
    data.update(ordered_metadata(record))
    try:
        data["extra_data"] = _json_value(record.extra_data, "", set())
    except RecursionError as e:
        raise SerializationFailed("extra_data is nested too deeply to serialize") from e
    return data


def to_json(record: ErrorRecord, indent: Optional[int] = None) -> str:
    return json.dumps(to_structured(record), indent=indent)


def _parse_frames(raw_frames: Any) -> List[TraceFrame]:
    if not isinstance(raw_frames, list) or not raw_frames:
        raise SerializationFailed("'frames' must be a non-empty list")
    frames = []
    for raw in raw_frames:
        if not isinstance(raw, dict):
            raise SerializationFailed(f"frame must be an object, got {type(raw).__name__}")
        try:
            location = SourceLocation(file=raw["file"], line=raw["line"])
            frames.append(TraceFrame(message=raw["message"], location=location, timestamp=raw["timestamp"]))
        except KeyError as e:
            raise SerializationFailed(f"frame is missing key {e}") from e
        except (ValidationError, InvalidLocation) as e:
            raise SerializationFailed(f"invalid frame: {e}") from e
    return frames


def from_structured(data: Dict[str, Any]) -> ErrorRecord:
    """
    Rebuild a record from its structured form.

    The payload is copied; the returned record does not share it with data.

    Raises:
        SerializationFailed: If data does not follow the structured layout or
            its frame timestamps decrease
    """
    if not isinstance(data, dict):
        raise SerializationFailed(f"expected an object, got {type(data).__name__}")
    if "frames" not in data:
        raise SerializationFailed("missing 'frames'")
    frames = _parse_frames(data["frames"])
    metadata = {key: value for key, value in data.items() if key not in RESERVED_KEYS}
    try:
        return ErrorRecord(
            frames=tuple(frames),
            extra_data=copy_payload(data.get("extra_data")),
            metadata=metadata,
        )
    except ValidationError as e:
        raise SerializationFailed(f"invalid record: {e}") from e


def from_json(text: str) -> ErrorRecord:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SerializationFailed(f"invalid JSON: {e}") from e
    except RecursionError as e:
        raise SerializationFailed("JSON is nested too deeply to parse") from e
    return from_structured(data)
