"""
Unit tests for the accumulation and rendering engine.
"""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from tracechain import engine
from tracechain.errors import InvalidLocation, SerializationFailed
from tracechain.models import ErrorRecord

T0 = datetime(2026, 10, 19, 8, 0, 0, tzinfo=timezone.utc)


def clock_at(*moments):
    values = iter(moments)
    return lambda: next(values)


@pytest.fixture
def chained_record():
    """Record built by one construction and one propagation."""
    record = ErrorRecord.new("db timeout", ("db.rs", 42), clock=clock_at(T0))
    return record.extend("handler failed", ("handler.rs", 10), clock=clock_at(T0 + timedelta(seconds=1)))


class TestExtend:
    """Tests for frame accumulation."""

    def test_frame_order(self):
        """Test N extensions give N+1 frames in call order."""
        record = ErrorRecord.new("root cause", ("a.py", 1))
        for index in range(5):
            record = engine.extend(record, f"step {index}", ("b.py", index))

        assert [frame.message for frame in record.frames] == [
            "root cause", "step 0", "step 1", "step 2", "step 3", "step 4",
        ]

    def test_timestamps_non_decreasing(self):
        """Test timestamps never decrease along the chain."""
        record = ErrorRecord.new("root cause", ("a.py", 1))
        for index in range(20):
            record = record.extend(f"step {index}", ("b.py", index))

        stamps = [frame.timestamp for frame in record.frames]
        assert all(earlier <= later for earlier, later in zip(stamps, stamps[1:]))

    def test_clock_skew_is_clamped(self):
        """Test an earlier clock reading is clamped to the last frame's time."""
        record = ErrorRecord.new("root cause", ("a.py", 1), clock=clock_at(T0))
        record = record.extend("later", ("b.py", 2), clock=clock_at(T0 - timedelta(minutes=5)))

        assert record.frames[1].timestamp == T0

    def test_naive_clock_reading_is_treated_as_utc(self):
        """Test a naive datetime from the clock is stored as UTC."""
        record = ErrorRecord.new("root cause", ("a.py", 1), clock=clock_at(datetime(2026, 1, 1)))

        assert record.first_frame.timestamp == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_extend_keeps_previous_value(self):
        """Test extending does not change a saved reference to the prior record."""
        original = ErrorRecord.new("root cause", ("a.py", 1))
        extended = original.extend("wrapper", ("b.py", 2))

        assert len(original.frames) == 1
        assert len(extended.frames) == 2

    def test_extend_carries_payload_and_metadata(self):
        """Test extra_data and metadata survive propagation unchanged."""
        record = ErrorRecord.new("root cause", ("a.py", 1)).with_project("billing").with_extra_data({"id": 7})
        extended = record.extend("wrapper", ("b.py", 2))

        assert extended.project == "billing"
        assert extended.extra_data == {"id": 7}

    def test_extend_rejects_negative_line(self):
        """Test InvalidLocation is raised when extending with a negative line."""
        record = ErrorRecord.new("root cause", ("a.py", 1))

        with pytest.raises(InvalidLocation):
            record.extend("wrapper", ("b.py", -3))


class TestRenderText:
    """Tests for the human-readable rendering."""

    def test_scenario(self, chained_record):
        """Test frames render oldest first followed by the headline."""
        assert chained_record.render_text() == (
            "db.rs:42: db timeout\n"
            "handler.rs:10: handler failed\n"
            "Error: handler failed"
        )

    def test_metadata_order(self):
        """Test metadata follows the fixed order, then insertion order."""
        record = (
            ErrorRecord.new("boom", ("a.py", 1))
            .with_metadata("region", "eu")
            .with_username("alice")
            .with_metadata("build", "42")
            .with_project("billing")
            .with_computer_name("host-1")
        )

        lines = engine.render_text(record).splitlines()
        assert lines[2:] == [
            "project=billing",
            "computer_name=host-1",
            "username=alice",
            "region=eu",
            "build=42",
        ]

    def test_extra_data_rendered_last(self):
        """Test the payload is appended as JSON after metadata."""
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data({"id": 7}).with_project("p")

        lines = record.render_text().splitlines()
        assert lines[-2] == "project=p"
        assert lines[-1] == 'extra_data={"id": 7}'

    def test_unencodable_payload_falls_back_to_repr(self):
        """Test rendering never fails on payloads JSON cannot encode."""
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data({"when": T0})

        assert record.render_text().splitlines()[-1] == f"extra_data={ {'when': T0}!r}"

    def test_deterministic(self, chained_record):
        """Test rendering the same record twice gives the same text."""
        assert chained_record.render_text() == chained_record.render_text()


class TestStructured:
    """Tests for the structured interchange form."""

    def test_layout(self, chained_record):
        """Test keys, frame fields and the explicit null payload."""
        data = chained_record.with_project("billing").to_structured()

        assert list(data) == ["frames", "project", "extra_data"]
        assert data["extra_data"] is None
        assert data["frames"][0] == {
            "message": "db timeout",
            "file": "db.rs",
            "line": 42,
            "timestamp": "2026-10-19T08:00:00.000000Z",
        }
        assert data["frames"][1]["timestamp"] == "2026-10-19T08:00:01.000000Z"

    def test_absent_metadata_omitted(self, chained_record):
        """Test unset metadata fields are not emitted."""
        data = engine.to_structured(chained_record)

        assert "project" not in data
        assert "computer_name" not in data
        assert "username" not in data

    def test_metadata_key_order(self):
        """Test metadata keys follow the fixed order before custom keys."""
        record = ErrorRecord.new("boom", ("a.py", 1)).with_metadata("build", "42").with_username("u").with_project("p")

        assert list(record.to_structured()) == ["frames", "project", "username", "build", "extra_data"]

    def test_payload_is_copied(self):
        """Test mutating the structured output leaves the record untouched."""
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data({"ids": [1, 2]})
        data = record.to_structured()
        data["extra_data"]["ids"].append(3)

        assert record.extra_data == {"ids": [1, 2]}

    def test_tuple_payload_becomes_list(self):
        """Test tuples are emitted as JSON arrays."""
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data({"pair": (1, 2)})

        assert record.to_structured()["extra_data"] == {"pair": [1, 2]}

    @pytest.mark.parametrize("payload", [
        {"when": T0},
        {"ratio": float("nan")},
        {"limit": float("inf")},
        {1: "non-string key"},
        [object()],
    ])
    def test_unrepresentable_payload(self, payload):
        """Test SerializationFailed is raised instead of dropping data."""
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data(payload)

        with pytest.raises(SerializationFailed):
            record.to_structured()

    def test_round_trip(self):
        """Test structured output reconstructs an equal record."""
        record = (
            ErrorRecord.new("db timeout", ("db.rs", 42))
            .extend("handler failed", ("handler.rs", 10))
            .with_project("billing")
            .with_computer_name("host-1")
            .with_username("")
            .with_metadata("region", "eu")
            .with_extra_data({"query": "SELECT 1", "attempts": [1, 2, 3], "ok": False})
        )

        assert engine.from_structured(record.to_structured()) == record
        assert ErrorRecord.from_json(record.to_json(indent=2)) == record

    def test_round_trip_through_json_text(self, chained_record):
        """Test to_json produces JSON that parses back to the same structure."""
        text = chained_record.to_json()

        assert json.loads(text) == chained_record.to_structured()
        restored = engine.from_json(text)
        assert [f.timestamp for f in restored.frames] == [f.timestamp for f in chained_record.frames]

    @pytest.mark.parametrize("data", [
        [],
        {},
        {"frames": []},
        {"frames": "nope"},
        {"frames": [{"message": "m", "file": "f"}]},
        {"frames": [{"message": "m", "file": "f", "line": -1, "timestamp": "2026-10-19T08:00:00Z"}]},
        {"frames": [{"message": "m", "file": "f", "line": 1, "timestamp": "yesterday"}]},
        {"frames": [{"message": "m", "file": "f", "line": 1, "timestamp": "2026-10-19T08:00:00Z"}], "project": 5},
    ])
    def test_malformed_structured_input(self, data):
        """Test malformed input raises SerializationFailed."""
        with pytest.raises(SerializationFailed):
            engine.from_structured(data)

    def test_invalid_json_text(self):
        """Test unparsable JSON raises SerializationFailed."""
        with pytest.raises(SerializationFailed):
            engine.from_json("{not json")


def nested_list(depth):
    payload = []
    for _ in range(depth):
        payload = [payload]
    return payload


class TestValueSemantics:
    """Tests that transforms never share containers between records."""

    def test_extend_copies_payload(self):
        """Test mutating the extended record's payload leaves the original intact."""
        original = ErrorRecord.new("root cause", ("a.py", 1)).with_extra_data({"k": [1]})
        extended = original.extend("wrapper", ("b.py", 2))
        extended.extra_data["k"].append(2)

        assert original.extra_data == {"k": [1]}

    def test_extend_copies_metadata(self):
        """Test mutating the extended record's metadata leaves the original intact."""
        original = ErrorRecord.new("root cause", ("a.py", 1)).with_project("billing")
        extended = engine.extend(original, "wrapper", ("b.py", 2))
        extended.metadata["project"] = "hijacked"

        assert original.project == "billing"

    def test_from_structured_copies_payload(self):
        """Test the parsed record does not alias the input payload."""
        data = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data({"ids": [1]}).to_structured()
        record = engine.from_structured(data)
        data["extra_data"]["ids"].append(2)

        assert record.extra_data == {"ids": [1]}


class TestUnserializablePayloads:
    """Tests for payloads that cannot be represented."""

    def test_circular_payload(self):
        """Test a self-referencing payload raises SerializationFailed."""
        payload = {"name": "loop"}
        payload["self"] = payload
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data(payload)

        with pytest.raises(SerializationFailed, match="circular"):
            record.to_structured()

    def test_shared_but_acyclic_payload(self):
        """Test the same list referenced twice is not mistaken for a cycle."""
        shared = [1, 2]
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data({"a": shared, "b": shared})

        assert record.to_structured()["extra_data"] == {"a": [1, 2], "b": [1, 2]}

    def test_deeply_nested_payload(self):
        """Test nesting beyond the recursion limit raises SerializationFailed."""
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data(nested_list(5000))

        with pytest.raises(SerializationFailed):
            record.to_structured()

    def test_render_text_survives_deep_and_circular_payloads(self):
        """Test rendering still produces text for payloads serialization rejects."""
        payload = {"name": "loop"}
        payload["self"] = payload
        for extra_data in (payload, nested_list(5000)):
            text = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data(extra_data).render_text()

            assert text.startswith("a.py:1: boom\nError: boom\nextra_data=")

    def test_uncopyable_payload_fails_at_serialization(self):
        """Test an uncopyable payload is rejected when serialized, not when attached."""
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data({"lock": threading.Lock()})

        assert record.render_text().splitlines()[-1].startswith("extra_data={'lock': <")
        with pytest.raises(SerializationFailed):
            record.to_structured()


class TestParsedInvariants:
    """Tests that parsing enforces the model invariants."""

    def test_decreasing_timestamps_rejected(self):
        """Test frames going back in time raise SerializationFailed."""
        data = {
            "frames": [
                {"message": "first", "file": "a.py", "line": 1, "timestamp": "2026-10-19T08:00:01Z"},
                {"message": "second", "file": "a.py", "line": 2, "timestamp": "2026-10-19T08:00:00Z"},
            ],
            "extra_data": None,
        }

        with pytest.raises(SerializationFailed):
            engine.from_structured(data)

    def test_tuple_payload_round_trips_as_list(self):
        """Test tuples come back as lists after a structured round trip."""
        record = ErrorRecord.new("boom", ("a.py", 1)).with_extra_data({"pair": (1, 2)})
        restored = engine.from_structured(record.to_structured())

        assert restored.extra_data == {"pair": [1, 2]}
        assert restored != record
        assert restored == record.with_extra_data({"pair": [1, 2]})
