"""
Tests for the typed records and timestamp helpers.
"""

from datetime import datetime, timedelta, timezone

import pytest

from timeflow.core.schema import (
    ExtractionRequest,
    ExtractionResult,
    ProposedEvent,
    TimeSpan,
    format_instant,
    load_zone,
    parse_instant,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_parse_instant_z_suffix():
    dt = parse_instant("2024-01-01T20:09:49Z")
    assert dt == utc(2024, 1, 1, 20, 9, 49)
    assert dt.tzinfo is not None


def test_parse_instant_keeps_offset():
    dt = parse_instant("2024-01-01T10:00:00+02:00")
    assert dt == utc(2024, 1, 1, 8, 0)


def test_parse_instant_naive_uses_default_zone():
    berlin = load_zone("Europe/Berlin")
    dt = parse_instant("2024-01-01T10:00:00", berlin)
    assert dt == utc(2024, 1, 1, 9, 0)


def test_parse_instant_rejects_garbage():
    with pytest.raises(ValueError):
        parse_instant("yesterday at noon")
    with pytest.raises(ValueError):
        parse_instant("")


def test_format_instant_is_utc_with_z():
    berlin = load_zone("Europe/Berlin")
    dt = datetime(2024, 7, 1, 14, 30, tzinfo=berlin)
    assert format_instant(dt) == "2024-07-01T12:30:00Z"


def test_load_zone_unknown():
    with pytest.raises(ValueError, match="Unknown timezone"):
        load_zone("Mars/Olympus_Mons")


def test_time_span_duration_and_degenerate():
    start = utc(2024, 1, 1, 12, 0)
    assert TimeSpan(start, start + timedelta(minutes=90)).duration_minutes == 90
    assert TimeSpan(start, start).is_degenerate
    assert TimeSpan(start, start - timedelta(minutes=1)).is_degenerate
    assert not TimeSpan(start, start + timedelta(seconds=1)).is_degenerate


def test_proposed_event_to_dict():
    event = ProposedEvent(
        title="Eat",
        tags=("food",),
        span=TimeSpan(utc(2024, 1, 1, 18, 49, 49), utc(2024, 1, 1, 19, 9, 49)),
    )
    assert event.to_dict() == {
        "title": "Eat",
        "startTime": "2024-01-01T18:49:49Z",
        "endTime": "2024-01-01T19:09:49Z",
        "tags": ["food"],
        "duration": 20,
    }
    assert ExtractionResult(events=(event,)).to_dict() == {"events": [event.to_dict()]}


class TestExtractionRequest:

    def test_build_from_strings(self):
        request = ExtractionRequest.build("I ate", "2024-01-01T20:09:49Z", "America/New_York", ["food"])
        assert request.reference_instant == utc(2024, 1, 1, 20, 9, 49)
        assert request.allowed_tags == ("food",)
        assert request.zone.key == "America/New_York"

    @pytest.mark.parametrize("text", ["", "   ", "\n"])
    def test_empty_text_rejected(self, text):
        with pytest.raises(ValueError, match="Input cannot be empty."):
            ExtractionRequest.build(text, "2024-01-01T20:09:49Z", "UTC", [])

    def test_naive_reference_rejected(self):
        with pytest.raises(ValueError):
            ExtractionRequest(text="I ate", reference_instant=datetime(2024, 1, 1, 12), timezone="UTC")

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValueError):
            ExtractionRequest.build("I ate", "2024-01-01T20:09:49Z", "Not/AZone", [])

    def test_unparsable_reference_rejected(self):
        with pytest.raises(ValueError):
            ExtractionRequest.build("I ate", "not a time", "UTC", [])

    def test_request_is_immutable(self):
        request = ExtractionRequest.build("I ate", "2024-01-01T20:09:49Z", "UTC", ["food"])
        with pytest.raises(AttributeError):
            request.text = "changed"
