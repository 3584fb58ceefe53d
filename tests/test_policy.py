"""
Tests for the deterministic temporal policy helpers.
"""

from datetime import datetime, timedelta, timezone

import pytest

from timeflow.core.policy import (
    ClockTime,
    anchor_span,
    candidate_range,
    chain_backward,
    fallback_anchor,
    match_logged_event,
    render_policy,
    resolve_clock_range,
    resolve_clock_time,
    span_from_start,
)
from timeflow.core.schema import LoggedEventRef, TimeSpan, load_zone

UTC = load_zone("UTC")
NEW_YORK = load_zone("America/New_York")
REFERENCE = datetime(2024, 1, 1, 20, 9, 49, tzinfo=timezone.utc)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_anchor_span_ends_at_reference():
    span = anchor_span(REFERENCE, 60)
    assert span.end == REFERENCE
    assert span.start == utc(2024, 1, 1, 19, 9, 49)


def test_span_from_start():
    span = span_from_start(utc(2024, 1, 1, 13), 120)
    assert span.end == utc(2024, 1, 1, 15)


def test_chain_backward_is_contiguous():
    spans = chain_backward(REFERENCE, [60, 20, 45])
    assert spans[0].end == REFERENCE
    for newer, older in zip(spans, spans[1:]):
        assert older.end == newer.start
    assert [s.duration_minutes for s in spans] == [60, 20, 45]


def test_chain_backward_with_pinned_bounds():
    start_at_one = utc(2024, 1, 1, 13)
    spans = chain_backward(REFERENCE, [
        (None, None, 30),
        (start_at_one, None, 120),
        (None, None, None),
    ], default_minutes=60)
    assert spans[0] == TimeSpan(utc(2024, 1, 1, 19, 39, 49), REFERENCE)
    assert spans[1] == TimeSpan(start_at_one, utc(2024, 1, 1, 15))
    assert spans[2] == TimeSpan(utc(2024, 1, 1, 12), start_at_one)


def test_chain_backward_open_ended_start_runs_to_next_span():
    spans = chain_backward(REFERENCE, [20, (utc(2024, 1, 1, 18), None, None)])
    assert spans[1] == TimeSpan(utc(2024, 1, 1, 18), utc(2024, 1, 1, 19, 49, 49))


class TestClockRanges:

    def test_overnight_bare_range(self):
        span = resolve_clock_range(ClockTime(11), ClockTime(9), REFERENCE, UTC)
        assert span.start == utc(2023, 12, 31, 23)
        assert span.end == utc(2024, 1, 1, 9)
        assert span.duration_minutes == 600

    def test_overnight_uses_previous_night_when_morning_is_ahead(self):
        reference = utc(2024, 1, 1, 7)
        span = resolve_clock_range(ClockTime(11), ClockTime(9), reference, UTC)
        assert span.start == utc(2023, 12, 30, 23)
        assert span.end == utc(2023, 12, 31, 9)

    def test_explicit_range_in_user_timezone(self):
        span = resolve_clock_range(ClockTime(2, 0, "pm"), ClockTime(4, 0, "pm"), REFERENCE, NEW_YORK)
        # 2pm and 4pm EST
        assert span.start == utc(2024, 1, 1, 19)
        assert span.end == utc(2024, 1, 1, 21)

    def test_meridiem_inferred_from_other_end(self):
        span = resolve_clock_range(ClockTime(2), ClockTime(4, 0, "pm"), REFERENCE, UTC)
        assert span.start == utc(2024, 1, 1, 14)
        assert span.end == utc(2024, 1, 1, 16)

    def test_noon_to_one(self):
        span = resolve_clock_range(ClockTime(12), ClockTime(1), REFERENCE, UTC)
        assert span.start == utc(2024, 1, 1, 12)
        assert span.end == utc(2024, 1, 1, 13)

    def test_bare_same_day_range_prefers_latest_finished_reading(self):
        span = resolve_clock_range(ClockTime(2), ClockTime(4), REFERENCE, UTC)
        assert span.start == utc(2024, 1, 1, 14)

        morning = utc(2024, 1, 1, 10)
        span = resolve_clock_range(ClockTime(2), ClockTime(4), morning, UTC)
        assert span.start == utc(2024, 1, 1, 2)

    def test_equal_bare_ends_stay_degenerate(self):
        span = resolve_clock_range(ClockTime(5), ClockTime(5), REFERENCE, UTC)
        assert span == TimeSpan(utc(2024, 1, 1, 5), utc(2024, 1, 1, 5))
        assert resolve_clock_range(ClockTime(12), ClockTime(12), REFERENCE, UTC).is_degenerate

    def test_explicit_pm_to_am_crosses_midnight(self):
        span = resolve_clock_range(ClockTime(10, 30, "pm"), ClockTime(6, 15, "am"), REFERENCE, UTC)
        assert span.start == utc(2023, 12, 31, 22, 30)
        assert span.end == utc(2024, 1, 1, 6, 15)

    def test_resolve_clock_time_latest_past_reading(self):
        assert resolve_clock_time(ClockTime(1), REFERENCE, UTC) == utc(2024, 1, 1, 13)
        assert resolve_clock_time(ClockTime(1, 0, "am"), REFERENCE, UTC) == utc(2024, 1, 1, 1)
        assert resolve_clock_time(ClockTime(9), utc(2024, 1, 1, 8), UTC) == utc(2024, 1, 1, 9)


class TestContextualHelpers:

    def test_candidate_range_afternoon(self):
        window = candidate_range("this afternoon after lunch", REFERENCE, UTC)
        assert window.start == utc(2024, 1, 1, 12)
        assert window.end == utc(2024, 1, 1, 17)

    def test_candidate_range_defaults_to_reference_day(self):
        window = candidate_range("after lunch", REFERENCE, NEW_YORK)
        assert window.start == datetime(2024, 1, 1, 0, 0, tzinfo=NEW_YORK)
        assert window.end.date() == window.start.date()

    def test_candidate_range_yesterday(self):
        window = candidate_range("yesterday after dinner", REFERENCE, UTC)
        assert window.start == utc(2023, 12, 31)

    def test_fallback_lunch_same_day(self):
        anchor = fallback_anchor("lunch", REFERENCE, UTC)
        assert anchor.start == utc(2024, 1, 1, 12)
        assert anchor.end == utc(2024, 1, 1, 13)

    def test_fallback_lunch_before_it_happened_uses_yesterday(self):
        anchor = fallback_anchor("lunch", utc(2024, 1, 1, 10), UTC)
        assert anchor.end == utc(2023, 12, 31, 13)

    def test_fallback_unknown_activity(self):
        anchor = fallback_anchor("pottery", REFERENCE, UTC)
        assert anchor.end == REFERENCE - timedelta(hours=1)
        assert anchor.duration_minutes == 60

    def test_match_logged_event_picks_latest_started(self):
        events = [
            LoggedEventRef("Lunch with Sam", TimeSpan(utc(2024, 1, 1, 12), utc(2024, 1, 1, 13))),
            LoggedEventRef("Late lunch", TimeSpan(utc(2024, 1, 1, 15), utc(2024, 1, 1, 15, 30))),
            LoggedEventRef("Lunch tomorrow", TimeSpan(utc(2024, 1, 2, 12), utc(2024, 1, 2, 13))),
            LoggedEventRef("Meeting", TimeSpan(utc(2024, 1, 1, 16), utc(2024, 1, 1, 17))),
        ]
        assert match_logged_event("lunch", events, REFERENCE).title == "Late lunch"

    @pytest.mark.parametrize("name", ["", "yoga"])
    def test_match_logged_event_none(self, name):
        events = [LoggedEventRef("Lunch", TimeSpan(utc(2024, 1, 1, 12), utc(2024, 1, 1, 13)))]
        assert match_logged_event(name, events, REFERENCE) is None


def test_render_policy_mentions_rules_and_tool():
    text = render_policy()
    assert "IMPORTANT TIME RULES" in text
    assert "get_logged_events" in text
    assert "present tense" in text
    assert "Do not create new tags" in text
