"""
Tests for the rule-based extractor, run through the full resolution loop.
"""

import asyncio
import sqlite3
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from timeflow.agents.orchestrator import ResolutionOrchestrator
from timeflow.agents.rule_based import (
    RuleBasedExtractor,
    normalize_title,
    parse_duration,
    present_tense,
    split_clauses,
    suggest_tags,
)
from timeflow.agents.tools import ToolRouter
from timeflow.core.dao import EventLookupGateway, add_event
from timeflow.core.errors import DegenerateSpanError
from timeflow.core.schema import ExtractionRequest, TimeSpan

NOW = "2024-01-01T20:09:49Z"


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def resolve(text, now=NOW, tz="UTC", tags=(), gateway=None, max_tool_calls=3):
    orchestrator = ResolutionOrchestrator(
        RuleBasedExtractor(),
        tools=ToolRouter(gateway),
        max_tool_calls=max_tool_calls,
    )
    request = ExtractionRequest.build(text, now, tz, list(tags))
    return asyncio.run(orchestrator.resolve(request))


def events_of(outcome):
    return outcome.result.to_dict()["events"]


def test_built_then_ate_scenario():
    outcome = resolve("I built an AI project for 1 hour, before that I ate for 20 mins", tags=["work", "food"])

    assert events_of(outcome) == [
        {
            "title": "Eat",
            "startTime": "2024-01-01T18:49:49Z",
            "endTime": "2024-01-01T19:09:49Z",
            "tags": ["food"],
            "duration": 20,
        },
        {
            "title": "Build AI project",
            "startTime": "2024-01-01T19:09:49Z",
            "endTime": "2024-01-01T20:09:49Z",
            "tags": ["work"],
            "duration": 60,
        },
    ]
    assert outcome.debug.tool_exchanges == []


def test_single_duration_ends_now():
    [event] = events_of(resolve("I read for 45 mins", tags=["study"]))
    assert event["title"] == "Read"
    assert event["endTime"] == NOW
    assert event["startTime"] == "2024-01-01T19:24:49Z"
    assert event["tags"] == ["study"]


def test_then_chains_in_text_order():
    events = events_of(resolve("I cooked dinner for 30 mins, then ate for 20 mins", tags=["food"]))
    assert [e["title"] for e in events] == ["Cook dinner", "Eat"]
    assert events[1]["endTime"] == NOW
    assert events[0]["endTime"] == events[1]["startTime"]
    assert events[0]["startTime"] == "2024-01-01T19:19:49Z"
    assert all(e["tags"] == ["food"] for e in events)


def test_and_splits_activities_with_their_own_durations():
    events = events_of(resolve("I ran for 30 mins and read for 1 hour"))
    assert [e["title"] for e in events] == ["Run", "Read"]
    assert [e["duration"] for e in events] == [30, 60]
    assert events[1]["endTime"] == NOW


def test_three_clause_backward_chain():
    events = events_of(resolve("I wrote emails for 15 mins, before that I had lunch for 45 mins, "
                               "before that I worked for 2 hours"))
    assert [e["title"] for e in events] == ["Work", "Lunch", "Write emails"]
    assert events[0]["startTime"] == "2024-01-01T17:09:49Z"
    for earlier, later in zip(events, events[1:]):
        assert earlier["endTime"] == later["startTime"]


def test_overnight_range():
    [event] = events_of(resolve("I slept from 11 to 9", now="2024-01-02T10:00:00Z", tags=["sleep"]))
    assert event["title"] == "Sleep"
    assert event["startTime"] == "2024-01-01T23:00:00Z"
    assert event["endTime"] == "2024-01-02T09:00:00Z"
    assert event["duration"] == 600
    assert event["tags"] == ["sleep"]


def test_daytime_range_is_not_overnight():
    [event] = events_of(resolve("Yesterday, I worked from 9 to 5"))
    assert event["title"] == "Work"
    assert event["startTime"] == "2023-12-31T09:00:00Z"
    assert event["endTime"] == "2023-12-31T17:00:00Z"


def test_explicit_times_in_user_timezone():
    [event] = events_of(resolve("I worked from 2pm to 4pm", now="2024-01-01T22:00:00Z", tz="America/New_York"))
    assert event["startTime"] == "2024-01-01T19:00:00Z"
    assert event["endTime"] == "2024-01-01T21:00:00Z"


def test_start_time_plus_duration():
    [event] = events_of(resolve("I worked for 2 hours starting at 1pm", now="2024-01-01T20:00:00Z"))
    assert event["startTime"] == "2024-01-01T13:00:00Z"
    assert event["endTime"] == "2024-01-01T15:00:00Z"


def test_explicit_times_ignore_reference_instant():
    text = "I worked from 2pm to 4pm"
    early = events_of(resolve(text, now="2024-01-02T01:00:00Z", tz="America/New_York"))
    late = events_of(resolve(text, now="2024-01-02T04:30:00Z", tz="America/New_York"))
    assert early == late
    assert early[0]["startTime"] == "2024-01-01T19:00:00Z"
    assert early[0]["endTime"] == "2024-01-01T21:00:00Z"


class TestEqualEndedRange:

    def resolve_with(self, policy):
        orchestrator = ResolutionOrchestrator(RuleBasedExtractor(), degenerate_policy=policy)
        request = ExtractionRequest.build("I worked from 5 to 5", NOW, "UTC", ["work"])
        return asyncio.run(orchestrator.resolve(request))

    def test_rejected_as_degenerate(self):
        with pytest.raises(DegenerateSpanError) as exc_info:
            self.resolve_with("reject")
        assert exc_info.value.index == 0

    def test_coerced_to_default_length(self):
        [event] = events_of(self.resolve_with("coerce"))
        assert event["startTime"] == "2024-01-01T05:00:00Z"
        assert event["endTime"] == "2024-01-01T06:00:00Z"
        assert event["tags"] == ["work"]


class TestContextualReferences:

    def test_after_lunch_uses_exact_logged_timestamps(self):
        add_event("Lunch with Sam", TimeSpan(utc(2024, 1, 1, 12, 5, 13), utc(2024, 1, 1, 12, 47, 31)), ["food"])

        outcome = resolve("I studied for 1 hour after lunch", tags=["study", "food"])

        [event] = events_of(outcome)
        assert event["title"] == "Study"
        assert event["startTime"] == "2024-01-01T12:47:31Z"
        assert event["endTime"] == "2024-01-01T13:47:31Z"
        assert event["tags"] == ["study"]
        assert len(outcome.debug.tool_exchanges) == 1
        assert outcome.debug.tool_exchanges[0]["dataCount"] == 1

    def test_after_lunch_falls_back_when_nothing_logged(self):
        outcome = resolve("I studied for 1 hour after lunch")

        [event] = events_of(outcome)
        assert event["startTime"] == "2024-01-01T13:00:00Z"
        assert event["endTime"] == "2024-01-01T14:00:00Z"
        assert outcome.debug.tool_exchanges[0]["dataCount"] == 0

    def test_after_lunch_falls_back_when_store_unavailable(self):
        gateway = EventLookupGateway(fetch=Mock(side_effect=sqlite3.OperationalError("disk I/O error")))
        [event] = events_of(resolve("I studied for 1 hour after lunch", gateway=gateway))
        assert event["startTime"] == "2024-01-01T13:00:00Z"

    def test_before_commute(self):
        [event] = events_of(resolve("I had breakfast for 30 mins before my commute"))
        assert event["title"] == "Breakfast"
        assert event["startTime"] == "2024-01-01T08:00:00Z"
        assert event["endTime"] == "2024-01-01T08:30:00Z"

    def test_between_two_activities(self):
        [event] = events_of(resolve("I read between lunch and dinner"))
        assert event["startTime"] == "2024-01-01T13:00:00Z"
        assert event["endTime"] == "2024-01-01T18:00:00Z"

    def test_without_tools_uses_best_guess_directly(self):
        outcome = resolve("I studied for 1 hour after lunch", max_tool_calls=0)
        [event] = events_of(outcome)
        assert event["startTime"] == "2024-01-01T13:00:00Z"
        assert outcome.debug.tool_exchanges == []


@pytest.mark.parametrize("word,expected", [
    ("built", "build"),
    ("ate", "eat"),
    ("studied", "study"),
    ("coded", "code"),
    ("jogged", "jog"),
    ("danced", "dance"),
    ("meditated", "meditate"),
    ("worked", "work"),
    ("running", "run"),
    ("called", "call"),
    ("handled", "handle"),
])
def test_present_tense(word, expected):
    assert present_tense(word) == expected


def test_normalize_title_drops_pronouns_and_fillers():
    assert normalize_title(["I", "worked", "on", "my", "resume"]) == "Work on resume"
    assert normalize_title(["I", "read", "the", "book"]) == "Read book"
    assert normalize_title(["I"]) == ""


@pytest.mark.parametrize("body,minutes", [
    ("1 hour and 20 mins", 80),
    ("half an hour", 30),
    ("an hour and a half", 90),
    ("1.5 hours", 90),
    ("2h", 120),
    ("90 minutes", 90),
])
def test_parse_duration(body, minutes):
    assert parse_duration(body) == minutes


def test_suggest_tags_uses_allowed_spelling():
    assert suggest_tags(["built", "project"], ["Work", "food"]) == ["Work"]
    assert suggest_tags(["walked"], ["work", "food"]) == []


def test_split_clauses_merges_leading_day_word():
    clauses = split_clauses("Yesterday, I worked from 9 to 5")
    assert len(clauses) == 1
    assert clauses[0].yesterday is True
    assert clauses[0].clock_range is not None
