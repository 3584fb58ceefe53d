"""
Temporal resolution policy.

The rules are rendered into the instruction payload for the extraction
capability and are also implemented here as deterministic helpers, which the
offline extractor and the validation tests share.

Rules, in order of precedence:
1. explicit start and end clock times are used verbatim
2. a start time plus a duration gives end = start + duration
3. a duration alone means the activity just finished: it ends at "now"
4. earlier activities chain backward, each ending where the next one starts
5. a bare range like "11 to 9" crosses midnight (start PM, end AM next day)
6. references to logged activities use their exact stored timestamps, with
   fixed best guesses when nothing is found
7. every event must end strictly after it starts
"""

from collections import namedtuple
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, List, Optional, Sequence

from .schema import LoggedEventRef, TimeSpan

ClockTime = namedtuple("ClockTime", ["hour", "minute", "meridiem"])
ClockTime.__new__.__defaults__ = (0, None)

POLICY_RULES = [
    ("Explicit times",
     "If the user gives an explicit start and end time (e.g. \"from 2pm to 4pm\"), you MUST use "
     "those times in the user's timezone. Duration rules below do not apply."),
    ("Start time and duration",
     "If the user gives a start time and a duration (e.g. \"worked for 2 hours starting at 1pm\"), "
     "the end time is the start time plus the duration."),
    ("Duration only",
     "If the user gives only a duration (e.g. \"for 2 hours\"), the activity just finished. The "
     "current time is the END time of the most recent activity; calculate its start from the "
     "duration. Never use the current time as a start time."),
    ("Backward chaining",
     "When several activities are described in sequence (\"before that\", \"then\", or plain "
     "ordering), start from the most recent one and walk backward: each activity ends exactly when "
     "the next activity starts, and starts its duration earlier."),
    ("Overnight ranges",
     "If a range has a start number larger than its end number without am/pm (e.g. \"slept from 11 "
     "to 9\") and the activity plausibly spans the night, read the start as PM and the end as AM of "
     "the following day, using the most recent such night. Never produce a 22-hour span for this."),
    ("Contextual references",
     "If the text refers to other activities (\"after lunch\", \"between my meetings\", \"before my "
     "commute\"), call the get_logged_events tool with a sensible window (the stated day, or e.g. "
     "noon to 5pm for \"this afternoon\"). Use the returned timestamps EXACTLY, without rounding: "
     "\"after X\" starts at X's endTime, \"before X\" ends at X's startTime, \"between A and B\" runs "
     "from A's endTime to B's startTime. If nothing matches, do not ask the user anything: assume a "
     "typical time (lunch around 1 PM) and continue. Call the tool at most once per referenced "
     "activity, then return the final JSON."),
    ("Valid spans",
     "Every event must end strictly after it starts."),
]

TITLE_RULES = [
    "The title is a short summary of the activity (e.g. \"Work out\", \"Read book\", \"Project A meeting\").",
    "The title MUST be in the present tense (\"Work out\", not \"Worked out\").",
    "The title must not include personal pronouns (\"I\"), filler (\"today\", \"just\") or other unnecessary words.",
]

TAG_RULES = [
    "You MUST only use tags from the list of available tags. Do not create new tags.",
    "An event may have no tags when none of the available tags fit.",
]

# Local wall-clock windows used when looking up logged events
CONTEXT_WINDOWS = {
    "morning": (time(6, 0), time(12, 0)),
    "afternoon": (time(12, 0), time(17, 0)),
    "evening": (time(17, 0), time(22, 0)),
    "tonight": (time(17, 0), time(23, 59, 59)),
}

# Best-guess local spans for referenced activities that are not in the store
FALLBACK_ANCHORS = {
    "breakfast": (time(8, 0), time(9, 0)),
    "brunch": (time(11, 0), time(12, 0)),
    "lunch": (time(12, 0), time(13, 0)),
    "dinner": (time(18, 0), time(19, 0)),
    "supper": (time(18, 0), time(19, 0)),
    "commute": (time(8, 30), time(9, 0)),
    "work": (time(9, 0), time(17, 0)),
    "school": (time(8, 0), time(15, 0)),
    "class": (time(9, 0), time(10, 0)),
    "gym": (time(18, 0), time(19, 0)),
}


def render_policy() -> str:
    """Render the time, title and tag rules as numbered instruction text."""
    lines = ["IMPORTANT TIME RULES:"]
    for i, (name, text) in enumerate(POLICY_RULES, 1):
        lines.append(f"{i}. {name}: {text}")
    lines.append("")
    lines.append("IMPORTANT TITLE RULES:")
    lines.extend(f"{i}. {text}" for i, text in enumerate(TITLE_RULES, 1))
    lines.append("")
    lines.append("IMPORTANT TAG RULES:")
    lines.extend(f"{i}. {text}" for i, text in enumerate(TAG_RULES, 1))
    return "\n".join(lines)


def anchor_span(reference: datetime, minutes: float) -> TimeSpan:
    """Span of the given length ending exactly at the reference instant."""
    return TimeSpan(reference - timedelta(minutes=minutes), reference)


def span_from_start(start: datetime, minutes: float) -> TimeSpan:
    return TimeSpan(start, start + timedelta(minutes=minutes))


def chain_backward(reference: datetime, steps: Sequence, default_minutes: float = 60) -> List[TimeSpan]:
    """
    Chain spans backward from the reference instant.

    steps is ordered most recent first and the returned spans use the same
    order. A step is either a duration in minutes or a (start, end, minutes)
    tuple where any part may be None. Missing bounds are filled from the
    start of the next more recent span, so each span ends where that one
    begins unless the step pins its own end.
    """
    spans = []
    cursor = reference
    for step in steps:
        start, end, minutes = step if isinstance(step, tuple) else (None, None, step)
        if start is not None and end is None and minutes:
            span = span_from_start(start, minutes)
        elif start is not None:
            span = TimeSpan(start, end if end is not None else cursor)
        else:
            span = anchor_span(end if end is not None else cursor, minutes or default_minutes)
        spans.append(span)
        cursor = span.start
    return spans


def local_instant(day: date, clock: time, tz: tzinfo) -> datetime:
    return datetime.combine(day, clock, tzinfo=tz)


def _to_24h(clock: ClockTime, meridiem: Optional[str]) -> int:
    hour = clock.hour % 24
    if hour > 12 or hour == 0 and meridiem is None:
        return hour
    if meridiem == "pm":
        return hour % 12 + 12
    if meridiem == "am":
        return hour % 12
    return hour


def _opposite(meridiem: str) -> str:
    return "am" if meridiem == "pm" else "pm"


def _minutes(hour: int, minute: int) -> int:
    return hour * 60 + minute


def _most_recent_overnight(day: date, start: time, end: time, reference: datetime, tz: tzinfo) -> TimeSpan:
    """Overnight span ending on the reference day, or the night before if that is still ahead."""
    end_dt = local_instant(day, end, tz)
    if end_dt > reference:
        day = day - timedelta(days=1)
        end_dt = local_instant(day, end, tz)
    return TimeSpan(local_instant(day - timedelta(days=1), start, tz), end_dt)


def resolve_clock_range(start: ClockTime, end: ClockTime, reference: datetime, tz: tzinfo,
                        overnight: bool = True) -> TimeSpan:
    """
    Turn a stated wall-clock range into absolute instants in tz.

    Same-day ranges land on the reference's local date. A range whose end is
    not after its start crosses midnight and resolves to the most recent
    night ending at or before the reference. overnight=False marks an
    activity that does not plausibly span the night, so a bare "9 to 5" reads
    as morning to afternoon instead.
    """
    day = reference.astimezone(tz).date()
    start_mer, end_mer = start.meridiem, end.meridiem

    if start_mer is None and end_mer is None:
        if start.hour == 12 and end.hour < 12:
            # "12 to 1" is noon to one
            start_mer, end_mer = "pm", "pm"
        elif _minutes(start.hour, start.minute) > _minutes(end.hour, end.minute) and start.hour <= 12:
            # Bare "11 to 9": evening to next morning for overnight activities
            start_mer, end_mer = ("pm", "am") if overnight else ("am", "pm")
        elif start.hour <= 12 and end.hour <= 12:
            return _latest_same_day(day, start, end, reference, tz)
    elif start_mer is None:
        start_mer = end_mer
        if _minutes(_to_24h(start, start_mer), start.minute) >= _minutes(_to_24h(end, end_mer), end.minute):
            start_mer = _opposite(end_mer)
    elif end_mer is None:
        end_mer = start_mer
        if _minutes(_to_24h(end, end_mer), end.minute) <= _minutes(_to_24h(start, start_mer), start.minute):
            end_mer = _opposite(start_mer)

    start_clock = time(_to_24h(start, start_mer), start.minute)
    end_clock = time(_to_24h(end, end_mer), end.minute)
    if end_clock <= start_clock:
        return _most_recent_overnight(day, start_clock, end_clock, reference, tz)
    return TimeSpan(local_instant(day, start_clock, tz), local_instant(day, end_clock, tz))


def _latest_same_day(day: date, start: ClockTime, end: ClockTime, reference: datetime, tz: tzinfo) -> TimeSpan:
    """Pick AM or PM for a bare same-day range: the latest reading already over."""
    candidates = []
    for meridiem in ("am", "pm"):
        span = TimeSpan(
            local_instant(day, time(_to_24h(start, meridiem), start.minute), tz),
            local_instant(day, time(_to_24h(end, meridiem), end.minute), tz),
        )
        if not span.is_degenerate:
            candidates.append(span)
    if not candidates:
        # "5 to 5": zero length either way, left for the degenerate-span policy
        return TimeSpan(
            local_instant(day, time(_to_24h(start, "am"), start.minute), tz),
            local_instant(day, time(_to_24h(end, "am"), end.minute), tz),
        )
    finished = [span for span in candidates if span.end <= reference]
    if finished:
        return finished[-1]
    return candidates[0]


def resolve_clock_time(clock: ClockTime, reference: datetime, tz: tzinfo) -> datetime:
    """
    A single stated clock time on the reference day. Without am/pm the
    latest reading not after the reference wins.
    """
    day = reference.astimezone(tz).date()
    if clock.meridiem is not None or clock.hour > 12 or clock.hour == 0:
        return local_instant(day, time(_to_24h(clock, clock.meridiem), clock.minute), tz)

    readings = [local_instant(day, time(_to_24h(clock, m), clock.minute), tz) for m in ("am", "pm")]
    past = [dt for dt in readings if dt <= reference]
    return past[-1] if past else readings[0]


def candidate_range(phrase: str, reference: datetime, tz: tzinfo) -> TimeSpan:
    """Lookup window for a contextual reference, in the user's local time."""
    local_ref = reference.astimezone(tz)
    day = local_ref.date()
    lowered = (phrase or "").lower()

    if "yesterday" in lowered:
        day = day - timedelta(days=1)
        return TimeSpan(local_instant(day, time.min, tz), local_instant(day, time.max, tz))

    for name, (start, end) in CONTEXT_WINDOWS.items():
        if name in lowered:
            return TimeSpan(local_instant(day, start, tz), local_instant(day, end, tz))

    return TimeSpan(local_instant(day, time.min, tz), local_instant(day, time.max, tz))


def fallback_anchor(name: str, reference: datetime, tz: tzinfo) -> TimeSpan:
    """
    Best-guess span for a referenced activity that could not be found.

    Known activities use FALLBACK_ANCHORS on the most recent day where the
    guess has already ended; anything else is taken as the hour that ended
    one hour before the reference.
    """
    key = (name or "").lower().strip()
    for anchor, (start, end) in FALLBACK_ANCHORS.items():
        if anchor in key:
            day = reference.astimezone(tz).date()
            span = TimeSpan(local_instant(day, start, tz), local_instant(day, end, tz))
            if span.end > reference:
                day = day - timedelta(days=1)
                span = TimeSpan(local_instant(day, start, tz), local_instant(day, end, tz))
            return span
    return TimeSpan(reference - timedelta(hours=2), reference - timedelta(hours=1))


def match_logged_event(name: str, events: Iterable[LoggedEventRef], reference: datetime) -> Optional[LoggedEventRef]:
    """Most recent logged event whose title mentions name and that started before the reference."""
    key = (name or "").lower().strip()
    if not key:
        return None
    matches = [
        event for event in events
        if key in event.title.lower() and event.span.start <= reference
    ]
    if not matches:
        return None
    return max(matches, key=lambda event: event.span.start)
