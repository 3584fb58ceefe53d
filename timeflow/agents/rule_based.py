"""
Deterministic extraction capability.

Follows the same temporal policy as the model-backed extractor using regular
expressions over the input sentence. It speaks the same tool protocol: when
the text refers to other activities ("after lunch") it first asks for
get_logged_events over a candidate window, then answers using the exact
stored timestamps, or the policy's best guesses when nothing matches.

Used offline, when the model service is unreachable, and in tests.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, tzinfo
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .agent import BaseExtractor, ExtractionPrompt, ExtractorResponse, ToolCall
from ..core.config import DEFAULT_EVENT_MINUTES
from ..core.policy import (
    ClockTime,
    candidate_range,
    chain_backward,
    fallback_anchor,
    local_instant,
    match_logged_event,
    resolve_clock_range,
    resolve_clock_time,
)
from ..core.schema import LoggedEventRef, TimeSpan, format_instant, load_zone, parse_instant

LOOKUP_TOOL = "get_logged_events"

_NUMBER_WORDS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10, "fifteen": 15,
    "twenty": 20, "thirty": 30, "forty": 40, "forty-five": 45, "fifty": 50,
    "half a": 0.5, "half an": 0.5,
}

_AMOUNT = r"(?:\d+(?:\.\d+)?|half\s+an?|forty-five|an?|one|two|three|four|five|six|seven|eight|nine|ten|fifteen|twenty|thirty|forty|fifty)"
_UNIT = r"(?:hours?|hrs?|h|minutes?|mins?|m)"
_PART = _AMOUNT + r"\s*" + _UNIT + r"\b"
_PART_RE = re.compile(r"\b(?P<amount>" + _AMOUNT + r")\s*(?P<unit>" + _UNIT + r")\b", re.I)
_DURATION_RE = re.compile(
    r"\bfor\s+(?:about\s+|around\s+|roughly\s+|almost\s+)?(?P<body>" + _PART
    + r"(?:\s*(?:and\s+)?" + _PART + r")*(?:\s+and\s+a\s+half)?)",
    re.I,
)


def _clock(prefix: str) -> str:
    return (r"(?:(?P<" + prefix + r"h>[01]?\d|2[0-4])(?::(?P<" + prefix + r"m>[0-5]\d))?\s*(?P<"
            + prefix + r"mer>am|pm)?|(?P<" + prefix + r"word>noon|midnight))")


_RANGE_RE = re.compile(
    r"\b(?:from|between)\s+" + _clock("s") + r"\s*(?:to|until|till|and|-)\s*" + _clock("e") + r"(?![\d:])",
    re.I,
)
_START_RE = re.compile(
    r"\b(?:(?:starting|started|beginning|began)\s+(?:at\s+)?|at\s+|from\s+)" + _clock("t") + r"(?![\d:])",
    re.I,
)
_BETWEEN_CONTEXT_RE = re.compile(
    r"\bbetween\s+(?:my\s+|the\s+|our\s+)?(?P<a>[a-z]+)\s+and\s+(?:my\s+|the\s+|our\s+)?(?P<b>[a-z]+)",
    re.I,
)
_CONTEXT_RE = re.compile(
    r"\b(?P<rel>after|before)\s+(?:my\s+|the\s+|our\s+)?(?P<what>(?!that\b|this\b|then\b|noon\b|midnight\b)[a-z]+)",
    re.I,
)
_SEQ_BEFORE_RE = re.compile(r"^\s*(?:and\s+)?(?:before\s+(?:that|this|then)|prior\s+to\s+that)\b[\s,]*", re.I)
_SEQ_AFTER_RE = re.compile(r"^\s*(?:and\s+)?(?:after\s+(?:that|this)|afterwards?|then)\b[\s,]*", re.I)
_SPLIT_RE = re.compile(
    r"\s*[;,]\s*|\.\s+|\s+(?=(?:and\s+)?(?:then|afterwards?|before\s+(?:that|this)|after\s+(?:that|this))\b)",
    re.I,
)
_AND_RE = re.compile(r"\s+and\s+", re.I)
_DAY_WORDS_RE = re.compile(
    r"\b(?:today|yesterday|tonight|this\s+(?:morning|afternoon|evening)|earlier|just|also|again|later)\b",
    re.I,
)
_WORD_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'&+\-]*")

_DROP_WORDS = {
    "i", "we", "me", "my", "our", "us", "myself", "ourselves",
    "was", "were", "am", "is", "are", "been", "have", "has", "had", "did",
    "a", "an", "the", "some", "really", "basically", "actually", "finally", "so",
    "then", "and",
}

_IRREGULAR = {
    "ate": "eat", "built": "build", "went": "go", "did": "do", "made": "make", "wrote": "write",
    "ran": "run", "slept": "sleep", "spent": "spend", "met": "meet", "took": "take", "had": "have",
    "drove": "drive", "rode": "ride", "swam": "swim", "sat": "sit", "taught": "teach",
    "thought": "think", "bought": "buy", "brought": "bring", "caught": "catch", "got": "get",
    "gave": "give", "began": "begin", "drank": "drink", "sang": "sing", "saw": "see",
    "spoke": "speak", "woke": "wake", "fed": "feed", "led": "lead", "lost": "lose", "sent": "send",
    "left": "leave", "told": "tell", "sold": "sell", "found": "find", "paid": "pay", "said": "say",
    "kept": "keep", "felt": "feel", "heard": "hear", "held": "hold", "flew": "fly", "threw": "throw",
    "grew": "grow", "drew": "draw", "chose": "choose", "came": "come", "became": "become",
    "stood": "stand", "won": "win", "hung": "hang", "dug": "dig", "read": "read", "put": "put",
    "doing": "do", "going": "go", "cut": "cut", "set": "set", "hit": "hit", "let": "let", "shut": "shut", "fixed": "fix",
}

_E_STEMS = {
    "us", "reus", "clos", "rais", "paus", "prais", "chas", "bak", "hik", "bik", "cod", "lik", "mak",
    "tak", "fil", "smil", "mov", "phon", "prepar", "shar", "car", "stor", "scor", "explor",
    "compar", "ignor", "revis", "exercis", "com", "hom", "tim", "nam", "renam", "typ", "shap",
    "hop", "scrap", "wip", "rid", "guid", "provid", "decid", "divid", "includ", "slid", "writ",
    "invit", "not", "vot", "quot", "promot", "complet", "delet", "creat", "cur", "secur",
    "measur", "captur", "lectur", "schedul", "chang", "arrang", "challeng", "exchang", "wak",
    "bath", "breath", "fac", "rac", "jok", "skat", "shav", "smok", "danc", "dat", "rat",
}

_VOWELS = set("aeiou")

# Activities for which a bare "11 to 9" means the night
_OVERNIGHT_WORDS = {"sleep", "nap", "night", "overnight", "bed", "party", "shift", "rest"}

# Keywords that suggest a tag when the tag name itself is not in the text
TAG_HINTS = {
    "work": {"work", "build", "project", "meeting", "meet", "code", "email", "report", "client",
             "office", "deploy", "debug", "review", "standup"},
    "food": {"eat", "lunch", "dinner", "breakfast", "brunch", "cook", "snack", "meal", "food"},
    "exercise": {"run", "gym", "workout", "swim", "walk", "hike", "bike", "yoga", "lift",
                 "exercise", "train", "stretch"},
    "fitness": {"run", "gym", "workout", "swim", "hike", "bike", "yoga", "lift", "exercise"},
    "sleep": {"sleep", "nap", "rest", "bed"},
    "study": {"study", "read", "learn", "class", "lecture", "homework", "course", "book", "revise"},
    "learning": {"study", "read", "learn", "class", "lecture", "course", "book"},
    "social": {"friend", "friends", "party", "call", "chat", "hang", "visit"},
    "chores": {"clean", "laundry", "dishes", "shop", "grocery", "groceries", "tidy", "vacuum"},
    "commute": {"commute", "drive", "bus", "train", "subway"},
    "leisure": {"watch", "movie", "game", "tv", "play", "show", "relax"},
}


def present_tense(word: str) -> str:
    """Best-effort present tense of a past-tense or -ing verb, lowercased."""
    lower = word.lower()
    if lower in _IRREGULAR:
        return _IRREGULAR[lower]
    if lower.endswith("eed"):
        return lower
    if lower.endswith("ied") and len(lower) > 4:
        return lower[:-3] + "y"
    if lower.endswith("ed") and len(lower) > 3:
        return _restore_stem(lower[:-2])
    if lower.endswith("ing") and len(lower) > 5:
        return _restore_stem(lower[:-3])
    return lower


def _restore_stem(stem: str) -> str:
    if len(stem) >= 3 and stem[-1] == stem[-2] and stem[-1] not in "lsz" and stem[-1] not in _VOWELS:
        return stem[:-1]
    if stem in _E_STEMS:
        return stem + "e"
    if stem[-1] in "vcu" or stem[-1] in "gz" and stem[-2:] not in ("ng", "zz"):
        return stem + "e"
    if len(stem) >= 3 and stem.endswith("at") and stem[-3] not in _VOWELS:
        return stem + "e"
    if len(stem) >= 3 and stem[-1] == "l" and stem[-2] not in _VOWELS and stem[-2] not in "lrw":
        return stem + "e"
    return stem


def _is_verb_form(word: str) -> bool:
    lower = word.lower()
    return lower in _IRREGULAR or lower.endswith("ed") or lower.endswith("ing")


def normalize_title(words: Sequence[str]) -> str:
    """Short present-tense title without pronouns or filler words."""
    kept = [w for w in words if w.lower() not in _DROP_WORDS]
    if not kept:
        return ""
    first = present_tense(kept[0]) if _is_verb_form(kept[0]) else kept[0]
    kept[0] = first[:1].upper() + first[1:]
    return " ".join(kept)


def suggest_tags(words: Sequence[str], allowed: Sequence[str]) -> List[str]:
    """Allowed tags whose name, or a hint for it, appears among the words."""
    vocabulary = {w.lower() for w in words}
    vocabulary |= {present_tense(w) for w in words}
    suggested = []
    for tag in allowed:
        key = tag.lower()
        hints = {key, key.rstrip("s")}
        for hint_key, hint_words in TAG_HINTS.items():
            if hint_key == key or hint_key in key.split():
                hints |= hint_words
        if vocabulary & hints:
            suggested.append(tag)
    return suggested


def parse_duration(body: str) -> float:
    """Minutes described by a duration phrase such as '1 hour and 20 mins'."""
    minutes = 0.0
    last_unit_minutes = 60.0
    for match in _PART_RE.finditer(body):
        amount_text = re.sub(r"\s+", " ", match.group("amount").lower())
        amount = _NUMBER_WORDS.get(amount_text)
        if amount is None:
            amount = float(amount_text)
        unit = match.group("unit").lower()
        last_unit_minutes = 60.0 if unit.startswith("h") else 1.0
        minutes += amount * last_unit_minutes
    if re.search(r"\band\s+a\s+half\s*$", body, re.I):
        minutes += 0.5 * last_unit_minutes
    return minutes


def _clock_from(match, prefix: str) -> ClockTime:
    word = match.group(prefix + "word")
    if word:
        return ClockTime(12, 0, "pm") if word.lower() == "noon" else ClockTime(12, 0, "am")
    meridiem = match.group(prefix + "mer")
    return ClockTime(
        int(match.group(prefix + "h")),
        int(match.group(prefix + "m") or 0),
        meridiem.lower() if meridiem else None,
    )


@dataclass
class Clause:
    """One described activity and the timing cues found for it."""
    text: str
    relation: str = "after"
    words: List[str] = field(default_factory=list)
    duration: Optional[float] = None
    clock_range: Optional[Tuple[ClockTime, ClockTime]] = None
    start_clock: Optional[ClockTime] = None
    context: Optional[Tuple[str, str, Optional[str]]] = None
    yesterday: bool = False

    @property
    def has_timing(self) -> bool:
        return any([self.duration, self.clock_range, self.start_clock, self.context])


def _cut(text: str, match) -> str:
    return text[:match.start()] + " " + text[match.end():]


def parse_clause(text: str) -> Clause:
    clause = Clause(text=text.strip())
    rest = text

    seq = _SEQ_BEFORE_RE.match(rest)
    if seq:
        clause.relation = "before"
        rest = rest[seq.end():]
    else:
        seq = _SEQ_AFTER_RE.match(rest)
        if seq:
            rest = rest[seq.end():]

    clause.yesterday = bool(re.search(r"\byesterday\b", rest, re.I))

    match = _RANGE_RE.search(rest)
    if match:
        clause.clock_range = (_clock_from(match, "s"), _clock_from(match, "e"))
        rest = _cut(rest, match)

    match = _DURATION_RE.search(rest)
    if match:
        clause.duration = parse_duration(match.group("body"))
        rest = _cut(rest, match)

    if clause.clock_range is None:
        match = _START_RE.search(rest)
        if match:
            clause.start_clock = _clock_from(match, "t")
            rest = _cut(rest, match)

    match = _BETWEEN_CONTEXT_RE.search(rest)
    if match:
        clause.context = ("between", match.group("a").lower(), match.group("b").lower())
        rest = _cut(rest, match)
    else:
        match = _CONTEXT_RE.search(rest)
        if match:
            clause.context = (match.group("rel").lower(), match.group("what").lower(), None)
            rest = _cut(rest, match)

    rest = _DAY_WORDS_RE.sub(" ", rest)
    clause.words = _WORD_RE.findall(rest)
    return clause


def split_clauses(text: str) -> List[Clause]:
    """Split a sentence into activity clauses, merging fragments that carry no activity."""
    normalized = re.sub(r"\b([ap])\.m\.?", r"\1m", text, flags=re.I).strip().rstrip(".!")
    pieces = []
    for piece in _SPLIT_RE.split(normalized):
        if piece and piece.strip():
            pieces.extend(_split_on_and(piece.strip()))

    clauses: List[Clause] = []
    carry = ""
    for piece in pieces:
        clause = parse_clause(f"{carry} {piece}".strip() if carry else piece)
        carry = ""
        title = normalize_title(clause.words)
        if not title and not clause.has_timing:
            carry = clause.text
            continue
        if not title and clauses and not clauses[-1].has_timing:
            # "I studied, for 2 hours": timing belongs to the previous activity
            clauses[-1] = parse_clause(f"{clauses[-1].text} {piece}")
            continue
        clauses.append(clause)
    return clauses


def _split_on_and(piece: str) -> List[str]:
    """Split 'ran for 30 mins and read for 1 hour' where each side has its own timing."""
    timings = sorted(
        [m for m in _DURATION_RE.finditer(piece)] + [m for m in _RANGE_RE.finditer(piece)],
        key=lambda m: m.start(),
    )
    if len(timings) < 2:
        return [piece]
    parts, begin = [], 0
    for current, following in zip(timings, timings[1:]):
        between = piece[current.end():following.start()]
        conj = _AND_RE.search(between)
        if conj:
            cut = current.end() + conj.start()
            parts.append(piece[begin:cut])
            begin = current.end() + conj.end()
    parts.append(piece[begin:])
    return [p for p in parts if p.strip()]


def chronological(clauses: Sequence[Clause]) -> List[Clause]:
    """Order clauses in time: 'before that' goes ahead of the previous clause, anything else after it."""
    ordered: List[Clause] = []
    previous_index = -1
    for clause in clauses:
        if clause.relation == "before" and previous_index >= 0:
            position = previous_index
        else:
            position = previous_index + 1
        ordered.insert(position, clause)
        previous_index = position
    return ordered


def _basis(clause: Clause, reference: datetime, tz: tzinfo) -> datetime:
    """Instant that clock times are resolved against: now, or the end of yesterday."""
    if not clause.yesterday:
        return reference
    day = reference.astimezone(tz).date()
    return local_instant(day, time.min, tz) - timedelta(microseconds=1)


class RuleBasedExtractor(BaseExtractor):
    """
    Offline extractor that applies the temporal policy directly.
    """

    def __init__(self, extractor_id: str = "rule_based", model_name: str = "rule-based",
                 default_minutes: int = DEFAULT_EVENT_MINUTES):
        super().__init__(extractor_id, model_name)
        self.default_minutes = default_minutes

    async def generate(self, prompt: ExtractionPrompt, transcript: List[Dict[str, Any]]) -> ExtractorResponse:
        variables = prompt.variables
        tz = load_zone(variables["timezone"])
        reference = parse_instant(variables["now"])
        allowed = list(variables.get("availableTags") or [])

        clauses = split_clauses(variables["text"])
        can_lookup = any(t.get("function", {}).get("name") == LOOKUP_TOOL for t in prompt.tools or [])

        windows = self._lookup_windows(clauses, reference, tz) if can_lookup else []
        answered = self._answered_lookups(transcript)
        pending = [w for w in windows if self._window_key(w) not in answered]
        if pending:
            return ExtractorResponse(
                tool_calls=[
                    ToolCall(name=LOOKUP_TOOL, parameters={"startTime": key[0], "endTime": key[1]})
                    for key in (self._window_key(w) for w in pending)
                ],
                model_used=self.model_name,
                metadata={"extractor_type": "rule_based", "extractor_id": self.extractor_id},
            )

        spans = self._resolve_spans(clauses, reference, tz, answered)
        events = []
        for clause in clauses:
            span = spans[id(clause)]
            events.append({
                "title": normalize_title(clause.words) or "Activity",
                "startTime": format_instant(span.start),
                "endTime": format_instant(span.end),
                "tags": suggest_tags(clause.words, allowed),
                "duration": span.duration_minutes,
            })

        return ExtractorResponse(
            content=json.dumps({"events": events}),
            model_used=self.model_name,
            metadata={
                "extractor_type": "rule_based",
                "extractor_id": self.extractor_id,
                "clauses": len(clauses),
            },
        )

    # Contextual lookups

    def _lookup_windows(self, clauses: Sequence[Clause], reference: datetime, tz: tzinfo) -> List[TimeSpan]:
        windows = []
        for clause in clauses:
            if clause.context:
                window = candidate_range(clause.text, reference, tz)
                if window not in windows:
                    windows.append(window)
        return windows

    @staticmethod
    def _window_key(window: TimeSpan) -> Tuple[str, str]:
        return format_instant(window.start), format_instant(window.end)

    @staticmethod
    def _answered_lookups(transcript: Sequence[Dict[str, Any]]) -> Dict[Tuple[str, str], List[LoggedEventRef]]:
        """Pair each tool result in the transcript with the call that produced it."""
        answered = {}
        issued: List[Dict[str, Any]] = []
        for message in transcript:
            if message.get("role") == "assistant":
                issued.extend(call["function"]["arguments"] for call in message.get("tool_calls") or [])
            elif message.get("role") == "tool" and issued:
                arguments = issued.pop(0)
                key = (arguments.get("startTime"), arguments.get("endTime"))
                try:
                    payload = json.loads(message.get("content") or "{}")
                    answered[key] = [
                        LoggedEventRef(
                            title=item["title"],
                            span=TimeSpan(parse_instant(item["startTime"]), parse_instant(item["endTime"])),
                        )
                        for item in payload.get("events", [])
                    ]
                except (ValueError, KeyError, TypeError):
                    answered[key] = []
        return answered

    def _anchor(self, name: str, clause: Clause, reference: datetime, tz: tzinfo,
                answered: Dict[Tuple[str, str], List[LoggedEventRef]]) -> TimeSpan:
        """Exact span of the referenced logged activity, or the policy's best guess."""
        basis = _basis(clause, reference, tz)
        key = self._window_key(candidate_range(clause.text, reference, tz))
        singular = name[:-1] if name.endswith("s") and len(name) > 4 else name
        found = match_logged_event(singular, answered.get(key, []), basis)
        if found is not None:
            return found.span
        return fallback_anchor(singular, basis, tz)

    # Timing

    def _resolve_spans(self, clauses: Sequence[Clause], reference: datetime, tz: tzinfo,
                       answered: Dict[Tuple[str, str], List[LoggedEventRef]]) -> Dict[int, TimeSpan]:
        """
        Fix explicitly timed and contextual clauses first, then walk backward
        from the reference instant filling in the duration-only ones.
        """
        ordered = list(reversed(chronological(clauses)))
        steps = [self._fixed_bounds(clause, reference, tz, answered) + (clause.duration,) for clause in ordered]
        spans = chain_backward(reference, steps, self.default_minutes)
        return {id(clause): span for clause, span in zip(ordered, spans)}

    def _fixed_bounds(self, clause: Clause, reference: datetime, tz: tzinfo,
                      answered) -> Tuple[Optional[datetime], Optional[datetime]]:
        basis = _basis(clause, reference, tz)
        if clause.clock_range:
            overnight = any(present_tense(w) in _OVERNIGHT_WORDS for w in _WORD_RE.findall(clause.text))
            span = resolve_clock_range(clause.clock_range[0], clause.clock_range[1], basis, tz, overnight)
            return span.start, span.end
        if clause.start_clock:
            return resolve_clock_time(clause.start_clock, basis, tz), None
        if clause.context:
            relation, first, second = clause.context
            if relation == "between":
                return (self._anchor(first, clause, reference, tz, answered).end,
                        self._anchor(second, clause, reference, tz, answered).start)
            anchor = self._anchor(first, clause, reference, tz, answered)
            if relation == "after":
                return anchor.end, None
            return None, anchor.start
        return None, None
