"""
Typed records shared by the resolution pipeline.
Instants are always timezone-aware datetimes; conversion to and from
ISO-8601 strings happens only at the boundaries through parse_instant and
format_instant.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Dict, List, Optional, Sequence, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def parse_instant(value: Union[str, datetime], default_tz: Optional[tzinfo] = None) -> datetime:
    """
    Parse an ISO-8601 string (or pass through a datetime) into an aware datetime.

    Naive values are interpreted in default_tz (UTC when not given).
    Raises ValueError on unparsable input.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Not an ISO-8601 timestamp: {value!r}")
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=default_tz or timezone.utc)
    return dt


def format_instant(dt: datetime) -> str:
    """Format an aware datetime as a UTC ISO-8601 string with a Z suffix."""
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def load_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ValueError for unknown zones."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name!r}") from e


@dataclass(frozen=True)
class TimeSpan:
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int(round((self.end - self.start).total_seconds() / 60))

    @property
    def is_degenerate(self) -> bool:
        return self.end <= self.start


@dataclass(frozen=True)
class ProposedEvent:
    """An event reconstructed from text, not yet persisted."""
    title: str
    tags: Tuple[str, ...]
    span: TimeSpan

    @property
    def duration_minutes(self) -> int:
        return self.span.duration_minutes

    def to_dict(self) -> Dict:
        return {
            "title": self.title,
            "startTime": format_instant(self.span.start),
            "endTime": format_instant(self.span.end),
            "tags": list(self.tags),
            "duration": self.duration_minutes,
        }


@dataclass(frozen=True)
class ExtractionRequest:
    """One user submission. Built once and never mutated."""
    text: str
    reference_instant: datetime
    timezone: str
    allowed_tags: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.text or not self.text.strip():
            raise ValueError("Input cannot be empty.")
        if self.reference_instant.tzinfo is None:
            raise ValueError("reference_instant must be timezone-aware")
        load_zone(self.timezone)
        # Accept any sequence but store a tuple
        object.__setattr__(self, "allowed_tags", tuple(self.allowed_tags))

    @property
    def zone(self) -> ZoneInfo:
        return load_zone(self.timezone)

    @classmethod
    def build(cls, text: str, reference_instant_iso: str, timezone_name: str,
              allowed_tag_names: Sequence[str]) -> "ExtractionRequest":
        """Build a request from caller-facing string arguments."""
        return cls(
            text=text,
            reference_instant=parse_instant(reference_instant_iso),
            timezone=timezone_name,
            allowed_tags=tuple(allowed_tag_names),
        )


@dataclass(frozen=True)
class ExtractionResult:
    events: Tuple[ProposedEvent, ...] = ()

    def to_dict(self) -> Dict:
        return {"events": [event.to_dict() for event in self.events]}


@dataclass(frozen=True)
class LoggedEventRef:
    """A previously stored event, read-only context for resolution."""
    title: str
    span: TimeSpan
    id: Optional[str] = None

    def to_tool_dict(self) -> Dict:
        return {
            "title": self.title,
            "startTime": format_instant(self.span.start),
            "endTime": format_instant(self.span.end),
        }


@dataclass
class StoredEvent:
    """Row of the events table."""
    id: str
    title: str
    span: TimeSpan
    tags: List[str] = field(default_factory=list)

    @property
    def duration_minutes(self) -> int:
        return self.span.duration_minutes


@dataclass
class TagRecord:
    id: str
    name: str
    color: str
