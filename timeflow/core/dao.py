"""
Data access for logged events and tags, plus the read-only lookup gateway
the extraction capability uses for contextual references.
"""

import json
import re
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .db import get_db, init_db
from .errors import InvalidRangeError
from .schema import LoggedEventRef, ProposedEvent, StoredEvent, TagRecord, TimeSpan, format_instant
from ..util.logging import logger

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def _to_storage(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_storage(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _row_to_event(row) -> StoredEvent:
    event_id, title, start_ts, end_ts, tags = row
    return StoredEvent(
        id=event_id,
        title=title,
        span=TimeSpan(_from_storage(start_ts), _from_storage(end_ts)),
        tags=json.loads(tags or "[]"),
    )


# Events

def add_event(title: str, span: TimeSpan, tags: Sequence[str] = ()) -> StoredEvent:
    """Persist one event and return it with its generated id."""
    return add_events([ProposedEvent(title=title, tags=tuple(tags), span=span)])[0]


def add_events(events: Sequence[ProposedEvent]) -> List[StoredEvent]:
    """Persist a batch of accepted events in a single transaction."""
    stored = []
    for event in events:
        if not event.title or not event.title.strip():
            raise ValueError("Event title is required")
        if event.span.is_degenerate:
            raise ValueError(f"Event '{event.title}' must end after it starts")
        stored.append(StoredEvent(id=uuid.uuid4().hex, title=event.title.strip(),
                                  span=event.span, tags=list(event.tags)))

    with get_db() as conn:
        cursor = conn.cursor()
        cursor.executemany(
            "INSERT INTO events (id, title, start_ts, end_ts, tags, duration) VALUES (?, ?, ?, ?, ?, ?)",
            [
                (e.id, e.title, _to_storage(e.span.start), _to_storage(e.span.end),
                 json.dumps(e.tags), e.duration_minutes)
                for e in stored
            ]
        )
        conn.commit()

    logger.log_operation("store.add_events", "success", {"count": len(stored)})
    return stored


def get_event(event_id: str) -> Optional[StoredEvent]:
    """Get a single event by id."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT id, title, start_ts, end_ts, tags FROM events WHERE id = ?", (event_id,))
        row = cursor.fetchone()
        return _row_to_event(row) if row else None


def update_event(event_id: str, title: str, span: TimeSpan, tags: Sequence[str] = ()) -> Optional[StoredEvent]:
    """
    Replace an event's title, span and tags; the stored duration is recomputed.
    Returns None when the event does not exist.
    """
    if not title or not title.strip():
        raise ValueError("Event title is required")
    if span.is_degenerate:
        raise ValueError(f"Event '{title}' must end after it starts")

    event = StoredEvent(id=event_id, title=title.strip(), span=span, tags=list(tags))
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "UPDATE events SET title = ?, start_ts = ?, end_ts = ?, tags = ?, duration = ? WHERE id = ?",
            (event.title, _to_storage(span.start), _to_storage(span.end), json.dumps(event.tags),
             event.duration_minutes, event_id)
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None

    logger.log_operation("store.update_event", "success", {"id": event_id})
    return event


def delete_event(event_id: str) -> bool:
    """Delete an event. Returns False when it did not exist."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM events WHERE id = ?", (event_id,))
        conn.commit()
        return cursor.rowcount > 0


def list_events_between(start: datetime, end: datetime) -> List[StoredEvent]:
    """Events whose start time lies in [start, end], ascending by start."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT id, title, start_ts, end_ts, tags FROM events "
            "WHERE start_ts >= ? AND start_ts <= ? ORDER BY start_ts ASC",
            (_to_storage(start), _to_storage(end))
        )
        return [_row_to_event(row) for row in cursor.fetchall()]


# Tags

def _check_tag(name: str, color: str) -> str:
    if not name or not name.strip():
        raise ValueError("Tag name is required.")
    if not _HEX_COLOR.match(color or ""):
        raise ValueError("Must be a valid hex color code.")
    return name.strip()


def add_tag(name: str, color: str) -> TagRecord:
    """Create a tag. Names are unique and colors must be #rrggbb."""
    record = TagRecord(id=uuid.uuid4().hex, name=_check_tag(name, color), color=color)
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("INSERT INTO tags (id, name, color) VALUES (?, ?, ?)",
                           (record.id, record.name, record.color))
            conn.commit()
    except sqlite3.IntegrityError as e:
        raise ValueError(f"Tag '{record.name}' already exists") from e

    logger.log_operation("store.add_tag", "success", {"name": record.name})
    return record


def list_tags() -> List[TagRecord]:
    """List all tags ordered by name."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT id, name, color FROM tags ORDER BY name")
        return [TagRecord(id=row[0], name=row[1], color=row[2]) for row in cursor.fetchall()]


def update_tag(tag_id: str, name: str, color: str) -> Optional[TagRecord]:
    """Rename or recolor a tag. Returns None when it does not exist."""
    record = TagRecord(id=tag_id, name=_check_tag(name, color), color=color)
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("UPDATE tags SET name = ?, color = ? WHERE id = ?",
                           (record.name, record.color, tag_id))
            conn.commit()
            if cursor.rowcount == 0:
                return None
    except sqlite3.IntegrityError as e:
        raise ValueError(f"Tag '{record.name}' already exists") from e

    logger.log_operation("store.update_tag", "success", {"name": record.name})
    return record


def delete_tag(tag_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        conn.commit()
        return cursor.rowcount > 0


class EventLookupGateway:
    """
    Read-only view of the store for contextual references.

    Storage failures degrade to an empty result: "no context found" is a
    normal outcome for the resolution policy, not an error.
    """

    def __init__(self, fetch=None):
        self._fetch = fetch or list_events_between

    def lookup(self, range: TimeSpan) -> List[LoggedEventRef]:
        if range.end < range.start:
            raise InvalidRangeError(
                "Lookup range ends before it starts",
                {"start": format_instant(range.start), "end": format_instant(range.end)},
            )

        start_iso, end_iso = format_instant(range.start), format_instant(range.end)
        try:
            events = self._fetch(range.start, range.end)
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Event lookup failed, continuing without context: {e}")
            logger.log_lookup(start_iso, end_iso, 0, status="unavailable")
            return []

        logger.log_lookup(start_iso, end_iso, len(events))
        return [LoggedEventRef(title=e.title, span=e.span, id=e.id) for e in events]


# Initialize database on module import
init_db()
