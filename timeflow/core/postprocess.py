"""
Normalization of extracted events: tag filtering, chronological ordering and
degenerate span checks.
"""

from datetime import timedelta
from typing import Sequence

from .errors import DegenerateSpanError
from .schema import ExtractionResult, ProposedEvent, TimeSpan
from .vocabulary import filter_tags
from ..util.logging import logger


def normalize(raw: ExtractionResult, allowed_tags: Sequence[str]) -> ExtractionResult:
    """
    Filter tags to the vocabulary and order events by start instant.

    The sort is stable, so events starting together keep their emitted order.
    Raises DegenerateSpanError for any event that does not end after it starts.
    """
    events = []
    for index, event in enumerate(raw.events):
        if event.span.is_degenerate:
            logger.log_degenerate_span(index, event.title, "rejected")
            raise DegenerateSpanError(index, event.title)
        events.append(ProposedEvent(
            title=event.title,
            tags=filter_tags(event.tags, allowed_tags),
            span=event.span,
        ))

    events.sort(key=lambda e: e.span.start)
    return ExtractionResult(events=tuple(events))


def coerce_degenerate(raw: ExtractionResult, default_minutes: int = 60) -> ExtractionResult:
    """Caller policy: give degenerate events a default-length span from their start."""
    events = []
    for index, event in enumerate(raw.events):
        if event.span.is_degenerate:
            logger.log_degenerate_span(index, event.title, "coerced")
            event = ProposedEvent(
                title=event.title,
                tags=event.tags,
                span=TimeSpan(event.span.start, event.span.start + timedelta(minutes=default_minutes)),
            )
        events.append(event)
    return ExtractionResult(events=tuple(events))
