"""
Failure types raised by the resolution pipeline.
Every failure surfaced to callers is a ResolutionError carrying a stable code.
"""

from typing import Any, List, Optional


class ResolutionError(Exception):
    """Base class for resolution failures."""

    code = "resolution_failed"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error_type": self.code, "message": self.message, "details": self.details}


class InvalidRangeError(ResolutionError):
    """Lookup range whose end precedes its start."""

    code = "invalid_range"


class ToolLoopExceededError(ResolutionError):
    """The extraction capability asked for more tool calls than allowed."""

    code = "tool_loop_exceeded"

    def __init__(self, limit: int, attempted: int):
        super().__init__(
            f"Extraction requested {attempted} tool calls, limit is {limit}",
            {"limit": limit, "attempted": attempted},
        )
        self.limit = limit
        self.attempted = attempted


class SchemaViolationError(ResolutionError):
    """Structured output did not match the extraction schema."""

    code = "schema_violation"

    def __init__(self, message: str, raw_output: Any = None, errors: Optional[List[Any]] = None):
        super().__init__(message, {"errors": [str(e) for e in (errors or [])]})
        self.raw_output = raw_output
        self.errors = errors or []


class DegenerateSpanError(ResolutionError):
    """An event's end instant is not strictly after its start instant."""

    code = "degenerate_span"

    def __init__(self, index: int, title: str):
        super().__init__(
            f"Event {index} ('{title}') ends at or before it starts",
            {"index": index, "title": title},
        )
        self.index = index
        self.title = title


class ExtractionUnavailableError(ResolutionError):
    """The extraction capability could not be reached or returned an error."""

    code = "extraction_unavailable"
