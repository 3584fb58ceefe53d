"""
Pydantic models: the structured output contract for the extraction
capability, and request/response bodies for the HTTP API.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Extraction output contract

class ExtractedEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(description='A short, present-tense title for the event (e.g., "Work on resume").')
    startTime: str = Field(description="The start time of the event in ISO 8601 format.")
    endTime: str = Field(description="The end time of the event in ISO 8601 format.")
    tags: List[str] = Field(default_factory=list,
                            description="Tags for the event, chosen ONLY from the provided available tags.")
    duration: Optional[float] = Field(default=None, description="The duration of the event in minutes.")

    @field_validator('title')
    @classmethod
    def title_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('title cannot be empty')
        return v.strip()

    @field_validator('startTime', 'endTime')
    @classmethod
    def must_be_iso_timestamp(cls, v):
        text = v.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f'not an ISO 8601 timestamp: {v}')
        return v.strip()


class ExtractionPayload(BaseModel):
    """Final structured output: every activity described in the text."""
    events: List[ExtractedEvent] = Field(description="The events described in the input, in any order.")


# HTTP API

class ParseRequest(BaseModel):
    text: str
    now: Optional[str] = None
    timezone: Optional[str] = None
    availableTags: Optional[List[str]] = None
    debug: bool = False

    @field_validator('text')
    @classmethod
    def text_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('Input cannot be empty.')
        return v


class EventPayload(BaseModel):
    title: str
    startTime: str
    endTime: str
    tags: List[str] = Field(default_factory=list)
    duration: Optional[int] = None


class ResolutionDebugPayload(BaseModel):
    prompt: str
    response: Optional[str] = None
    toolExchanges: List[Dict[str, Any]] = Field(default_factory=list)
    extractor: str
    elapsedMs: int


class ParseResponse(BaseModel):
    events: List[EventPayload]
    debug: Optional[ResolutionDebugPayload] = None


class EventCreateRequest(BaseModel):
    events: List[EventPayload]

    @field_validator('events')
    @classmethod
    def events_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('at least one event is required')
        return v


class StoredEventResponse(EventPayload):
    id: str


class EventListResponse(BaseModel):
    events: List[StoredEventResponse]


class TagCreateRequest(BaseModel):
    name: str
    color: str

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('Tag name is required.')
        return v.strip()

    @field_validator('color')
    @classmethod
    def color_must_be_hex(cls, v):
        if not re.match(r'^#[0-9a-fA-F]{6}$', v):
            raise ValueError('Must be a valid hex color code.')
        return v


class TagResponse(BaseModel):
    id: str
    name: str
    color: str


class TagListResponse(BaseModel):
    tags: List[TagResponse]


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    extractor: str


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)
