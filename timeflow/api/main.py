"""
HTTP API for parsing activity descriptions and managing logged events and tags.
"""

from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    EventCreateRequest,
    EventListResponse,
    EventPayload,
    ErrorResponse,
    HealthResponse,
    ParseRequest,
    ParseResponse,
    ResolutionDebugPayload,
    StoredEventResponse,
    TagCreateRequest,
    TagListResponse,
    TagResponse,
)
from ..agents.agent import BaseExtractor
from ..agents.orchestrator import ResolutionOrchestrator
from ..agents.registry import get_extractor
from ..core import config
from ..core.dao import (
    add_events,
    add_tag,
    delete_event,
    delete_tag,
    list_events_between,
    list_tags,
    update_event,
    update_tag,
)
from ..core.db import health_check
from ..core.errors import ResolutionError
from ..core.schema import ExtractionRequest, ProposedEvent, StoredEvent, TimeSpan, format_instant, parse_instant
from ..core.vocabulary import TagVocabulary, store_tag_names
from ..util.logging import logger

# HTTP status per resolution failure code
ERROR_STATUS = {
    "invalid_range": 400,
    "schema_violation": 422,
    "degenerate_span": 422,
    "tool_loop_exceeded": 502,
    "extraction_unavailable": 503,
}

app = FastAPI(
    title="TimeFlow API",
    version=config.VERSION,
    description="Turns free-text activity descriptions into timed, tagged events",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

vocabulary = TagVocabulary(loader=store_tag_names)

for issue in config.validate_config():
    logger.warning(f"Configuration issue: {issue}")


def get_active_extractor() -> BaseExtractor:
    """Dependency returning the configured extraction capability."""
    return get_extractor()


def _event_response(event: StoredEvent) -> StoredEventResponse:
    return StoredEventResponse(
        id=event.id,
        title=event.title,
        startTime=format_instant(event.span.start),
        endTime=format_instant(event.span.end),
        tags=event.tags,
        duration=event.duration_minutes,
    )


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=config.VERSION,
        db_health=db_health,
        extractor=config.get_extractor_provider(),
    )


@app.post("/events/parse", response_model=ParseResponse)
async def parse_events_endpoint(body: ParseRequest, extractor: BaseExtractor = Depends(get_active_extractor)):
    """
    Resolve a free-text description into proposed events. Nothing is stored;
    the caller confirms the proposal with POST /events.
    """
    try:
        request = ExtractionRequest(
            text=body.text,
            reference_instant=parse_instant(body.now) if body.now else datetime.now(timezone.utc),
            timezone=body.timezone or config.DEFAULT_TIMEZONE,
            allowed_tags=body.availableTags if body.availableTags is not None else vocabulary.snapshot(),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    orchestrator = ResolutionOrchestrator(
        extractor,
        degenerate_policy=config.get_degenerate_span_policy(),
        default_minutes=config.DEFAULT_EVENT_MINUTES,
    )
    outcome = await orchestrator.resolve(request)

    debug = None
    if body.debug:
        debug = ResolutionDebugPayload(**outcome.debug.to_dict())
    return ParseResponse(
        events=[EventPayload(**event) for event in outcome.result.to_dict()["events"]],
        debug=debug,
    )


@app.post("/events", response_model=EventListResponse, status_code=201)
def create_events_endpoint(body: EventCreateRequest):
    """Persist a batch of accepted events."""
    try:
        proposed = [
            ProposedEvent(
                title=event.title,
                tags=tuple(event.tags),
                span=TimeSpan(parse_instant(event.startTime), parse_instant(event.endTime)),
            )
            for event in body.events
        ]
        stored = add_events(proposed)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return EventListResponse(events=[_event_response(event) for event in stored])


@app.get("/events", response_model=EventListResponse)
def list_events_endpoint(start: str, end: str):
    """Events starting within [start, end], oldest first."""
    try:
        start_dt, end_dt = parse_instant(start), parse_instant(end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if end_dt < start_dt:
        raise HTTPException(status_code=400, detail="end must not be before start")

    return EventListResponse(events=[_event_response(e) for e in list_events_between(start_dt, end_dt)])


@app.put("/events/{event_id}", response_model=StoredEventResponse)
def update_event_endpoint(event_id: str, body: EventPayload):
    """Edit a stored event; the duration follows the new times."""
    try:
        event = update_event(
            event_id,
            body.title,
            TimeSpan(parse_instant(body.startTime), parse_instant(body.endTime)),
            body.tags,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return _event_response(event)


@app.delete("/events/{event_id}")
def delete_event_endpoint(event_id: str):
    if not delete_event(event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return {"status": "deleted", "id": event_id}


@app.get("/tags", response_model=TagListResponse)
def list_tags_endpoint():
    return TagListResponse(tags=[TagResponse(id=t.id, name=t.name, color=t.color) for t in list_tags()])


@app.post("/tags", response_model=TagResponse, status_code=201)
def create_tag_endpoint(body: TagCreateRequest):
    try:
        tag = add_tag(body.name, body.color)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    vocabulary.refresh()
    return TagResponse(id=tag.id, name=tag.name, color=tag.color)


@app.put("/tags/{tag_id}", response_model=TagResponse)
def update_tag_endpoint(tag_id: str, body: TagCreateRequest):
    try:
        tag = update_tag(tag_id, body.name, body.color)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if tag is None:
        raise HTTPException(status_code=404, detail="Tag not found")
    vocabulary.refresh()
    return TagResponse(id=tag.id, name=tag.name, color=tag.color)


@app.delete("/tags/{tag_id}")
def delete_tag_endpoint(tag_id: str):
    if not delete_tag(tag_id):
        raise HTTPException(status_code=404, detail="Tag not found")
    vocabulary.refresh()
    return {"status": "deleted", "id": tag_id}


@app.exception_handler(ResolutionError)
async def resolution_error_handler(request, exc: ResolutionError):
    """Map resolution failures to a discriminated error body."""
    status_code = ERROR_STATUS.get(exc.code, 500)
    logger.log_operation("api.resolution_error", exc.code, {"path": request.url.path, "status": status_code})
    error = ErrorResponse(error_type=exc.code, message=exc.message, details=exc.details)
    return JSONResponse(status_code=status_code, content=error.model_dump(mode="json"))


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if config.debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(
        status_code=500,
        content=content,
    )
