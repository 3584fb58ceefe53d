"""
Resolution orchestrator.

Coordinates one resolution: build the instruction payload, run the bounded
tool loop against the extraction capability, validate the structured output
and normalize it into an ExtractionResult.

    request -> prompt -> [tool call -> lookup -> tool result]* -> JSON
            -> schema validation -> degenerate span policy -> tag filter + sort
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .agent import BaseExtractor, ExtractorResponse
from .prompts import build_prompt
from .tools import ToolRouter
from ..api.schemas import ExtractionPayload
from ..core import config
from ..core.errors import ResolutionError, SchemaViolationError, ToolLoopExceededError
from ..core.postprocess import coerce_degenerate, normalize
from ..core.schema import ExtractionRequest, ExtractionResult, ProposedEvent, TimeSpan, parse_instant
from ..util.logging import logger


@dataclass
class ResolutionDebug:
    """Diagnostics for one resolution, returned to callers that ask for them."""
    prompt: str
    response: Optional[str]
    tool_exchanges: List[Dict[str, Any]] = field(default_factory=list)
    extractor: str = ""
    elapsed_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "response": self.response,
            "toolExchanges": self.tool_exchanges,
            "extractor": self.extractor,
            "elapsedMs": self.elapsed_ms,
        }


@dataclass
class ResolutionOutcome:
    result: ExtractionResult
    debug: ResolutionDebug


class ResolutionOrchestrator:
    """
    Runs the extraction capability with at most max_tool_calls lookups.

    degenerate_policy decides what happens to events that do not end after
    they start: "reject" raises DegenerateSpanError, "coerce" gives them a
    default-length span from their start before normalization.
    """

    def __init__(self, extractor: BaseExtractor, tools: Optional[ToolRouter] = None,
                 max_tool_calls: Optional[int] = None, degenerate_policy: str = "reject",
                 default_minutes: int = config.DEFAULT_EVENT_MINUTES):
        if degenerate_policy not in ("reject", "coerce"):
            raise ValueError(f"Unknown degenerate span policy '{degenerate_policy}'")
        self.extractor = extractor
        self.tools = tools or ToolRouter()
        self.max_tool_calls = config.get_max_tool_calls() if max_tool_calls is None else max_tool_calls
        self.degenerate_policy = degenerate_policy
        self.default_minutes = default_minutes

    async def resolve(self, request: ExtractionRequest) -> ResolutionOutcome:
        """
        Resolve one request into chronologically ordered events.

        Raises:
            ToolLoopExceededError: the capability asked for more lookups than allowed
            SchemaViolationError: the final output is not valid JSON for the schema
            DegenerateSpanError: an event ends at or before its start (reject policy)
            ExtractionUnavailableError: the capability could not be reached
        """
        start_time = datetime.now()
        prompt = build_prompt(request, self.tools.tool_specs() if self.max_tool_calls > 0 else [])
        transcript: List[Dict[str, Any]] = []
        exchanges: List[Dict[str, Any]] = []
        calls_made = 0

        logger.log_resolution("started", request.text, {
            "extractor": self.extractor.extractor_id,
            "timezone": request.timezone,
            "allowed_tags": len(request.allowed_tags),
        })

        try:
            while True:
                response = await self.extractor.generate(prompt, transcript)
                if not response.wants_tools:
                    break

                attempted = calls_made + len(response.tool_calls)
                if attempted > self.max_tool_calls:
                    raise ToolLoopExceededError(self.max_tool_calls, attempted)

                calls_made = await self._run_tool_calls(response, request, transcript, exchanges, calls_made)

            raw = self._parse_output(response.content, request)
            if self.degenerate_policy == "coerce":
                raw = coerce_degenerate(raw, self.default_minutes)
            result = normalize(raw, request.allowed_tags)

        except asyncio.CancelledError:
            logger.log_resolution("cancelled", request.text, {"tool_calls": calls_made})
            raise
        except ResolutionError as e:
            logger.log_resolution("failed", request.text, {"error_type": e.code, "error": e.message})
            raise

        elapsed_ms = int((datetime.now() - start_time).total_seconds() * 1000)
        logger.log_resolution("success", request.text, {
            "events": len(result.events),
            "tool_calls": calls_made,
            "elapsed_ms": elapsed_ms,
        })

        debug = ResolutionDebug(
            prompt=prompt.instructions,
            response=response.content,
            tool_exchanges=exchanges,
            extractor=self.extractor.extractor_id,
            elapsed_ms=elapsed_ms,
        )
        return ResolutionOutcome(result=result, debug=debug)

    async def _run_tool_calls(self, response: ExtractorResponse, request: ExtractionRequest,
                              transcript: List[Dict[str, Any]], exchanges: List[Dict[str, Any]],
                              calls_made: int) -> int:
        """Execute requested calls and append them and their results to the transcript."""
        transcript.append({
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {"function": {"name": call.name, "arguments": call.parameters}}
                for call in response.tool_calls
            ],
        })

        for call in response.tool_calls:
            result = await self.tools.call_tool(call.name, call.parameters, default_tz=request.zone)
            calls_made += 1
            transcript.append({
                "role": "tool",
                "tool_name": call.name,
                "content": ToolRouter.format_for_model(result),
            })
            exchange = {
                "tool": call.name,
                "parameters": call.parameters,
                "success": result["success"],
                "dataCount": result["data_count"],
            }
            if not result["success"]:
                exchange["error"] = result.get("error")
            exchanges.append(exchange)

        return calls_made

    def _parse_output(self, content: Optional[str], request: ExtractionRequest) -> ExtractionResult:
        """Validate the final output against the extraction schema."""
        try:
            payload = ExtractionPayload.model_validate_json(content or "")
        except ValidationError as e:
            errors = e.errors()
            logger.log_schema_violation(errors, content)
            raise SchemaViolationError("Extraction output does not match the event schema",
                                       raw_output=content, errors=errors)

        events = []
        for item in payload.events:
            events.append(ProposedEvent(
                title=item.title,
                tags=tuple(item.tags),
                span=TimeSpan(
                    parse_instant(item.startTime, request.zone),
                    parse_instant(item.endTime, request.zone),
                ),
            ))
        return ExtractionResult(events=tuple(events))


async def resolve_events_from_text(text: str, reference_instant_iso: str, timezone_name: str,
                                   allowed_tag_names: Sequence[str],
                                   extractor: Optional[BaseExtractor] = None,
                                   tools: Optional[ToolRouter] = None,
                                   max_tool_calls: Optional[int] = None,
                                   degenerate_policy: Optional[str] = None) -> Dict[str, Any]:
    """
    Resolve free text into events relative to a reference instant.

    Returns {"events": [{title, startTime, endTime, tags, duration}, ...]}
    ordered by start time, with UTC timestamps.
    """
    from .registry import get_extractor

    request = ExtractionRequest.build(text, reference_instant_iso, timezone_name, allowed_tag_names)
    orchestrator = ResolutionOrchestrator(
        extractor or get_extractor(),
        tools=tools,
        max_tool_calls=max_tool_calls,
        degenerate_policy=degenerate_policy or config.get_degenerate_span_policy(),
    )
    outcome = await orchestrator.resolve(request)
    return outcome.result.to_dict()
