"""
Instruction payload assembly for the extraction capability.
"""

from typing import Any, Dict, List

from .agent import ExtractionPrompt
from ..api.schemas import ExtractionPayload
from ..core.policy import render_policy
from ..core.schema import ExtractionRequest, format_instant

PROMPT_TEMPLATE = """You are a time tracking assistant. Your job is to parse the user's description of what they did into events, each with a title, start time, end time, tags and duration.

The current time is {now_local} ({now_utc}). Use this as the reference for any relative time expressions.
The user is in the {timezone} timezone. All times in the input are in this timezone. Output every timestamp in ISO 8601 format with its UTC offset.

You have a tool called 'get_logged_events' that retrieves previously logged events within a time range (ISO 8601 startTime and endTime).

{policy}

Here is a list of available tags you can use:
{tags}

Input: {text}

Output:{{
  "events": [
    {{
      "title": "extracted event title",
      "startTime": "start time in ISO format",
      "endTime": "end time in ISO format",
      "tags": ["tag1", "tag2"],
      "duration": duration in minutes
    }}
  ]
}}
"""


def render_tags(tags) -> str:
    if not tags:
        return "(no tags available - leave every tags list empty)"
    return "\n".join(f"- {tag}" for tag in tags)


def build_prompt(request: ExtractionRequest, tools: List[Dict[str, Any]]) -> ExtractionPrompt:
    """Assemble instructions, output schema, tool definitions and raw variables for one request."""
    local_now = request.reference_instant.astimezone(request.zone)
    instructions = PROMPT_TEMPLATE.format(
        now_local=local_now.strftime("%A, %B %d, %Y at %I:%M:%S %p %Z"),
        now_utc=format_instant(request.reference_instant),
        timezone=request.timezone,
        policy=render_policy(),
        tags=render_tags(request.allowed_tags),
        text=request.text.strip(),
    )
    return ExtractionPrompt(
        instructions=instructions,
        schema=ExtractionPayload.model_json_schema(),
        tools=tools,
        variables={
            "text": request.text,
            "now": request.reference_instant,
            "timezone": request.timezone,
            "availableTags": list(request.allowed_tags),
        },
    )
