"""
Scripted extractor that replays canned steps without any model.
Used for testing the orchestration loop and for reproducing model misbehavior.
"""

import json
from typing import Any, Dict, List, Sequence, Union

from .agent import BaseExtractor, ExtractionPrompt, ExtractorResponse, ToolCall
from ..core.errors import ExtractionUnavailableError

Step = Union[ExtractorResponse, ToolCall, List[ToolCall], Dict[str, Any], str]


class ScriptedExtractor(BaseExtractor):
    """
    Replays one scripted step per generate() call.

    A step may be an ExtractorResponse (returned as is), a ToolCall or list of
    ToolCalls (returned as a tool request), a dict (returned as JSON content)
    or a str (returned as raw content, which need not be valid JSON).
    Every call is recorded in self.calls for inspection.
    """

    def __init__(self, steps: Sequence[Step], extractor_id: str = "scripted",
                 model_name: str = "scripted-model", repeat_last: bool = False):
        super().__init__(extractor_id, model_name)
        self.steps = list(steps)
        self.repeat_last = repeat_last
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, prompt: ExtractionPrompt, transcript: List[Dict[str, Any]]) -> ExtractorResponse:
        self.calls.append({"prompt": prompt, "transcript": [dict(m) for m in transcript]})

        if not self.steps:
            raise ExtractionUnavailableError("Scripted extractor has no steps left")
        step = self.steps[0] if self.repeat_last and len(self.steps) == 1 else self.steps.pop(0)

        if isinstance(step, ExtractorResponse):
            return step
        if isinstance(step, ToolCall):
            return self._response(tool_calls=[step])
        if isinstance(step, list):
            return self._response(tool_calls=list(step))
        if isinstance(step, dict):
            return self._response(content=json.dumps(step))
        return self._response(content=str(step))

    def _response(self, **kwargs) -> ExtractorResponse:
        return ExtractorResponse(
            model_used=self.model_name,
            metadata={"extractor_type": "scripted", "extractor_id": self.extractor_id},
            **kwargs,
        )

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status["steps_remaining"] = len(self.steps)
        return status
