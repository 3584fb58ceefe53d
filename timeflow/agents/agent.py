"""
Extraction capability interface.

An extractor turns an instruction payload into schema-conforming JSON. Each
generate() call is one request/response step: the extractor either asks for
tool calls or returns its final content. The orchestrator owns the loop.
"""

from typing import List, Dict, Any, Optional
from dataclasses import dataclass
from abc import ABC, abstractmethod


@dataclass
class ToolCall:
    """A tool invocation requested by an extractor."""
    name: str
    parameters: Dict[str, Any]


@dataclass
class ExtractionPrompt:
    """Everything the capability receives for one resolution."""
    instructions: str
    schema: Dict[str, Any]
    tools: List[Dict[str, Any]]
    variables: Dict[str, Any]


@dataclass
class ExtractorResponse:
    """One step of output from an extractor."""
    content: Optional[str] = None
    tool_calls: List[ToolCall] = None
    model_used: str = ""
    processing_time_ms: int = 0
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.tool_calls is None:
            self.tool_calls = []
        if self.metadata is None:
            self.metadata = {}

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class BaseExtractor(ABC):
    """
    Abstract base class for extraction capabilities.

    transcript holds the tool exchanges so far as chat messages:
    {"role": "assistant", "tool_calls": [...]} followed by
    {"role": "tool", "tool_name": ..., "content": <json>} per call.
    """

    def __init__(self, extractor_id: str, model_name: str):
        self.extractor_id = extractor_id
        self.model_name = model_name

    @abstractmethod
    async def generate(self, prompt: ExtractionPrompt, transcript: List[Dict[str, Any]]) -> ExtractorResponse:
        pass

    def get_status(self) -> Dict[str, Any]:
        """Get current status of this extractor."""
        return {
            "extractor_id": self.extractor_id,
            "model_name": self.model_name,
            "extractor_type": self.__class__.__name__,
            "status": "ready"
        }
