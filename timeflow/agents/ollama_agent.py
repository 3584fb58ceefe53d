"""
Ollama-backed extraction capability.
Sends the instruction payload as the system message, advertises the lookup
tool and constrains the final answer with the output JSON schema.
"""

import ollama
from typing import List, Dict, Any, Optional
from datetime import datetime

from .agent import BaseExtractor, ExtractionPrompt, ExtractorResponse, ToolCall
from ..core.config import OLLAMA_HOST, OLLAMA_MODEL, OLLAMA_TEMPERATURE
from ..core.errors import ExtractionUnavailableError
from ..util.logging import logger


class OllamaExtractor(BaseExtractor):
    """
    Extractor implementation that uses a local Ollama model with tool calling
    and structured outputs.
    """

    def __init__(self, extractor_id: str = "ollama", model_name: str = OLLAMA_MODEL,
                 host: str = OLLAMA_HOST, temperature: float = OLLAMA_TEMPERATURE,
                 client: Optional[ollama.AsyncClient] = None):
        super().__init__(extractor_id, model_name)
        self.host = host
        self.temperature = temperature
        self.client = client or ollama.AsyncClient(host=host)

    async def generate(self, prompt: ExtractionPrompt, transcript: List[Dict[str, Any]]) -> ExtractorResponse:
        messages = self._build_ollama_messages(prompt, transcript)
        start_time = datetime.now()

        try:
            response = await self.client.chat(
                model=self.model_name,
                messages=messages,
                tools=prompt.tools or None,
                format=prompt.schema,
                options={'temperature': self.temperature},
            )
        except ollama.ResponseError as e:
            logger.error(f"Ollama model error: {e}")
            raise ExtractionUnavailableError(f"Ollama model error: {e}")
        except ConnectionError as e:
            logger.error(f"Ollama unreachable at {self.host}: {e}")
            raise ExtractionUnavailableError(f"Ollama unreachable at {self.host}")

        processing_time = int((datetime.now() - start_time).total_seconds() * 1000)

        message = response['message']
        tool_calls = [
            ToolCall(name=call['function']['name'], parameters=dict(call['function']['arguments'] or {}))
            for call in (message.get('tool_calls') or [])
        ]

        return ExtractorResponse(
            content=None if tool_calls else (message.get('content') or ''),
            tool_calls=tool_calls,
            model_used=self.model_name,
            processing_time_ms=processing_time,
            metadata={
                'extractor_type': 'ollama',
                'extractor_id': self.extractor_id,
                'done_reason': response.get('done_reason'),
            },
        )

    def _build_ollama_messages(self, prompt: ExtractionPrompt, transcript: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """System instructions, the raw user text, then any tool exchanges so far."""
        messages = [
            {'role': 'system', 'content': prompt.instructions},
            {'role': 'user', 'content': prompt.variables.get('text', '')},
        ]
        messages.extend(transcript)
        return messages

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({
            'host': self.host,
            'ollama_available': check_ollama_health(self.host),
        })
        return status


def check_ollama_health(host: str = OLLAMA_HOST) -> bool:
    """
    Check Ollama service health.
    Used by the extractor registry and the health endpoint.
    """
    try:
        ollama.Client(host=host).list()
        return True
    except Exception:
        return False
