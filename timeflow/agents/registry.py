"""
Extractor registry.
Builds the configured extraction capability and degrades to the rule-based
extractor when the model service is unavailable.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from .agent import BaseExtractor
from .ollama_agent import OllamaExtractor, check_ollama_health
from .rule_based import RuleBasedExtractor
from ..core import config
from ..util.logging import logger


class ExtractorRegistry:
    """
    Keeps constructed extractors by requested provider so the API reuses one
    client per provider. A fallback is kept under the provider that was asked
    for, so an unreachable Ollama is health-checked once rather than on every request.
    """

    def __init__(self):
        self.extractors: Dict[str, BaseExtractor] = {}
        self.creation_log: List[Dict[str, Any]] = []

    def create(self, provider: Optional[str] = None) -> BaseExtractor:
        """
        Create and register an extractor for provider (defaults to configuration).

        Falls back to the rule-based extractor when Ollama is selected but
        not reachable.
        """
        requested = provider = provider or config.get_extractor_provider()
        if provider not in ("ollama", "rule_based"):
            raise ValueError(f"Unknown extractor provider '{provider}'")

        if provider == "ollama" and not check_ollama_health(config.OLLAMA_HOST):
            logger.warning(f"Ollama not reachable at {config.OLLAMA_HOST}, using rule-based extractor")
            provider = "rule_based"

        if provider == "ollama":
            extractor = OllamaExtractor(model_name=config.OLLAMA_MODEL, host=config.OLLAMA_HOST,
                                        temperature=config.OLLAMA_TEMPERATURE)
        else:
            extractor = RuleBasedExtractor(default_minutes=config.DEFAULT_EVENT_MINUTES)

        self.extractors[requested] = extractor
        self.creation_log.append({
            'timestamp': datetime.now().isoformat(),
            'provider': requested,
            'extractor_id': extractor.extractor_id,
            'extractor_type': type(extractor).__name__,
            'model_name': extractor.model_name,
        })
        logger.info(f"Extractor ready: {extractor.extractor_id} ({extractor.model_name})")
        return extractor

    def get(self, provider: str) -> Optional[BaseExtractor]:
        return self.extractors.get(provider)


_registry = ExtractorRegistry()


def get_extractor(provider: Optional[str] = None) -> BaseExtractor:
    """Return a cached extractor for the provider, creating it on first use."""
    provider = provider or config.get_extractor_provider()
    existing = _registry.get(provider)
    if existing is not None:
        return existing
    return _registry.create(provider)


def reset_registry():
    """Drop cached extractors (used when configuration changes, and in tests)."""
    _registry.extractors.clear()
    _registry.creation_log.clear()
