"""
Resilient generation client.

Probe, bounded retries with growing timeouts, tolerant JSON parsing and
deterministic fallbacks around LangChain chat models.
"""

from testgen.core.generation.json_repair import ParseOutcome, extract_json, parse_or_fallback
from testgen.core.generation.providers import (
    GenerationProvider,
    LangChainProvider,
    MockProvider,
    create_provider,
)
from testgen.core.generation.resilient_client import GenerationResult, ResilientGenerationClient

__all__ = [
    "GenerationProvider",
    "LangChainProvider",
    "MockProvider",
    "create_provider",
    "GenerationResult",
    "ResilientGenerationClient",
    "ParseOutcome",
    "extract_json",
    "parse_or_fallback",
]
