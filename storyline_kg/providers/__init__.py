"""
LLM Providers

Provider-agnostic interface for the one external call this package makes:
arbitration of uncertain merges and contradictions.

Modules:
    base: Abstract provider interface and request/response models
    arbitration: Timeout- and retry-bounded client used by resolution stages
    llm/: LLM provider implementations

Design:
    - Providers implement LLMProvider.complete()
    - Only ArbitrationClient calls providers; merge functions stay pure
    - Lazy import to avoid requiring provider SDKs

Example:
    >>> from storyline_kg.providers import ArbitrationClient
    >>> from storyline_kg.providers.llm import OpenAILLMProvider
    >>> arbiter = ArbitrationClient(OpenAILLMProvider(), timeout=10.0)
"""

from storyline_kg.providers.arbitration import ArbitrationClient
from storyline_kg.providers.base import ChatMessage, CompletionRequest, CompletionResponse, LLMProvider

__all__ = ["LLMProvider", "ArbitrationClient", "ChatMessage", "CompletionRequest", "CompletionResponse"]
