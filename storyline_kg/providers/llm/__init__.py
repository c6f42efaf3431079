"""
LLM Provider Implementations

Implementations import their SDKs lazily; install the matching extra.
"""

from storyline_kg.providers.llm.openai import OpenAILLMProvider

__all__ = ["OpenAILLMProvider"]
