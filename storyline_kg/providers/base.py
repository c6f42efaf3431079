"""
Abstract Provider Interface

The model-calling client is an external collaborator. Everything this
package needs from it is one async completion call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class CompletionRequest(BaseModel):
    """Messages plus an output token budget."""

    messages: list[ChatMessage]
    max_tokens: int = Field(default=256, gt=0)


class CompletionResponse(BaseModel):
    content: str


class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Run one chat completion."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Current model name."""
        ...
