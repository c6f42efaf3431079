"""
OpenAI LLM Provider (LangChain-based)

Implements LLMProvider using LangChain's ChatOpenAI. Only used for
arbitration, so answers are short and temperature is fixed at 0.

Example:
    >>> provider = OpenAILLMProvider(api_key="sk-...", model="gpt-4o-mini")
    >>> request = CompletionRequest(messages=[ChatMessage(role="user", content="0 or 1?")])
    >>> (await provider.complete(request)).content
    "1"
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from storyline_kg.providers.base import CompletionRequest, CompletionResponse, LLMProvider

if TYPE_CHECKING:
    from langchain_openai import ChatOpenAI

logger = logging.getLogger(__name__)


def _extract_token_usage(response: Any) -> tuple[int | None, int | None]:
    """
    Extract token usage from LangChain response metadata.

    Returns:
        (input_tokens, output_tokens)
    """
    usage = getattr(response, "usage_metadata", None)
    if isinstance(usage, dict):
        return usage.get("input_tokens"), usage.get("output_tokens")

    response_metadata = getattr(response, "response_metadata", None)
    if isinstance(response_metadata, dict):
        token_usage = response_metadata.get("token_usage") or {}
        return token_usage.get("prompt_tokens"), token_usage.get("completion_tokens")

    return None, None


def _get_chat_openai(
    api_key: str | None = None,
    model: str = "gpt-4o-mini",
    temperature: float = 0.0,
) -> "ChatOpenAI":
    """
    Get a ChatOpenAI instance.

    Uses lazy import to avoid requiring langchain-openai unless actually used.

    Raises:
        ImportError: If langchain-openai package is not installed
    """
    try:
        from langchain_openai import ChatOpenAI
    except ImportError:
        raise ImportError(
            "OpenAI provider requires the 'langchain-openai' package. "
            "Install with: pip install storyline-kg[openai]"
        )

    kwargs: dict[str, Any] = {"model": model, "temperature": temperature}
    if api_key:
        kwargs["api_key"] = api_key

    return ChatOpenAI(**kwargs)


class OpenAILLMProvider(LLMProvider):
    """
    OpenAI LLM provider implementation using LangChain.

    Args:
        api_key: OpenAI API key. If None, uses OPENAI_API_KEY environment variable.
        model: Model to use (default: "gpt-4o-mini")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
    ) -> None:
        self._api_key = api_key
        self._model = model
        # Lazy initialization - create client on first use
        self._client: ChatOpenAI | None = None

    def _get_client(self) -> "ChatOpenAI":
        if self._client is None:
            self._client = _get_chat_openai(api_key=self._api_key, model=self._model)
        return self._client

    @property
    def model_name(self) -> str:
        return self._model

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        client = self._get_client().bind(max_tokens=request.max_tokens)
        messages = [(m.role, m.content) for m in request.messages]

        response = await client.ainvoke(messages)

        input_tokens, output_tokens = _extract_token_usage(response)
        logger.debug(f"{self._model} completion: {input_tokens} in / {output_tokens} out tokens")

        content = response.content
        if isinstance(content, list):
            content = "".join(part if isinstance(part, str) else part.get("text", "") for part in content)
        return CompletionResponse(content=str(content))
