"""
Arbitration Client

The only place provider calls happen. Wraps an LLMProvider with a timeout,
a bounded retry policy and JSON answer parsing. Every failure surfaces as
ProviderError so callers can fall back to heuristics.

Example:
    >>> arbiter = ArbitrationClient(provider, timeout=10.0, retries=2)
    >>> answer = await arbiter.ask_json(prompt, system=SYSTEM_PROMPT)
    >>> answer["confidence"]
    0.85
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any

from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from storyline_kg.errors import ParseError, ProviderError
from storyline_kg.ingestion.parsing.extraction import extract_json
from storyline_kg.providers.base import ChatMessage, CompletionRequest, LLMProvider
from storyline_kg.types.results import ResponseShape
from storyline_kg.utils.telemetry import ArbitrationCall, current_stage, record_call

logger = logging.getLogger(__name__)


class ArbitrationClient:
    """
    Timeout- and retry-bounded access to an LLMProvider.

    Args:
        provider: Underlying provider
        timeout: Seconds per attempt before it counts as a failure
        retries: Total attempts (1 = no retry)
        max_tokens: Output budget per call
        retry_wait: Base for exponential backoff between attempts (seconds)
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        timeout: float = 20.0,
        retries: int = 2,
        max_tokens: int = 256,
        retry_wait: float = 0.5,
    ) -> None:
        self._provider = provider
        self._timeout = timeout
        self._retries = max(1, retries)
        self._max_tokens = max_tokens
        self._retry_wait = retry_wait

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    async def _attempt(self, request: CompletionRequest) -> str:
        try:
            response = await asyncio.wait_for(self._provider.complete(request), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Arbitration call timed out after {self._timeout}s") from e
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Arbitration call failed: {e}") from e
        return response.content

    async def ask(self, prompt: str, *, system: str | None = None) -> str:
        """
        Send one prompt and return the raw answer text.

        Raises:
            ProviderError: If every attempt failed or timed out
        """
        messages = []
        if system:
            messages.append(ChatMessage(role="system", content=system))
        messages.append(ChatMessage(role="user", content=prompt))
        request = CompletionRequest(messages=messages, max_tokens=self._max_tokens)

        started = time.perf_counter()
        attempts = 0
        outcome = "ok"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._retries),
                wait=wait_exponential(multiplier=self._retry_wait, max=10),
                retry=retry_if_exception_type(ProviderError),
                reraise=True,
            ):
                with attempt:
                    attempts += 1
                    return await self._attempt(request)
        except ProviderError as e:
            outcome = "timeout" if "timed out" in str(e) else "error"
            logger.debug(f"Arbitration failed after {attempts} attempt(s): {e}")
            raise
        except RetryError as e:
            outcome = "error"
            raise ProviderError(f"Arbitration retries exhausted: {e}") from e
        finally:
            record_call(
                ArbitrationCall(
                    stage=current_stage(),
                    model=self.model_name,
                    outcome=outcome,
                    latency_ms=int((time.perf_counter() - started) * 1000),
                    attempts=attempts,
                )
            )
        raise ProviderError("Arbitration produced no answer")

    async def ask_json(self, prompt: str, *, system: str | None = None) -> dict[str, Any]:
        """
        Send one prompt and parse the answer as a JSON object.

        Raises:
            ProviderError: If the call failed or the answer is not a JSON object
        """
        text = await self.ask(prompt, system=system)
        try:
            data, _ = extract_json(text, ResponseShape.OBJECT)
        except ParseError as e:
            raise ProviderError(f"Arbitration answer was not JSON: {text[:120]!r}") from e
        return data

    async def ask_confidence(self, prompt: str, *, system: str | None = None) -> float:
        """
        Send one prompt whose answer is a bare confidence number.

        Accepts "0.85", "Confidence: 0.85" or {"confidence": 0.85}. A value
        is read as a percentage when it carries "%" or is a whole number
        above 1 ("85", "85%"); "1.5" clamps to 1.0.

        Raises:
            ProviderError: If the call failed or no number could be read
        """
        text = (await self.ask(prompt, system=system)).strip()
        match = re.search(r"(-?\d+(?:\.\d+)?)\s*(%)?", text)
        if match is None:
            raise ProviderError(f"Arbitration answer had no confidence: {text[:120]!r}")
        number, percent = match.group(1), match.group(2)
        value = float(number)
        if percent or (value > 1.0 and "." not in number):
            value /= 100.0
        return max(0.0, min(1.0, value))
