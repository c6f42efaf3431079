"""Shared fixtures and factories for storyline_kg tests."""

import json

import pytest

from storyline_kg.providers.base import CompletionRequest, CompletionResponse, LLMProvider
from storyline_kg.types.batches import BatchResult, RawBatch
from storyline_kg.types.entities import Character, Significance, Theme, TimelineEvent


def make_character(id: str, name: str, **kwargs) -> Character:
    return Character(id=id, name=name, **kwargs)


def make_event(id: str, page: int, title: str, characters=None, **kwargs) -> TimelineEvent:
    return TimelineEvent(id=id, page_number=page, title=title, characters=characters or [], **kwargs)


def make_batch(index: int, start: int, end: int, **kwargs) -> BatchResult:
    return BatchResult(batch_index=index, start_page=start, end_page=end, **kwargs)


def analysis_text(
    characters=(),
    timeline=(),
    themes=(),
    relationships=(),
    confidence: float = 0.8,
) -> str:
    """Serialize a current-version analysis response."""
    return json.dumps(
        {
            "characters": list(characters),
            "timeline": list(timeline),
            "themes": list(themes),
            "relationships": list(relationships),
            "confidence": confidence,
        }
    )


def raw_batch(index: int, start: int, end: int, text: str) -> RawBatch:
    return RawBatch(raw_text=text, batch_index=index, start_page=start, end_page=end)


class ScriptedProvider(LLMProvider):
    """Provider returning canned answers in order (the last one repeats)."""

    def __init__(self, *answers: str, model: str = "scripted-model") -> None:
        self._answers = list(answers) or ["0.5"]
        self._model = model
        self.requests: list[CompletionRequest] = []

    @property
    def model_name(self) -> str:
        return self._model

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        answer = self._answers.pop(0) if len(self._answers) > 1 else self._answers[0]
        return CompletionResponse(content=answer)


class FailingProvider(LLMProvider):
    """Provider whose every call raises."""

    def __init__(self) -> None:
        self.calls = 0

    @property
    def model_name(self) -> str:
        return "failing-model"

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.calls += 1
        raise ConnectionError("provider unavailable")


@pytest.fixture
def rei_batches() -> list[BatchResult]:
    """Two batches naming the same character differently."""
    first = make_batch(
        0,
        1,
        20,
        characters=[
            make_character(
                "char-rei",
                "Rei",
                description="Young swordswoman with a scar across her left eye",
                first_appearance=3,
                importance="major",
                confidence=0.8,
            )
        ],
        events=[make_event("ev-1", 5, "Rei arrives at the academy", ["char-rei"], significance=Significance.MAJOR)],
        themes=[Theme(id="theme-1", name="Friendship")],
        confidence=0.8,
    )
    second = make_batch(
        1,
        21,
        40,
        characters=[
            make_character(
                "char-rei-ayama",
                "Rei Ayama",
                aliases=["Rei"],
                description="Swordswoman with a scar over her left eye, top of her class",
                first_appearance=22,
                confidence=0.7,
            )
        ],
        events=[make_event("ev-2", 30, "Rei Ayama duels the captain", ["char-rei-ayama"])],
        themes=[Theme(id="theme-2", name="friendship", keywords=["bonds"])],
        confidence=0.7,
    )
    return [first, second]
