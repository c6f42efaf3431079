"""Tests for contradiction detection and resolution."""

from unittest.mock import AsyncMock

import pytest

from conftest import make_event
from storyline_kg.errors import ContradictionUnresolved, ProviderError
from storyline_kg.ingestion.resolution.contradictions import (
    REVIEW_MARKER,
    ContradictionResolver,
    EventCombiner,
    is_same_event,
)
from storyline_kg.types.entities import Significance
from storyline_kg.types.results import ContradictionType, MatchDecision, Resolution, Severity


def _confrontation(page_a=40, page_b=46, conf_a=0.9, conf_b=0.4):
    a = make_event("ev-a", page_a, "Confrontation", ["c1", "c2"], description="Rei faces the captain", confidence=conf_a)
    b = make_event("ev-b", page_b, "Confrontation", ["c1", "c2"], description="Rei faces the captain", confidence=conf_b)
    return a, b


class TestDetection:
    """Tests for ContradictionResolver.detect()."""

    def test_page_difference_beyond_tolerance(self):
        a, b = _confrontation()
        found = ContradictionResolver().detect(a, b)

        assert len(found) == 1
        assert found[0].type == ContradictionType.TIMELINE
        assert found[0].severity == Severity.MAJOR
        assert found[0].field == "page_number"

    def test_page_difference_within_tolerance(self):
        a, b = _confrontation(page_a=40, page_b=45)
        assert ContradictionResolver().detect(a, b) == []

    def test_flashback_and_significance(self):
        a = make_event("a", 10, "Memory of home", ["c1"], is_flashback=True, significance=Significance.MAJOR)
        b = make_event("b", 10, "Memory of home", ["c1"], is_flashback=False)
        fields = {c.field for c in ContradictionResolver().detect(a, b)}
        assert fields == {"is_flashback", "significance"}

    def test_same_event(self):
        a = make_event("x", 10, "Rei duels the captain", ["c1"])
        b = make_event("y", 12, "Rei duels the captain", ["c1", "c2"])
        c = make_event("z", 12, "Rei duels the captain", ["c3"])
        assert is_same_event(a, b)
        assert not is_same_event(a, c)


class TestResolution:
    """Tests for the resolution state machine."""

    @pytest.mark.asyncio
    async def test_confident_source_wins(self):
        """The more confident report wins and the gap is the confidence."""
        a, b = _confrontation()
        resolver = ContradictionResolver()
        (contradiction,) = resolver.detect(a, b)

        result = await resolver.resolve(contradiction, a, b)

        assert result.resolution == Resolution.USE_A
        assert result.confidence >= 0.3
        assert result.method == "heuristic"

    @pytest.mark.asyncio
    async def test_less_confident_a_loses(self):
        a, b = _confrontation(conf_a=0.3, conf_b=0.9)
        resolver = ContradictionResolver()
        (contradiction,) = resolver.detect(a, b)
        result = await resolver.resolve(contradiction, a, b)
        assert result.resolution == Resolution.USE_B

    @pytest.mark.asyncio
    async def test_minor_disagreement_merges(self):
        a = make_event("a", 10, "Duel", ["c1"], significance=Significance.MAJOR, confidence=0.6)
        b = make_event("b", 10, "Duel", ["c1"], significance=Significance.MINOR, confidence=0.6)
        resolver = ContradictionResolver()
        (contradiction,) = resolver.detect(a, b)

        result = await resolver.resolve(contradiction, a, b)
        merged, reviews = resolver.apply(a, b, [result])

        assert result.resolution == Resolution.MERGE
        assert merged.significance == Significance.MAJOR
        assert reviews == []

    @pytest.mark.asyncio
    async def test_no_provider_flags(self):
        """Comparable confidence on a major conflict with no provider is flagged at 0.3."""
        a, b = _confrontation(conf_a=0.6, conf_b=0.6)
        resolver = ContradictionResolver()
        (contradiction,) = resolver.detect(a, b)

        result = await resolver.resolve(contradiction, a, b)

        assert result.resolution == Resolution.FLAG_FOR_REVIEW
        assert result.confidence == 0.3
        assert result.method == "no_provider"

    @pytest.mark.asyncio
    async def test_llm_arbitration(self):
        arbiter = AsyncMock()
        arbiter.ask_json.return_value = {"choice": "B", "confidence": 0.9, "reasoning": "Page 46 shows the fight"}
        a, b = _confrontation(conf_a=0.6, conf_b=0.6)
        resolver = ContradictionResolver(arbiter)
        (contradiction,) = resolver.detect(a, b)

        result = await resolver.resolve(contradiction, a, b)

        assert result.resolution == Resolution.USE_B
        assert result.method == "llm"
        assert result.confidence == 0.9
        arbiter.ask_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_decisive_heuristic_skips_llm(self):
        arbiter = AsyncMock()
        a, b = _confrontation()
        resolver = ContradictionResolver(arbiter)
        (contradiction,) = resolver.detect(a, b)

        await resolver.resolve(contradiction, a, b)

        arbiter.ask_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_failure_flags(self):
        arbiter = AsyncMock()
        arbiter.ask_json.side_effect = ProviderError("timed out")
        a, b = _confrontation(conf_a=0.6, conf_b=0.6)
        resolver = ContradictionResolver(arbiter)
        (contradiction,) = resolver.detect(a, b)

        result = await resolver.resolve(contradiction, a, b)

        assert result.resolution == Resolution.FLAG_FOR_REVIEW
        assert result.confidence == 0.2
        assert result.method == "fallback"

    @pytest.mark.asyncio
    async def test_unknown_choice_flags(self):
        arbiter = AsyncMock()
        arbiter.ask_json.return_value = {"choice": "C", "confidence": 0.9}
        a, b = _confrontation(conf_a=0.6, conf_b=0.6)
        resolver = ContradictionResolver(arbiter)
        (contradiction,) = resolver.detect(a, b)

        result = await resolver.resolve(contradiction, a, b)

        assert result.resolution == Resolution.FLAG_FOR_REVIEW
        assert result.method == "fallback"


class TestApplication:
    """Tests for applying resolutions."""

    @pytest.mark.asyncio
    async def test_use_a_keeps_page(self):
        a, b = _confrontation()
        merged, resolutions, reviews = await ContradictionResolver().reconcile(a, b)

        assert merged.page_number == 40
        assert resolutions[0].resolution == Resolution.USE_A
        assert reviews == []

    @pytest.mark.asyncio
    async def test_flag_keeps_a_and_marks(self):
        """A flagged field keeps side A's value and the description is marked."""
        a, b = _confrontation(conf_a=0.6, conf_b=0.6)
        merged, _, reviews = await ContradictionResolver().reconcile(a, b)

        assert merged.page_number == 40
        assert REVIEW_MARKER in merged.description
        assert len(reviews) == 1
        assert reviews[0].entity_id == "ev-a"
        assert isinstance(reviews[0].as_error(), ContradictionUnresolved)

    @pytest.mark.asyncio
    async def test_marker_added_once(self):
        a, b = _confrontation(conf_a=0.6, conf_b=0.6)
        resolver = ContradictionResolver()
        merged, _, _ = await resolver.reconcile(a, b)
        again, _, _ = await resolver.reconcile(merged, b)
        assert again.description.count(REVIEW_MARKER) == 1

    @pytest.mark.asyncio
    async def test_event_combiner_collects(self):
        a, b = _confrontation(conf_a=0.6, conf_b=0.6)
        combiner = EventCombiner(ContradictionResolver())

        merged = await combiner(a, b, MatchDecision(index_a=0, index_b=1, score=0.95, reason="auto"))

        assert merged.id == "ev-a"
        assert len(combiner.resolutions) == 1
        assert len(combiner.reviews) == 1
