"""Tests for JSON extraction, repair and ingest()."""

import pytest

from storyline_kg.errors import ParseError
from storyline_kg.ingestion.parsing import ingest
from storyline_kg.ingestion.parsing.extraction import extract_json
from storyline_kg.ingestion.parsing.repair import (
    balance_brackets,
    normalize_quotes,
    remove_trailing_commas,
    repair_json,
)
from storyline_kg.types.entities import (
    Character,
    Importance,
    Relationship,
    RelationshipStage,
    Significance,
    Theme,
    TimelineEvent,
)
from storyline_kg.types.results import ResponseShape


class TestExtractJson:
    """Tests for extraction strategies."""

    def test_direct(self):
        """Plain JSON is parsed directly."""
        data, method = extract_json('{"characters": []}')
        assert data == {"characters": []}
        assert method == "direct"

    def test_code_block(self):
        """JSON inside a fenced block is found."""
        text = 'Here you go:\n```json\n{"characters": [{"name": "Rei"}]}\n```\nHope it helps.'
        data, method = extract_json(text)
        assert data["characters"][0]["name"] == "Rei"
        assert method == "code_block"

    def test_span(self):
        """Outermost object span is extracted from surrounding prose."""
        data, method = extract_json('The analysis is {"themes": []} as requested.')
        assert data == {"themes": []}
        assert method == "span"

    def test_prefix_label(self):
        """Text after a label such as 'Result:' is tried."""
        data, method = extract_json('Result: [1, 2]', ResponseShape.ARRAY)
        assert data == [1, 2]

    def test_shape_mismatch_rejected(self):
        """An array is not accepted where an object is expected."""
        with pytest.raises(ParseError):
            extract_json("[1, 2, 3]", ResponseShape.OBJECT)

    def test_failure_lists_attempts(self):
        """ParseError records which strategies were tried."""
        with pytest.raises(ParseError) as exc_info:
            extract_json("no json here")
        assert "direct" in exc_info.value.attempts
        assert "code_block" in exc_info.value.attempts


class TestRepairTransforms:
    """Tests for individual repair transforms."""

    def test_single_quotes(self):
        assert normalize_quotes("{'name': 'Rei'}") == '{"name": "Rei"}'

    def test_trailing_commas(self):
        assert remove_trailing_commas('{"a": [1, 2,], }') == '{"a": [1, 2] }'

    def test_trailing_comma_inside_string_kept(self):
        """Commas inside strings are not touched."""
        assert remove_trailing_commas('{"a": ",]"}') == '{"a": ",]"}'

    def test_balance_unterminated(self):
        """Unclosed strings and containers are closed."""
        assert balance_brackets('{"a": [1, 2') == '{"a": [1, 2]}'
        assert balance_brackets('{"a": "unfinished') == '{"a": "unfinished"}'

    def test_dangling_key_gets_null(self):
        assert balance_brackets('{"a":') == '{"a": null}'


class TestRepairJson:
    """Tests for the repair pipeline."""

    def test_truncated_response(self):
        """A response cut mid-array is completed."""
        data, meta = repair_json('{"characters": [{"name": "Rei"}, {"name": "Kai"')
        assert [c["name"] for c in data["characters"]] == ["Rei", "Kai"]
        assert "bracket_balancing" in meta.steps
        assert 0.0 <= meta.confidence <= 1.0

    def test_single_quoted_response(self):
        data, meta = repair_json("{'characters': [], 'confidence': 0.7,}")
        assert data == {"characters": [], "confidence": 0.7}
        assert "quote_fixing" in meta.steps

    def test_unrepairable(self):
        with pytest.raises(ParseError):
            repair_json("I could not analyze these pages.")


class TestIngest:
    """Tests for ingest()."""

    def test_empty_response(self):
        with pytest.raises(ParseError):
            ingest("   ")

    def test_repaired_response_warns(self):
        """Repair is noted in the warnings."""
        result = ingest('{"characters": [{"name": "Rei", "description": "A young swordswoman"},')
        assert result.method == "repaired"
        assert result.repair is not None
        assert any("repair" in w for w in result.warnings)

    def test_migrates_old_response(self):
        """A 1.0.0 response comes out in the current shape."""
        text = '{"characters": [{"name": "Rei", "description": "Swordswoman"}], "events": [], "themes": ["Friendship"]}'
        result = ingest(text)
        assert result.source_version == "1.0.0"
        assert "timeline" in result.data
        assert result.data["themes"][0]["name"] == "Friendship"
        assert result.data["metadata"]["version"] == "3.0.0"
        assert result.migrations

    def test_quality_warnings(self):
        """Short descriptions produce warnings, not errors."""
        result = ingest('{"characters": [{"name": "Rei", "description": "Hero"}], "timeline": [], "confidence": 0.5}')
        assert "Very short description at /characters/0/description" in result.warnings


ENTITIES = [
    Character(
        id="char-rei",
        name="Rei Ayama",
        aliases=["Rei"],
        description="Swordswoman with a scar over her left eye",
        first_appearance=3,
        importance=Importance.MAJOR,
        personality="Protective",
        confidence=0.9,
    ),
    TimelineEvent(
        id="ev-duel",
        page_number=30,
        chapter_number=2,
        title="Rei duels the captain",
        description="A long duel on the training grounds",
        characters=["char-rei", "char-kai"],
        significance=Significance.CRITICAL,
        is_flashback=True,
        chronological_order=1,
        confidence=0.7,
    ),
    Theme(id="theme-friendship", name="Friendship", keywords=["bonds"], prevalence=0.6),
    Relationship(
        id="rel-rei-kai",
        character_a="char-rei",
        character_b="char-kai",
        type="rivals",
        evolution=[RelationshipStage(page_number=30, state="rivals")],
    ),
]


class TestIngestRoundTrip:
    """Serialized entities come back through ingest() unchanged."""

    @pytest.mark.parametrize("entity", ENTITIES, ids=lambda e: type(e).__name__)
    def test_round_trip(self, entity):
        result = ingest(entity.model_dump_json(by_alias=True))

        assert result.method == "direct"
        assert result.source_version is None
        assert type(entity).model_validate(result.data) == entity
