"""Tests for the schema registry and known response versions."""

import pytest

from storyline_kg.errors import MigrationError
from storyline_kg.ingestion.migration import (
    CURRENT_VERSION,
    SchemaRegistry,
    add_default_field,
    character_registry,
    event_registry,
    migrate_response,
    rename_field,
)
from storyline_kg.ingestion.migration.versions import detect_response_version


def _linear_registry() -> SchemaRegistry:
    registry = SchemaRegistry("3.0.0")
    for version in ("1.0.0", "2.0.0", "3.0.0"):
        registry.register_version(version)
    registry.register_migration("1.0.0", "2.0.0", rename_field("old", "new"))
    registry.register_migration("2.0.0", "3.0.0", add_default_field("extra", 1))
    return registry


class TestSchemaRegistry:
    """Tests for SchemaRegistry."""

    def test_find_path_bfs(self):
        """Shortest path is found through intermediate versions."""
        path = _linear_registry().find_path("1.0.0", "3.0.0")
        assert [(m.from_version, m.to_version) for m in path] == [("1.0.0", "2.0.0"), ("2.0.0", "3.0.0")]

    def test_find_path_same_version(self):
        assert _linear_registry().find_path("2.0.0", "2.0.0") == []

    def test_find_path_unreachable(self):
        """Migrations only run forward."""
        assert _linear_registry().find_path("3.0.0", "1.0.0") is None

    def test_shortcut_preferred(self):
        """A direct edge beats a two-step path."""
        registry = _linear_registry()
        registry.register_migration("1.0.0", "3.0.0", add_default_field("shortcut", True))
        path = registry.find_path("1.0.0", "3.0.0")
        assert len(path) == 1

    def test_migrate_applies_steps_in_order(self):
        result = _linear_registry().migrate({"old": 5}, "1.0.0")
        assert result.data == {"new": 5, "extra": 1}
        assert len(result.applied) == 2

    def test_migrate_does_not_modify_input(self):
        data = {"old": 5}
        _linear_registry().migrate(data, "1.0.0")
        assert data == {"old": 5}

    def test_unknown_version(self):
        with pytest.raises(MigrationError) as exc_info:
            _linear_registry().migrate({}, "9.9.9")
        assert exc_info.value.from_version == "9.9.9"

    def test_no_path(self):
        with pytest.raises(MigrationError):
            _linear_registry().migrate({}, "3.0.0", "1.0.0")

    def test_failing_step_wrapped(self):
        """An exception inside a step becomes MigrationError."""
        registry = SchemaRegistry("2.0.0")
        registry.register_version("1.0.0")
        registry.register_version("2.0.0")

        def explode(data):
            raise KeyError("boom")

        registry.register_migration("1.0.0", "2.0.0", explode)
        with pytest.raises(MigrationError):
            registry.migrate({}, "1.0.0")

    def test_register_unknown_version_rejected(self):
        registry = SchemaRegistry("1.0.0")
        registry.register_version("1.0.0")
        with pytest.raises(ValueError):
            registry.register_migration("1.0.0", "2.0.0", rename_field("a", "b"))


class TestVersionDetection:
    """Tests for structural version detection."""

    def test_metadata_version_wins(self):
        assert detect_response_version({"metadata": {"version": "2.0.0"}, "timeline": []}) == "2.0.0"

    def test_confidence_means_current(self):
        assert detect_response_version({"characters": [], "confidence": 0.5}) == "3.0.0"

    def test_timeline_means_v2(self):
        assert detect_response_version({"characters": [], "timeline": []}) == "2.0.0"

    def test_events_means_v1(self):
        assert detect_response_version({"characters": [], "events": []}) == "1.0.0"

    def test_character_record_versions(self):
        registry = character_registry()
        assert registry.detect_version({"name": "Rei"}) == "1.0.0"
        assert registry.detect_version({"name": "Rei", "importance": "major"}) == "2.0.0"
        assert registry.detect_version({"name": "Rei", "personality": "calm"}) == "3.0.0"

    def test_event_record_versions(self):
        registry = event_registry()
        assert registry.detect_version({"title": "Duel"}) == "1.0.0"
        assert registry.detect_version({"title": "Duel", "isFlashback": True}) == "2.0.0"
        assert registry.detect_version({"title": "Duel", "chapterNumber": 3}) == "3.0.0"


class TestMigrateResponse:
    """Tests for whole-response migration."""

    def test_v1_to_current(self):
        data = {
            "characters": [{"name": "Rei", "description": "Swordswoman", "firstAppearance": 3}],
            "events": [{"pageNumber": 5, "title": "Arrival", "description": "Rei arrives", "characters": ["Rei"]}],
            "themes": ["Friendship", "Rivalry"],
        }
        result = migrate_response(data)

        assert result.from_version == "1.0.0"
        assert result.to_version == CURRENT_VERSION
        migrated = result.data
        assert "events" not in migrated
        assert migrated["timeline"][0]["significance"] == "moderate"
        assert migrated["timeline"][0]["isFlashback"] is False
        assert migrated["characters"][0]["importance"] == "supporting"
        assert migrated["characters"][0]["aliases"] == []
        assert [t["name"] for t in migrated["themes"]] == ["Friendship", "Rivalry"]
        assert migrated["relationships"] == []
        assert migrated["confidence"] == 0.5

    def test_declared_version_without_path(self):
        with pytest.raises(MigrationError):
            migrate_response({"characters": []}, from_version="0.1.0")

    def test_current_response_unchanged(self):
        data = {"characters": [], "timeline": [], "themes": [], "relationships": [], "confidence": 0.9}
        result = migrate_response(data)
        assert result.data["confidence"] == 0.9
        assert result.applied == []
