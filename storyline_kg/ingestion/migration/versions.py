"""
Known Response Versions

Version graphs for the analysis response and for individual character and
event records, with structural auto-detection.

Response versions:
    1.0.0  {characters, events, themes: [str]}
    2.0.0  {characters, timeline, themes: [{...}], relationships}
    3.0.0  2.0.0 + {confidence, metadata}

Character versions:
    1.0.0  {name, description, firstAppearance}
    2.0.0  + {importance, aliases}
    3.0.0  + {appearance, personality}

Event versions:
    1.0.0  {pageNumber, title, description, characters}
    2.0.0  + {significance, isFlashback}
    3.0.0  + {chapterNumber, chronologicalOrder}
"""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from storyline_kg.ingestion.migration.registry import (
    MigrationResult,
    SchemaRegistry,
    add_default_field,
    compose,
    rename_field,
    transform_array_items,
)

CURRENT_VERSION = "3.0.0"

RESPONSE_COLLECTIONS = ("characters", "timeline", "themes", "relationships")


# -----------------------------------------------------------------------------
# Detection
# -----------------------------------------------------------------------------


def detect_response_version(data: dict[str, Any]) -> str | None:
    metadata = data.get("metadata")
    if isinstance(metadata, dict) and isinstance(metadata.get("version"), str):
        return metadata["version"]
    if "confidence" in data or "metadata" in data:
        return "3.0.0"
    if "timeline" in data or "relationships" in data:
        return "2.0.0"
    # events, theme names, or characters only: oldest shape
    return "1.0.0"


def detect_character_version(record: dict[str, Any]) -> str:
    if "appearance" in record or "personality" in record:
        return "3.0.0"
    if "importance" in record or "aliases" in record:
        return "2.0.0"
    return "1.0.0"


def detect_event_version(record: dict[str, Any]) -> str:
    if "chapterNumber" in record or "chronologicalOrder" in record:
        return "3.0.0"
    if "significance" in record or "isFlashback" in record:
        return "2.0.0"
    return "1.0.0"


def is_analysis_response(data: Any) -> bool:
    """True when ``data`` looks like a whole analysis response rather than a single record."""
    if not isinstance(data, dict):
        return False
    # event participants and relationship endpoints are not collections
    if "pageNumber" in data or "characterA" in data:
        return False
    return any(key in data for key in (*RESPONSE_COLLECTIONS, "events"))


# -----------------------------------------------------------------------------
# Response registry
# -----------------------------------------------------------------------------


def _theme_from_string(item: Any, index: int) -> Any:
    if not isinstance(item, str):
        return item
    return {
        "id": f"theme-{index}",
        "name": item,
        "description": "",
        "keywords": [],
        "prevalence": 0.5,
    }


def _stamp_metadata(data: dict[str, Any]) -> dict[str, Any]:
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    return {
        **data,
        "metadata": {
            **metadata,
            "version": CURRENT_VERSION,
            "processedAt": metadata.get("processedAt") or datetime.now(timezone.utc).isoformat(),
        },
    }


@lru_cache(maxsize=1)
def response_registry() -> SchemaRegistry:
    """Registry for whole analysis responses."""
    registry = SchemaRegistry(CURRENT_VERSION, detect=detect_response_version)
    registry.register_version("1.0.0", required=("characters",), description="characters/events/theme names")
    registry.register_version("2.0.0", required=RESPONSE_COLLECTIONS, description="timeline and relationships")
    registry.register_version(
        "3.0.0",
        required=(*RESPONSE_COLLECTIONS, "confidence"),
        description="confidence and metadata",
    )

    registry.register_migration(
        "1.0.0",
        "2.0.0",
        compose(
            rename_field("events", "timeline"),
            add_default_field("timeline", factory=list),
            add_default_field("themes", factory=list),
            transform_array_items("themes", _theme_from_string),
            add_default_field("relationships", factory=list),
        ),
        "response 1.0.0 -> 2.0.0",
    )
    registry.register_migration(
        "2.0.0",
        "3.0.0",
        compose(
            *(add_default_field(name, factory=list) for name in RESPONSE_COLLECTIONS),
            add_default_field("confidence", 0.5),
            _stamp_metadata,
        ),
        "response 2.0.0 -> 3.0.0",
    )
    return registry


# -----------------------------------------------------------------------------
# Record registries
# -----------------------------------------------------------------------------


@lru_cache(maxsize=1)
def character_registry() -> SchemaRegistry:
    registry = SchemaRegistry(CURRENT_VERSION, detect=detect_character_version)
    registry.register_version("1.0.0", required=("name",))
    registry.register_version("2.0.0", required=("name",))
    registry.register_version("3.0.0", required=("name",))
    registry.register_migration(
        "1.0.0",
        "2.0.0",
        compose(add_default_field("importance", "supporting"), add_default_field("aliases", factory=list)),
        "character 1.0.0 -> 2.0.0",
    )
    registry.register_migration(
        "2.0.0",
        "3.0.0",
        compose(add_default_field("appearance"), add_default_field("personality")),
        "character 2.0.0 -> 3.0.0",
    )
    return registry


@lru_cache(maxsize=1)
def event_registry() -> SchemaRegistry:
    registry = SchemaRegistry(CURRENT_VERSION, detect=detect_event_version)
    registry.register_version("1.0.0", required=("title",))
    registry.register_version("2.0.0", required=("title",))
    registry.register_version("3.0.0", required=("title",))
    registry.register_migration(
        "1.0.0",
        "2.0.0",
        compose(add_default_field("significance", "moderate"), add_default_field("isFlashback", False)),
        "event 1.0.0 -> 2.0.0",
    )
    registry.register_migration(
        "2.0.0",
        "3.0.0",
        compose(add_default_field("chapterNumber"), add_default_field("chronologicalOrder")),
        "event 2.0.0 -> 3.0.0",
    )
    return registry


def _migrate_records(items: Any, registry: SchemaRegistry) -> tuple[Any, list[str]]:
    if not isinstance(items, list):
        return items, []
    migrated: list[Any] = []
    applied: list[str] = []
    for item in items:
        if not isinstance(item, dict):
            migrated.append(item)
            continue
        result = registry.migrate(item)
        migrated.append(result.data)
        applied.extend(result.applied)
    return migrated, sorted(set(applied))


def migrate_response(data: dict[str, Any], from_version: str | None = None) -> MigrationResult:
    """
    Bring a whole analysis response and its records to the current version.

    Args:
        data: Parsed response object
        from_version: Declared response version; auto-detected when None

    Returns:
        MigrationResult whose ``applied`` lists response and record steps

    Raises:
        MigrationError: If the declared version has no path to current
    """
    result = response_registry().migrate(data, from_version)
    migrated = dict(result.data)

    characters, character_steps = _migrate_records(migrated.get("characters"), character_registry())
    timeline, event_steps = _migrate_records(migrated.get("timeline"), event_registry())
    if "characters" in migrated:
        migrated["characters"] = characters
    if "timeline" in migrated:
        migrated["timeline"] = timeline

    return result.model_copy(
        update={"data": migrated, "applied": [*result.applied, *character_steps, *event_steps]}
    )
