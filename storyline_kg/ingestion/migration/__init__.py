"""
Schema Migration

Upgrades parsed responses from older shapes to the current one.

Modules:
    registry: Version graph, BFS path search, transform builders
    versions: Known response/character/event versions and detection
"""

from storyline_kg.ingestion.migration.registry import (
    MigrationResult,
    SchemaRegistry,
    add_default_field,
    compose,
    remove_field,
    rename_field,
    transform_array_items,
)
from storyline_kg.ingestion.migration.versions import (
    CURRENT_VERSION,
    character_registry,
    event_registry,
    migrate_response,
    response_registry,
)

__all__ = [
    "SchemaRegistry",
    "MigrationResult",
    "rename_field",
    "add_default_field",
    "remove_field",
    "transform_array_items",
    "compose",
    "CURRENT_VERSION",
    "response_registry",
    "character_registry",
    "event_registry",
    "migrate_response",
]
