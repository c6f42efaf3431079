"""
Merge Policy

Pure functions combining two records of the same entity. The first argument
is the survivor: its id is kept.

Rules:
    - Aliases are unioned and the absorbed record's name becomes an alias
    - Earliest first appearance / lowest page number wins
    - Longer description wins; two comparable, different descriptions are
      concatenated
    - Higher importance / significance wins
    - Flashback flags are OR'd; participant and keyword lists are unioned
"""

from __future__ import annotations

from typing import Any, TypeVar

from storyline_kg.types.entities import (
    IMPORTANCE_RANK,
    SIGNIFICANCE_RANK,
    Character,
    Relationship,
    RelationshipStage,
    Theme,
    TimelineEvent,
)
from storyline_kg.utils.text import normalize_name, token_jaccard

E = TypeVar("E", Character, TimelineEvent, Theme, Relationship)

COMPARABLE_CONFIDENCE = 0.1
DISTINCT_TEXT_OVERLAP = 0.5


def _ordered_union(*groups: list[str], exclude: set[str] | frozenset[str] = frozenset()) -> list[str]:
    seen = set(exclude)
    result: list[str] = []
    for group in groups:
        for item in group:
            key = normalize_name(item)
            if key and key not in seen:
                seen.add(key)
                result.append(item)
    return result


def merge_text(a: str, b: str, confidence_a: float = 0.5, confidence_b: float = 0.5) -> str:
    """
    Combine two descriptions.

    Keeps the longer one, unless both sources are comparably confident and
    the texts say different things, in which case both are kept.
    """
    a, b = a.strip(), b.strip()
    if not a or not b or a == b:
        return a or b
    if a in b or b in a:
        return a if len(a) >= len(b) else b
    comparable = abs(confidence_a - confidence_b) <= COMPARABLE_CONFIDENCE
    if comparable and token_jaccard(a, b) < DISTINCT_TEXT_OVERLAP:
        return f"{a} {b}"
    return a if len(a) >= len(b) else b


def _longer(a: str | None, b: str | None) -> str | None:
    if not a:
        return b
    if not b:
        return a
    return a if len(a) >= len(b) else b


def merge_characters(keep: Character, other: Character) -> Character:
    aliases = _ordered_union(keep.aliases, other.aliases, [other.name], exclude={normalize_name(keep.name)})
    importance = max(keep.importance, other.importance, key=lambda i: IMPORTANCE_RANK[i])
    return keep.model_copy(
        update={
            "aliases": aliases,
            "first_appearance": min(keep.first_appearance, other.first_appearance),
            "description": merge_text(keep.description, other.description, keep.confidence, other.confidence),
            "importance": importance,
            "appearance": _longer(keep.appearance, other.appearance),
            "personality": _longer(keep.personality, other.personality),
            "confidence": max(keep.confidence, other.confidence),
        }
    )


def merge_events(keep: TimelineEvent, other: TimelineEvent) -> TimelineEvent:
    significance = max(keep.significance, other.significance, key=lambda s: SIGNIFICANCE_RANK[s])
    return keep.model_copy(
        update={
            "page_number": min(keep.page_number, other.page_number),
            "chapter_number": keep.chapter_number if keep.chapter_number is not None else other.chapter_number,
            "description": merge_text(keep.description, other.description, keep.confidence, other.confidence),
            "characters": list(dict.fromkeys([*keep.characters, *other.characters])),
            "significance": significance,
            "is_flashback": keep.is_flashback or other.is_flashback,
            "chronological_order": (
                keep.chronological_order if keep.chronological_order is not None else other.chronological_order
            ),
            "confidence": max(keep.confidence, other.confidence),
        }
    )


def merge_themes(keep: Theme, other: Theme) -> Theme:
    return keep.model_copy(
        update={
            "description": merge_text(keep.description, other.description, keep.confidence, other.confidence),
            "keywords": _ordered_union(keep.keywords, other.keywords),
            "prevalence": max(keep.prevalence, other.prevalence),
            "confidence": max(keep.confidence, other.confidence),
        }
    )


def merge_relationships(keep: Relationship, other: Relationship) -> Relationship:
    stages: dict[tuple[int, str], RelationshipStage] = {}
    for stage in [*keep.evolution, *other.evolution]:
        stages.setdefault((stage.page_number, stage.state.strip().lower()), stage)
    evolution = sorted(stages.values(), key=lambda s: s.page_number)
    rel_type = keep.type if keep.type and keep.type != "unknown" else other.type
    return keep.model_copy(
        update={
            "type": rel_type,
            "description": merge_text(keep.description, other.description, keep.confidence, other.confidence),
            "evolution": evolution,
            "confidence": max(keep.confidence, other.confidence),
        }
    )


def merge_entities(keep: E, other: E) -> E:
    """Dispatch to the merge function for the entity kind."""
    if isinstance(keep, Character):
        return merge_characters(keep, other)
    if isinstance(keep, TimelineEvent):
        return merge_events(keep, other)
    if isinstance(keep, Theme):
        return merge_themes(keep, other)
    if isinstance(keep, Relationship):
        return merge_relationships(keep, other)
    raise TypeError(f"Unsupported entity type: {type(keep).__name__}")


def survivor_rank(entity: Any, position: int = 0) -> tuple:
    """
    Sort key choosing which record survives a merge (lowest sorts first).

    Priority: richer description, more aliases, earlier appearance.
    """
    aliases = len(getattr(entity, "aliases", []) or [])
    if isinstance(entity, Character):
        appearance = entity.first_appearance
    elif isinstance(entity, TimelineEvent):
        appearance = entity.page_number
    else:
        appearance = 0
    return (-len(getattr(entity, "description", "") or ""), -aliases, appearance, position)
