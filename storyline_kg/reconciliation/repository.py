"""
Entity Repository

In-memory store of reconciled entities, merged batches and open review
items for one reconciliation run. The orchestrator owns exactly one
repository and replaces it wholesale on commit; stages work on a
``clone()``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from storyline_kg.types.batches import BatchResult
from storyline_kg.types.entities import Character, Relationship, Theme, TimelineEvent
from storyline_kg.types.results import ReviewItem


class EntityRepository:
    """Entities by id, in insertion order, plus the batches they came from."""

    def __init__(self) -> None:
        self._characters: dict[str, Character] = {}
        self._events: dict[str, TimelineEvent] = {}
        self._themes: dict[str, Theme] = {}
        self._relationships: dict[str, Relationship] = {}
        self._batches: dict[int, BatchResult] = {}
        self._review_items: list[ReviewItem] = []
        self._stitched: dict[tuple[int, int], set[str]] = {}

    def clone(self) -> "EntityRepository":
        """
        Copy for staged work.

        Entity models are replaced, never mutated, so the copy shares them.
        """
        copy = EntityRepository()
        copy._characters = dict(self._characters)
        copy._events = dict(self._events)
        copy._themes = dict(self._themes)
        copy._relationships = dict(self._relationships)
        copy._batches = dict(self._batches)
        copy._review_items = list(self._review_items)
        copy._stitched = {pair: set(ids) for pair, ids in self._stitched.items()}
        return copy

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def characters(self) -> list[Character]:
        return list(self._characters.values())

    @property
    def events(self) -> list[TimelineEvent]:
        return list(self._events.values())

    @property
    def themes(self) -> list[Theme]:
        return list(self._themes.values())

    @property
    def relationships(self) -> list[Relationship]:
        return list(self._relationships.values())

    @property
    def batches(self) -> list[BatchResult]:
        return [self._batches[i] for i in sorted(self._batches)]

    @property
    def review_items(self) -> list[ReviewItem]:
        return list(self._review_items)

    def has_batch(self, batch_index: int) -> bool:
        return batch_index in self._batches

    def all_ids(self) -> set[str]:
        return {*self._characters, *self._events, *self._themes, *self._relationships}

    def stitched_events(self, batch_a: int, batch_b: int) -> int:
        """Events both batches reported inside their overlap, counted once."""
        return len(self._stitched.get(_pair(batch_a, batch_b), ()))

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def add_batch(self, batch: BatchResult) -> None:
        self._batches[batch.batch_index] = batch

    def replace_characters(self, items: Iterable[Character]) -> None:
        self._characters = {c.id: c for c in items}

    def replace_events(self, items: Iterable[TimelineEvent]) -> None:
        self._events = {e.id: e for e in items}

    def replace_themes(self, items: Iterable[Theme]) -> None:
        self._themes = {t.id: t for t in items}

    def replace_relationships(self, items: Iterable[Relationship]) -> None:
        self._relationships = {r.id: r for r in items}

    def add_review_items(self, items: Iterable[ReviewItem]) -> None:
        self._review_items.extend(items)

    def add_stitched_events(self, batch_a: int, batch_b: int, event_ids: Iterable[str]) -> None:
        self._stitched.setdefault(_pair(batch_a, batch_b), set()).update(event_ids)

    def apply_character_remap(self, remap: Mapping[str, str]) -> None:
        """Point event participants and relationship endpoints at surviving character ids."""
        if not remap:
            return
        for event_id, event in list(self._events.items()):
            characters = _remap_list(event.characters, remap)
            if characters != event.characters:
                self._events[event_id] = event.model_copy(update={"characters": characters})
        for rel_id, rel in list(self._relationships.items()):
            a = remap.get(rel.character_a, rel.character_a)
            b = remap.get(rel.character_b, rel.character_b)
            if (a, b) != (rel.character_a, rel.character_b):
                self._relationships[rel_id] = rel.model_copy(update={"character_a": a, "character_b": b})

    def apply_event_remap(self, remap: Mapping[str, str]) -> None:
        """Re-target review items and stitched events whose event was merged away."""
        if not remap:
            return
        self._stitched = {pair: {remap.get(i, i) for i in ids} for pair, ids in self._stitched.items()}
        self._review_items = [
            item.model_copy(update={"entity_id": remap[item.entity_id]}) if item.entity_id in remap else item
            for item in self._review_items
        ]


def _remap_list(ids: list[str], remap: Mapping[str, str]) -> list[str]:
    result: list[str] = []
    for entity_id in ids:
        mapped = remap.get(entity_id, entity_id)
        if mapped not in result:
            result.append(mapped)
    return result


def _pair(batch_a: int, batch_b: int) -> tuple[int, int]:
    return (batch_a, batch_b) if batch_a <= batch_b else (batch_b, batch_a)
