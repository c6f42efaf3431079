"""
Entity Extraction

Normalizes a validated analysis response into a BatchResult of domain
entities with provisional confidence.

Normalization:
    - Missing ids are minted deterministically from batch index and name
    - Duplicate ids within one batch get a numeric suffix
    - Missing first appearances default to the batch start page
    - Event participants and relationship endpoints given by name are
      resolved to character ids of the same batch
    - Confidence = response confidence, reduced when records were dropped
      or descriptions are thin

Example:
    >>> extractor = EntityExtractor()
    >>> batch = extractor.extract(report, batch_index=0, start_page=1, end_page=20)
    >>> batch.characters[0].id
    'char-3f1a...'
"""

from __future__ import annotations

import logging
from typing import Any

from storyline_kg.types.batches import BatchResult
from storyline_kg.types.entities import Character, Relationship, Theme, TimelineEvent
from storyline_kg.types.results import ValidationReport
from storyline_kg.utils.text import normalize_name, stable_id

logger = logging.getLogger(__name__)

THIN_DESCRIPTION_FACTOR = 0.9


class EntityExtractor:
    """
    Builds BatchResults from validation reports.

    Args:
        min_description_length: Descriptions shorter than this lower confidence
        degraded_confidence_factor: Multiplier when the report had errors
    """

    def __init__(self, *, min_description_length: int = 10, degraded_confidence_factor: float = 0.5) -> None:
        self._min_description_length = min_description_length
        self._degraded_factor = degraded_confidence_factor

    def extract(
        self,
        report: ValidationReport,
        *,
        batch_index: int,
        start_page: int,
        end_page: int,
        warnings: list[str] | None = None,
    ) -> BatchResult:
        """Convert the valid records of ``report`` into a BatchResult."""
        degraded = not report.is_valid
        base = report.confidence * (self._degraded_factor if degraded else 1.0)
        used_ids: set[str] = set()

        characters = [
            self._character(item, batch_index, start_page, base, used_ids) for item in report.characters
        ]
        name_index = _name_index(characters)

        events = [self._event(item, batch_index, base, name_index, used_ids) for item in report.timeline]
        themes = [self._theme(item, batch_index, base, used_ids) for item in report.themes]
        relationships = [
            self._relationship(item, batch_index, base, name_index, used_ids) for item in report.relationships
        ]

        batch_warnings = list(warnings or []) + report.warnings
        if degraded:
            batch_warnings.extend(f"Dropped invalid record at {issue.path}: {issue.message}" for issue in report.errors)
            logger.warning(
                f"Batch {batch_index} degraded: {len(report.errors)} validation issue(s), confidence {base:.2f}"
            )

        return BatchResult(
            batch_index=batch_index,
            start_page=start_page,
            end_page=end_page,
            characters=characters,
            events=events,
            themes=themes,
            relationships=relationships,
            confidence=base,
            degraded=degraded,
            warnings=batch_warnings,
        )

    @staticmethod
    def degraded_batch(batch_index: int, start_page: int, end_page: int, reason: str) -> BatchResult:
        """Empty placeholder for a batch whose response could not be parsed."""
        return BatchResult(
            batch_index=batch_index,
            start_page=start_page,
            end_page=max(start_page, end_page),
            confidence=0.0,
            degraded=True,
            warnings=[reason],
        )

    # -------------------------------------------------------------------------
    # Record builders
    # -------------------------------------------------------------------------

    def _confidence(self, item: dict[str, Any], base: float) -> float:
        if isinstance(item.get("confidence"), (int, float)) and not isinstance(item["confidence"], bool):
            return float(item["confidence"])
        description = str(item.get("description") or "")
        if len(description.strip()) < self._min_description_length:
            return base * THIN_DESCRIPTION_FACTOR
        return base

    def _character(
        self,
        item: dict[str, Any],
        batch_index: int,
        start_page: int,
        base: float,
        used_ids: set[str],
    ) -> Character:
        payload = dict(item)
        payload["id"] = _unique_id(
            item.get("id") or stable_id("char", batch_index, normalize_name(item["name"])), used_ids
        )
        if payload.get("firstAppearance") is None and payload.get("first_appearance") is None:
            payload["firstAppearance"] = start_page
        payload["confidence"] = self._confidence(item, base)
        return Character.model_validate(payload)

    def _event(
        self,
        item: dict[str, Any],
        batch_index: int,
        base: float,
        name_index: dict[str, str],
        used_ids: set[str],
    ) -> TimelineEvent:
        payload = dict(item)
        page = item.get("pageNumber", item.get("page_number"))
        payload["id"] = _unique_id(
            item.get("id") or stable_id("event", batch_index, page, normalize_name(item["title"])), used_ids
        )
        payload["characters"] = [_resolve_reference(ref, name_index) for ref in item.get("characters", [])]
        payload["confidence"] = self._confidence(item, base)
        return TimelineEvent.model_validate(payload)

    def _theme(self, item: dict[str, Any], batch_index: int, base: float, used_ids: set[str]) -> Theme:
        payload = dict(item)
        payload["id"] = _unique_id(
            item.get("id") or stable_id("theme", batch_index, normalize_name(item["name"])), used_ids
        )
        payload["confidence"] = self._confidence(item, base)
        return Theme.model_validate(payload)

    def _relationship(
        self,
        item: dict[str, Any],
        batch_index: int,
        base: float,
        name_index: dict[str, str],
        used_ids: set[str],
    ) -> Relationship:
        payload = dict(item)
        a = _resolve_reference(item.get("characterA", item.get("character_a", "")), name_index)
        b = _resolve_reference(item.get("characterB", item.get("character_b", "")), name_index)
        payload.pop("character_a", None)
        payload.pop("character_b", None)
        payload["characterA"] = a
        payload["characterB"] = b
        payload["id"] = _unique_id(item.get("id") or stable_id("rel", batch_index, *sorted((a, b))), used_ids)
        payload["confidence"] = self._confidence(item, base)
        return Relationship.model_validate(payload)


def _unique_id(candidate: str, used: set[str]) -> str:
    unique = candidate
    suffix = 2
    while unique in used:
        unique = f"{candidate}-{suffix}"
        suffix += 1
    used.add(unique)
    return unique


def _name_index(characters: list[Character]) -> dict[str, str]:
    index: dict[str, str] = {}
    for character in characters:
        index.setdefault(character.id.lower(), character.id)
        for name in (character.name, *character.aliases):
            index.setdefault(normalize_name(name), character.id)
    return index


def _resolve_reference(ref: str, name_index: dict[str, str]) -> str:
    """Map a character name or id to a batch character id; unknown refs pass through."""
    return name_index.get(ref.lower()) or name_index.get(normalize_name(ref)) or ref
