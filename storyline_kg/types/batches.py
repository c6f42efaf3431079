"""
Batch Types

One BatchResult per model call. Batches are immutable once created and are
the only input the orchestrator merges.
"""

from __future__ import annotations

from pydantic import ConfigDict, Field, field_validator, model_validator

from storyline_kg.types.entities import (
    Character,
    NarrativeModel,
    Relationship,
    Theme,
    TimelineEvent,
)


class BatchResult(NarrativeModel):
    """
    Entities extracted from one contiguous page range.

    Attributes:
        batch_index: Position of the batch in the request sequence
        start_page: First page covered (inclusive)
        end_page: Last page covered (inclusive)
        characters: Characters seen in this batch
        events: Timeline events seen in this batch
        themes: Themes seen in this batch
        relationships: Relationships seen in this batch
        confidence: Batch-level confidence in [0, 1]
        degraded: True when ingestion failed or dropped invalid items
        warnings: Non-fatal data quality notes
    """

    model_config = ConfigDict(frozen=True)

    batch_index: int = Field(..., ge=0)
    start_page: int = Field(..., ge=0)
    end_page: int = Field(..., ge=0)
    characters: list[Character] = Field(default_factory=list)
    events: list[TimelineEvent] = Field(default_factory=list)
    themes: list[Theme] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    confidence: float = 0.5
    degraded: bool = False
    warnings: list[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return max(0.0, min(1.0, float(v)))

    @model_validator(mode="after")
    def _check_page_range(self) -> "BatchResult":
        if self.end_page < self.start_page:
            raise ValueError(
                f"end_page ({self.end_page}) precedes start_page ({self.start_page})"
            )
        return self

    @property
    def entity_count(self) -> int:
        return len(self.characters) + len(self.events) + len(self.themes) + len(self.relationships)


class RawBatch(NarrativeModel):
    """Raw model text plus the batch metadata needed to ingest it."""

    model_config = ConfigDict(frozen=True)

    raw_text: str
    batch_index: int = Field(..., ge=0)
    start_page: int = Field(..., ge=0)
    end_page: int = Field(..., ge=0)
