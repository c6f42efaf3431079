"""
Narrative Entity Types

Domain entities produced by per-batch extraction and merged across batches.

Serialized form (model responses, exports) uses camelCase keys such as
``firstAppearance`` and ``isFlashback``. Python code uses snake_case
attributes. Both are accepted on input.

Example:
    >>> rei = Character(id="char-1", name="Rei", first_appearance=3)
    >>> rei.model_dump(by_alias=True)["firstAppearance"]
    3
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Importance(str, Enum):
    """How central a character is to the story."""

    MAJOR = "major"
    SUPPORTING = "supporting"
    MINOR = "minor"


class Significance(str, Enum):
    """How much an event matters to the plot."""

    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


IMPORTANCE_RANK: dict[Importance, int] = {
    Importance.MINOR: 0,
    Importance.SUPPORTING: 1,
    Importance.MAJOR: 2,
}

SIGNIFICANCE_RANK: dict[Significance, int] = {
    Significance.MINOR: 0,
    Significance.MODERATE: 1,
    Significance.MAJOR: 2,
    Significance.CRITICAL: 3,
}


class NarrativeModel(BaseModel):
    """Base for all wire-compatible models (camelCase aliases)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class Character(NarrativeModel):
    """
    A character as reported by one or more batches.

    Attributes:
        id: Stable identifier (unique within the repository)
        name: Display name
        aliases: Other names the character goes by
        description: Free-text description
        first_appearance: Page of first appearance
        importance: Narrative importance rank
        appearance: Optional visual description
        personality: Optional personality notes
        confidence: Provisional confidence from the source batch
    """

    id: str
    name: str = Field(..., min_length=1)
    aliases: list[str] = Field(default_factory=list)
    description: str = ""
    first_appearance: int = Field(default=0, ge=0)
    importance: Importance = Importance.SUPPORTING
    appearance: str | None = None
    personality: str | None = None
    confidence: float = Field(default=0.5, description="Clamped to [0, 1]")

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)


class TimelineEvent(NarrativeModel):
    """
    A single plot event anchored to a page.

    Attributes:
        id: Stable identifier
        page_number: Page where the event is shown
        chapter_number: Optional chapter
        title: Short event title
        description: What happens
        characters: Ids (or names, before resolution) of involved characters
        significance: Plot significance
        is_flashback: Whether the event is shown out of chronological order
        chronological_order: Optional explicit in-world ordering
        confidence: Provisional confidence from the source batch
    """

    id: str
    page_number: int = Field(..., ge=0)
    chapter_number: int | None = None
    title: str = Field(..., min_length=1)
    description: str = ""
    characters: list[str] = Field(default_factory=list)
    significance: Significance = Significance.MODERATE
    is_flashback: bool = False
    chronological_order: int | None = None
    confidence: float = 0.5

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)


class Theme(NarrativeModel):
    """A recurring theme, keyed across batches by its normalized name."""

    id: str
    name: str = Field(..., min_length=1)
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    prevalence: float = Field(default=0.5, ge=0.0, le=1.0)
    confidence: float = 0.5

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)


class RelationshipStage(NarrativeModel):
    """State of a relationship at a given page."""

    page_number: int = Field(..., ge=0)
    state: str


class Relationship(NarrativeModel):
    """
    A relationship between two characters.

    Keyed across batches by the sorted pair of character references.
    """

    id: str
    character_a: str
    character_b: str
    type: str = "unknown"
    description: str = ""
    evolution: list[RelationshipStage] = Field(default_factory=list)
    confidence: float = 0.5

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)

    @property
    def pair_key(self) -> tuple[str, str]:
        a, b = sorted((self.character_a.strip().lower(), self.character_b.strip().lower()))
        return (a, b)
