"""
Result Types

Pydantic models returned by the ingestion, resolution and coverage stages,
and the merged Storyline itself.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from storyline_kg.errors import ContradictionUnresolved
from storyline_kg.types.entities import (
    Character,
    NarrativeModel,
    Relationship,
    Theme,
    TimelineEvent,
)
from storyline_kg.types.timeline import CausalGraph, OrderingDiscrepancy, TimelineGap

E = TypeVar("E", bound=BaseModel)


# -----------------------------------------------------------------------------
# Ingestion
# -----------------------------------------------------------------------------


class ResponseShape(str, Enum):
    """Top-level JSON shape expected from a model response."""

    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"


class ValidationIssue(BaseModel):
    """
    One field-level validation problem.

    Attributes:
        path: JSON-pointer-like location, e.g. "/characters/0/importance"
        message: Human-readable description
        value: Offending value, when available
    """

    path: str
    message: str
    value: Any = None


class RepairMetadata(BaseModel):
    """What the repair pass had to do to make the text parse."""

    steps: list[str] = Field(default_factory=list)
    original_length: int = 0
    repaired_length: int = 0
    confidence: float = 1.0


class IngestResult(BaseModel):
    """
    Parsed and migrated model response.

    Attributes:
        data: JSON data in the current schema version
        warnings: Non-fatal data-quality notes
        method: Extraction strategy that succeeded
        repair: Repair metadata, when the repair pass ran
        source_version: Detected or declared schema version of the input
        migrations: Migration steps applied, in order
    """

    data: Any
    warnings: list[str] = Field(default_factory=list)
    method: str = "direct"
    repair: RepairMetadata | None = None
    source_version: str | None = None
    migrations: list[str] = Field(default_factory=list)


class ValidationReport(BaseModel):
    """Field-by-field validation outcome for an analysis response."""

    characters: list[dict[str, Any]] = Field(default_factory=list)
    timeline: list[dict[str, Any]] = Field(default_factory=list)
    themes: list[dict[str, Any]] = Field(default_factory=list)
    relationships: list[dict[str, Any]] = Field(default_factory=list)
    confidence: float = 0.5
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


# -----------------------------------------------------------------------------
# Deduplication
# -----------------------------------------------------------------------------


class MatchBand(str, Enum):
    """Which similarity band a candidate pair falls into."""

    DISTINCT = "distinct"
    VERIFY = "verify"
    AUTO_MERGE = "auto_merge"


class MatchDecision(BaseModel):
    """An accepted same-entity pair, by index into the deduplicated list."""

    index_a: int
    index_b: int
    score: float
    reason: str


class DuplicateRecord(BaseModel):
    """
    One absorbed record.

    Attributes:
        kept: Id of the surviving entity
        removed: Id of the entity merged into it
        reason: Why they were merged ("auto", "llm_verified", "heuristic", ...)
        score: Similarity score that triggered the merge
    """

    kept: str
    removed: str
    reason: str
    score: float = 0.0


class DedupResult(BaseModel, Generic[E]):
    """
    Output of one dedupe() call.

    Attributes:
        unique: Final entity list (merged survivors plus untouched entities)
        merged: Subset of unique that absorbed at least one other record
        duplicates: One record per absorbed entity
        id_remap: removed id -> surviving id
    """

    unique: list[E] = Field(default_factory=list)
    merged: list[E] = Field(default_factory=list)
    duplicates: list[DuplicateRecord] = Field(default_factory=list)
    id_remap: dict[str, str] = Field(default_factory=dict)


# -----------------------------------------------------------------------------
# Contradictions
# -----------------------------------------------------------------------------


class ContradictionType(str, Enum):
    FACT = "fact"
    TIMELINE = "timeline"
    CHARACTER = "character"
    RELATIONSHIP = "relationship"


class Severity(str, Enum):
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class Resolution(str, Enum):
    USE_A = "use_a"
    USE_B = "use_b"
    MERGE = "merge"
    FLAG_FOR_REVIEW = "flag_for_review"


class Contradiction(BaseModel):
    """
    Disagreement between two representations of the same entity.

    Attributes:
        id: Ephemeral identifier, unique within one reconciliation pass
        type: Kind of disagreement
        element_a: Id of the reference (already merged) representation
        element_b: Id of the incoming representation
        field: Attribute the two disagree on
        description: Human-readable description
        severity: How bad the disagreement is
    """

    id: str
    type: ContradictionType
    element_a: str
    element_b: str
    field: str
    description: str
    severity: Severity


class ResolutionResult(BaseModel):
    """How a contradiction was (or was not) resolved."""

    contradiction: Contradiction
    resolution: Resolution
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    method: str = "heuristic"


class ReviewItem(BaseModel):
    """Visible annotation for a contradiction left for human review."""

    entity_id: str
    resolution: ResolutionResult

    def as_error(self) -> ContradictionUnresolved:
        return ContradictionUnresolved(self.resolution)


# -----------------------------------------------------------------------------
# Coverage
# -----------------------------------------------------------------------------


class GapClassification(str, Enum):
    TRANSITION = "transition"
    TIMESKIP = "timeskip"
    UNKNOWN = "unknown"


class MergeGap(BaseModel):
    """Uncovered page range between two adjacent batches."""

    after_batch: int
    before_batch: int
    start_page: int
    end_page: int
    size: int
    classification: GapClassification = GapClassification.UNKNOWN
    estimated_content: str = ""


class OverlapRegion(BaseModel):
    """Page range claimed by two adjacent batches."""

    batch_a: int
    batch_b: int
    start_page: int
    end_page: int
    merged_events: int = 0


class CoverageReport(BaseModel):
    gaps: list[MergeGap] = Field(default_factory=list)
    overlaps: list[OverlapRegion] = Field(default_factory=list)
    confidence: float = 0.0


# -----------------------------------------------------------------------------
# Storyline
# -----------------------------------------------------------------------------


class Storyline(NarrativeModel):
    """
    The merged narrative model.

    Attributes:
        characters: Deduplicated characters
        timeline: Deduplicated events in reading order
        themes: Deduplicated themes
        relationships: Relationships keyed by character pair
        gaps: Advisory page ranges no batch covered
        overlaps: Page ranges claimed by two adjacent batches
        timeline_gaps: Large page gaps between consecutive events
        discrepancies: Reading vs chronological order disagreements
        causal_graph: Inferred cause-and-effect links between events
        review_items: Contradictions left for human review
        batches: Indices of merged batches
        confidence: Mean batch confidence, penalized per gap
    """

    characters: list[Character] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    themes: list[Theme] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    gaps: list[MergeGap] = Field(default_factory=list)
    overlaps: list[OverlapRegion] = Field(default_factory=list)
    timeline_gaps: list[TimelineGap] = Field(default_factory=list)
    discrepancies: list[OrderingDiscrepancy] = Field(default_factory=list)
    causal_graph: CausalGraph = Field(default_factory=CausalGraph)
    review_items: list[ReviewItem] = Field(default_factory=list)
    batches: list[int] = Field(default_factory=list)
    confidence: float = 0.0

    def character(self, character_id: str) -> Character | None:
        return next((c for c in self.characters if c.id == character_id), None)

    def event(self, event_id: str) -> TimelineEvent | None:
        return next((e for e in self.timeline if e.id == event_id), None)
