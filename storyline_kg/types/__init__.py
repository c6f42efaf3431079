"""
Data Types

Pydantic models shared across the reconciliation pipeline.

Modules:
    entities: Character, TimelineEvent, Theme, Relationship
    batches: BatchResult, RawBatch
    results: Ingestion, deduplication, contradiction and coverage results
    timeline: Causal graph and ordering models
    provenance: Audit trail models
"""

from storyline_kg.types.batches import BatchResult, RawBatch
from storyline_kg.types.entities import (
    Character,
    Importance,
    Relationship,
    RelationshipStage,
    Significance,
    Theme,
    TimelineEvent,
)
from storyline_kg.types.provenance import (
    AuditReport,
    AuditTrail,
    Actor,
    EntityProvenance,
    IntegrityReport,
    OperationType,
    ProvenanceEntry,
)
from storyline_kg.types.results import (
    Contradiction,
    ContradictionType,
    CoverageReport,
    DedupResult,
    DuplicateRecord,
    GapClassification,
    IngestResult,
    MergeGap,
    OverlapRegion,
    Resolution,
    ResolutionResult,
    ResponseShape,
    ReviewItem,
    Severity,
    Storyline,
    ValidationIssue,
    ValidationReport,
)
from storyline_kg.types.timeline import (
    CausalGraph,
    CausalLink,
    CausalLinkType,
    CausalGraphStats,
    CausalNode,
    CausalReach,
    EstimatedEvent,
    FlashbackDetection,
    FlashbackType,
    OrderedTimeline,
    OrderingDiscrepancy,
    TimelineGap,
)

__all__ = [
    # Entities
    "Character",
    "TimelineEvent",
    "Theme",
    "Relationship",
    "RelationshipStage",
    "Importance",
    "Significance",
    # Batches
    "BatchResult",
    "RawBatch",
    # Results
    "IngestResult",
    "ResponseShape",
    "ValidationIssue",
    "ValidationReport",
    "DedupResult",
    "DuplicateRecord",
    "Contradiction",
    "ContradictionType",
    "Severity",
    "Resolution",
    "ResolutionResult",
    "ReviewItem",
    "MergeGap",
    "OverlapRegion",
    "GapClassification",
    "CoverageReport",
    "Storyline",
    # Timeline
    "CausalGraph",
    "CausalLink",
    "CausalLinkType",
    "CausalNode",
    "CausalGraphStats",
    "CausalReach",
    "OrderedTimeline",
    "OrderingDiscrepancy",
    "TimelineGap",
    "EstimatedEvent",
    "FlashbackDetection",
    "FlashbackType",
    # Provenance
    "AuditTrail",
    "AuditReport",
    "EntityProvenance",
    "ProvenanceEntry",
    "OperationType",
    "Actor",
    "IntegrityReport",
]
