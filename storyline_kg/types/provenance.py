"""
Provenance Types

Append-only audit log of pipeline operations and per-entity lineage.

Example:
    >>> trail = tracker.trail
    >>> report = trail.export_report()
    >>> report.operations_by_type["merge"]
    4
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OperationType(str, Enum):
    EXTRACTION = "extraction"
    MERGE = "merge"
    TRANSFORM = "transform"
    VALIDATION = "validation"
    EXPORT = "export"


class Actor(str, Enum):
    SYSTEM = "system"
    USER = "user"
    LLM = "llm"


class ProvenanceEntry(BaseModel):
    """
    One recorded pipeline operation.

    Attributes:
        id: Unique entry id
        timestamp: When the operation was recorded (UTC)
        type: Operation kind
        stage: Pipeline stage label (characters, timeline, ...)
        inputs: Ids (or hashes) consumed
        outputs: Ids produced or modified
        parameters: Operation-specific details
        actor: Who performed the operation
        description: Human-readable summary
    """

    id: str
    timestamp: datetime
    type: OperationType
    stage: str
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)
    actor: Actor = Actor.SYSTEM
    description: str = ""


class EntityProvenance(BaseModel):
    """Lineage of a single entity."""

    entity_id: str
    entity_type: str
    created_at: datetime
    created_by: str
    modified_by: list[str] = Field(default_factory=list)
    lineage: list[str] = Field(default_factory=list)
    source_batches: list[int] = Field(default_factory=list)
    confidence: float = 0.5
    merged_into: str | None = None


class AuditReport(BaseModel):
    """Aggregate counts over an audit trail."""

    analysis_id: str
    duration_seconds: float | None = None
    total_operations: int = 0
    entities_created: int = 0
    entities_modified: int = 0
    entities_merged_away: int = 0
    operations_by_stage: dict[str, int] = Field(default_factory=dict)
    operations_by_type: dict[str, int] = Field(default_factory=dict)
    failed_validations: int = 0


class AuditTrail(BaseModel):
    """
    Complete operation log for one reconciliation run.

    ``completed_at`` stays unset until the caller signals completion.
    """

    analysis_id: str
    started_at: datetime
    completed_at: datetime | None = None
    entries: list[ProvenanceEntry] = Field(default_factory=list)
    entities: dict[str, EntityProvenance] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)

    def entry(self, entry_id: str) -> ProvenanceEntry | None:
        return next((e for e in self.entries if e.id == entry_id), None)

    def export_report(self) -> AuditReport:
        """Summarize the trail by stage and operation type."""
        by_stage: dict[str, int] = {}
        by_type: dict[str, int] = {}
        failed = 0
        for entry in self.entries:
            by_stage[entry.stage] = by_stage.get(entry.stage, 0) + 1
            by_type[entry.type.value] = by_type.get(entry.type.value, 0) + 1
            if entry.type == OperationType.VALIDATION and not entry.parameters.get("passed", True):
                failed += 1

        duration = None
        if self.completed_at is not None:
            duration = (self.completed_at - self.started_at).total_seconds()

        return AuditReport(
            analysis_id=self.analysis_id,
            duration_seconds=duration,
            total_operations=len(self.entries),
            entities_created=len(self.entities),
            entities_modified=sum(1 for p in self.entities.values() if p.modified_by),
            entities_merged_away=sum(1 for p in self.entities.values() if p.merged_into),
            operations_by_stage=by_stage,
            operations_by_type=by_type,
            failed_validations=failed,
        )


class IntegrityReport(BaseModel):
    """Result of checking one entity's lineage against the trail."""

    entity_id: str
    valid: bool
    issues: list[str] = Field(default_factory=list)
