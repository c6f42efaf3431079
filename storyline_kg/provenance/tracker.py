"""
Provenance Tracker

Append-only record of every operation the reconciler performs, plus a
lineage record per entity.

Each ``record_*`` call appends exactly one ProvenanceEntry and updates the
EntityProvenance of every entity it touches. Entries are never removed or
edited. Raw model responses are referenced by hash only.

The orchestrator works on a ``fork()`` of the tracker during a merge and
swaps it in on commit, so an aborted merge leaves no partial entries.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from storyline_kg.types.provenance import (
    Actor,
    AuditTrail,
    EntityProvenance,
    IntegrityReport,
    OperationType,
    ProvenanceEntry,
)
from storyline_kg.utils.telemetry import current_stage

logger = logging.getLogger(__name__)

MERGE_TYPES = ("deduplication", "overlap", "conflict_resolution")
MAX_RECORDED_ISSUES = 20


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _entry_id() -> str:
    return f"entry-{uuid.uuid4().hex[:12]}"


def entity_type_name(entity: BaseModel) -> str:
    """Lowercase type label used in provenance (character, timelineevent, ...)."""
    return type(entity).__name__.lower()


class ProvenanceTracker:
    """
    Records pipeline operations into an AuditTrail.

    Args:
        analysis_id: Id of the run (generated when omitted)
        parameters: Run parameters stored on the trail
    """

    def __init__(self, analysis_id: str | None = None, parameters: Mapping[str, Any] | None = None) -> None:
        self._trail = AuditTrail(
            analysis_id=analysis_id or f"analysis-{uuid.uuid4().hex[:12]}",
            started_at=_now(),
            parameters=dict(parameters or {}),
        )

    @property
    def analysis_id(self) -> str:
        return self._trail.analysis_id

    @property
    def trail(self) -> AuditTrail:
        """Snapshot of the trail. Mutating it does not affect the tracker."""
        return self._trail.model_copy(deep=True)

    def fork(self) -> "ProvenanceTracker":
        """Independent copy for staged work."""
        forked = ProvenanceTracker.__new__(ProvenanceTracker)
        forked._trail = self._trail.model_copy(deep=True)
        return forked

    def _append(
        self,
        op: OperationType,
        *,
        inputs: Sequence[str] = (),
        outputs: Sequence[str] = (),
        parameters: Mapping[str, Any] | None = None,
        description: str = "",
        stage: str | None = None,
        actor: Actor = Actor.SYSTEM,
    ) -> ProvenanceEntry:
        entry = ProvenanceEntry(
            id=_entry_id(),
            timestamp=_now(),
            type=op,
            stage=stage or current_stage(),
            inputs=list(inputs),
            outputs=list(outputs),
            parameters=dict(parameters or {}),
            actor=actor,
            description=description,
        )
        self._trail.entries.append(entry)
        return entry

    def _touch(self, entity_id: str, entry: ProvenanceEntry) -> None:
        record = self._trail.entities.get(entity_id)
        if record is None:
            return
        record.modified_by.append(entry.id)
        if entry.id not in record.lineage:
            record.lineage.append(entry.id)

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_extraction(
        self,
        batch_index: int,
        entities: Sequence[BaseModel],
        *,
        response_hash: str | None = None,
        stage: str | None = None,
    ) -> ProvenanceEntry:
        """Record entities produced by one batch."""
        ids = [e.id for e in entities]
        entry = self._append(
            OperationType.EXTRACTION,
            inputs=[response_hash] if response_hash else [],
            outputs=ids,
            parameters={"batch_index": batch_index, "entity_count": len(ids)},
            description=f"Extracted {len(ids)} entities from batch {batch_index}",
            stage=stage,
        )
        for entity in entities:
            record = self._trail.entities.get(entity.id)
            if record is None:
                self._trail.entities[entity.id] = EntityProvenance(
                    entity_id=entity.id,
                    entity_type=entity_type_name(entity),
                    created_at=entry.timestamp,
                    created_by=entry.id,
                    lineage=[entry.id],
                    source_batches=[batch_index],
                    confidence=getattr(entity, "confidence", 0.5),
                )
            else:
                record.lineage.append(entry.id)
                if batch_index not in record.source_batches:
                    record.source_batches.append(batch_index)
        return entry

    def record_merge(
        self,
        inputs: Sequence[str],
        outputs: Sequence[str],
        merge_type: str,
        *,
        merged: Mapping[str, str] | None = None,
        parameters: Mapping[str, Any] | None = None,
        stage: str | None = None,
        actor: Actor = Actor.SYSTEM,
    ) -> ProvenanceEntry:
        """
        Record a merge of ``inputs`` into ``outputs``.

        Args:
            inputs: Ids of every entity going in
            outputs: Ids of the surviving entities
            merge_type: deduplication, overlap or conflict_resolution
            merged: removed id -> kept id; the removed record is marked
                merged and its lineage and batches carry over to the kept one
        """
        if merge_type not in MERGE_TYPES:
            raise ValueError(f"Unknown merge type: {merge_type}. Expected one of {MERGE_TYPES}")

        entry = self._append(
            OperationType.MERGE,
            inputs=inputs,
            outputs=outputs,
            parameters={"merge_type": merge_type, **dict(parameters or {})},
            description=f"{merge_type}: {len(inputs)} -> {len(outputs)} entities",
            stage=stage,
            actor=actor,
        )

        for removed_id, kept_id in (merged or {}).items():
            removed = self._trail.entities.get(removed_id)
            kept = self._trail.entities.get(kept_id)
            if removed is None or kept is None:
                logger.debug(f"Merge {removed_id} -> {kept_id} references an untracked entity")
                continue
            removed.merged_into = kept_id
            removed.lineage.append(entry.id)
            for entry_id in removed.lineage:
                if entry_id not in kept.lineage:
                    kept.lineage.append(entry_id)
            for batch in removed.source_batches:
                if batch not in kept.source_batches:
                    kept.source_batches.append(batch)
            kept.confidence = max(kept.confidence, removed.confidence)

        for entity_id in outputs:
            self._touch(entity_id, entry)
        return entry

    def record_transform(
        self,
        input_ids: Sequence[str],
        output_ids: Sequence[str],
        transform_type: str,
        parameters: Mapping[str, Any] | None = None,
        *,
        stage: str | None = None,
    ) -> ProvenanceEntry:
        entry = self._append(
            OperationType.TRANSFORM,
            inputs=input_ids,
            outputs=output_ids,
            parameters={"transform_type": transform_type, **dict(parameters or {})},
            description=f"Transform: {transform_type}",
            stage=stage,
        )
        for entity_id in output_ids:
            self._touch(entity_id, entry)
        return entry

    def record_validation(
        self,
        batch_index: int,
        passed: bool,
        issues: Sequence[str] = (),
        *,
        response_hash: str | None = None,
        stage: str | None = None,
    ) -> ProvenanceEntry:
        """Record the outcome of validating one batch response."""
        return self._append(
            OperationType.VALIDATION,
            inputs=[response_hash] if response_hash else [],
            parameters={
                "batch_index": batch_index,
                "passed": passed,
                "issue_count": len(issues),
                "issues": list(issues)[:MAX_RECORDED_ISSUES],
            },
            description=f"Validation of batch {batch_index}: {'passed' if passed else 'failed'} ({len(issues)} issues)",
            stage=stage,
        )

    def record_export(self, view: str, entity_ids: Sequence[str], *, stage: str | None = None) -> ProvenanceEntry:
        return self._append(
            OperationType.EXPORT,
            inputs=entity_ids,
            parameters={"view": view},
            description=f"Exported {len(entity_ids)} entities as {view}",
            stage=stage,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_lineage(self, entity_id: str) -> list[ProvenanceEntry] | None:
        """Entries in an entity's lineage, oldest first. None if untracked."""
        record = self._trail.entities.get(entity_id)
        if record is None:
            return None
        by_id = {e.id: e for e in self._trail.entries}
        return [by_id[entry_id] for entry_id in record.lineage if entry_id in by_id]

    def get_entity(self, entity_id: str) -> EntityProvenance | None:
        return self._trail.entities.get(entity_id)

    def entity_ids(self) -> set[str]:
        """Every id ever tracked, including entities merged away."""
        return set(self._trail.entities)

    def get_batch_entities(self, batch_index: int) -> list[EntityProvenance]:
        return [p for p in self._trail.entities.values() if batch_index in p.source_batches]

    def verify_integrity(self, entity_id: str) -> IntegrityReport:
        """Check that every lineage entry of an entity exists in the trail."""
        record = self._trail.entities.get(entity_id)
        if record is None:
            return IntegrityReport(entity_id=entity_id, valid=False, issues=["Entity not found in provenance"])

        known = {e.id for e in self._trail.entries}
        issues = [f"Missing provenance entry: {entry_id}" for entry_id in record.lineage if entry_id not in known]
        if record.created_by not in known:
            issues.append(f"Missing creation entry: {record.created_by}")
        if record.modified_by and record.modified_by[-1] not in known:
            issues.append("Incomplete modification history")
        if record.merged_into is not None and record.merged_into not in self._trail.entities:
            issues.append(f"Merged into untracked entity: {record.merged_into}")

        return IntegrityReport(entity_id=entity_id, valid=not issues, issues=issues)

    def finalize(self) -> AuditTrail:
        """Stamp completion time and return the trail."""
        self._trail.completed_at = _now()
        logger.info(
            f"Audit trail {self._trail.analysis_id} finalized: "
            f"{len(self._trail.entries)} entries, {len(self._trail.entities)} entities"
        )
        return self.trail
