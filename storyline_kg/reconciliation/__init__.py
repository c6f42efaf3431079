"""
Reconciliation

Serialized, atomic merging of batch results into one Storyline, plus the
read-only views exported from it.

Modules:
    orchestrator: ReconciliationOrchestrator (ingest, submit, reconcile)
    repository: In-memory entity store swapped on commit
    views: Pure projections of a Storyline
"""

from storyline_kg.reconciliation.orchestrator import PreparedBatch, ReconciliationOrchestrator
from storyline_kg.reconciliation.repository import EntityRepository
from storyline_kg.reconciliation.views import ViewType, build_view, character_timeline

__all__ = [
    "ReconciliationOrchestrator",
    "PreparedBatch",
    "EntityRepository",
    "ViewType",
    "build_view",
    "character_timeline",
]
