"""
Provenance

Audit trail and per-entity lineage for a reconciliation run.
"""

from storyline_kg.provenance.tracker import ProvenanceTracker

__all__ = ["ProvenanceTracker"]
