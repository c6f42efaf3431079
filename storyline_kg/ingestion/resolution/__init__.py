"""
Entity Resolution

Cross-batch deduplication and contradiction resolution.

Modules:
    similarity: Weighted pairwise similarity matrices
    merge_policy: Pure record-combining functions
    dedup: Banded deduplication with optional LLM verification
    contradictions: Detection, resolution and application of conflicts

Deduplication:
    1. Similarity matrix (name, alias, description, appearance, proximity)
    2. Candidate pairs above the low floor
    3. Auto-merge / LLM verification / heuristic threshold per band
    4. Union-Find components folded with the merge policy

Contradictions:
    - Heuristic first (confidence gap, severity)
    - LLM arbitration for undecided cases, review flag otherwise
"""

from storyline_kg.ingestion.resolution.contradictions import (
    ContradictionResolver,
    EventCombiner,
    is_same_event,
)
from storyline_kg.ingestion.resolution.dedup import Deduplicator
from storyline_kg.ingestion.resolution.merge_policy import merge_entities
from storyline_kg.ingestion.resolution.similarity import pair_similarity, similarity_matrix

__all__ = [
    "Deduplicator",
    "ContradictionResolver",
    "EventCombiner",
    "is_same_event",
    "merge_entities",
    "similarity_matrix",
    "pair_similarity",
]
