"""
Timeline Analysis

Coverage, gap, causal and ordering analysis over reconciled events.

Modules:
    coverage: Batch gaps and overlaps, overlap event matching
    gaps: Page gaps between consecutive events
    causal: Causal graph construction and queries
    ordering: Reading vs chronological order
    flashback: Flashback cue detection
"""

from storyline_kg.timeline.causal import (
    build_causal_graph,
    compute_depths,
    critical_path,
    downstream_effects,
    event_criticality,
    graph_stats,
    leaves,
    roots,
    upstream_causes,
)
from storyline_kg.timeline.coverage import CoverageAnalyzer, classify_gap
from storyline_kg.timeline.flashback import detect_flashback, flashback_candidates
from storyline_kg.timeline.gaps import detect_gaps
from storyline_kg.timeline.ordering import order_timeline

__all__ = [
    "CoverageAnalyzer",
    "classify_gap",
    "detect_gaps",
    "build_causal_graph",
    "compute_depths",
    "roots",
    "leaves",
    "downstream_effects",
    "upstream_causes",
    "critical_path",
    "event_criticality",
    "graph_stats",
    "order_timeline",
    "detect_flashback",
    "flashback_candidates",
]
