"""Tests for coverage, gap, causal, ordering and flashback analysis."""

from conftest import make_batch, make_event
from storyline_kg.timeline import (
    CoverageAnalyzer,
    build_causal_graph,
    classify_gap,
    compute_depths,
    critical_path,
    detect_flashback,
    detect_gaps,
    downstream_effects,
    event_criticality,
    flashback_candidates,
    graph_stats,
    leaves,
    order_timeline,
    roots,
    upstream_causes,
)
from storyline_kg.timeline.flashback import classify_flashback
from storyline_kg.types.results import GapClassification, OverlapRegion
from storyline_kg.types.timeline import CausalGraph, CausalLink, CausalLinkType, FlashbackType


class TestCoverage:
    """Tests for CoverageAnalyzer."""

    def test_gap_between_batches(self):
        batches = [make_batch(0, 1, 20, confidence=0.8), make_batch(1, 30, 50, confidence=0.8)]
        report = CoverageAnalyzer().analyze(batches)

        assert len(report.gaps) == 1
        gap = report.gaps[0]
        assert (gap.start_page, gap.end_page, gap.size) == (21, 29, 9)
        assert report.confidence == 0.8 - 0.05

    def test_touching_batches(self):
        report = CoverageAnalyzer().analyze([make_batch(0, 1, 20), make_batch(1, 20, 40)])
        assert report.gaps == []
        assert report.overlaps == []

    def test_overlap_region(self):
        a = make_batch(0, 1, 22, events=[make_event("e1", 21, "Rei draws her sword", ["c1"])])
        b = make_batch(1, 20, 40, events=[make_event("e2", 21, "Rei draws her sword", ["c1"])])
        report = CoverageAnalyzer().analyze([a, b])

        assert len(report.overlaps) == 1
        region = report.overlaps[0]
        assert (region.start_page, region.end_page) == (20, 22)
        assert region.merged_events == 1

    def test_batches_sorted_by_start_page(self):
        report = CoverageAnalyzer().analyze([make_batch(1, 30, 50), make_batch(0, 1, 20)])
        assert report.gaps[0].after_batch == 0

    def test_match_overlap_events_one_to_one(self):
        analyzer = CoverageAnalyzer()
        region = OverlapRegion(batch_a=0, batch_b=1, start_page=20, end_page=22)
        existing = [make_event("e1", 21, "Rei draws her sword", ["c1"])]
        incoming = [
            make_event("e2", 21, "Rei draws her sword", ["c1"]),
            make_event("e3", 22, "Rei draws her sword", ["c1"]),
        ]
        assert analyzer.match_overlap_events(region, existing, incoming) == [("e1", "e2")]

    def test_classify_gap(self):
        years = make_event("e", 40, "Years later", description="Ten years later Rei returns")
        assert classify_gap(40, None, None) == GapClassification.TIMESKIP
        assert classify_gap(8, None, years) == GapClassification.TIMESKIP
        assert classify_gap(3, None, None) == GapClassification.TRANSITION
        assert classify_gap(12, None, None) == GapClassification.UNKNOWN

    def test_age_is_not_a_timeskip(self):
        teen = make_event("e", 40, "New student", description="A ten years old girl joins the class")
        assert classify_gap(12, None, teen) == GapClassification.UNKNOWN

    def test_empty(self):
        report = CoverageAnalyzer().analyze([])
        assert report.confidence == 0.0


class TestTimelineGaps:
    """Tests for detect_gaps()."""

    def test_single_gap(self):
        events = [make_event("a", 5, "Arrival", ["c1"]), make_event("b", 45, "Duel", ["c2"])]
        gaps = detect_gaps(events)

        assert len(gaps) == 1
        gap = gaps[0]
        assert (gap.start_page, gap.end_page, gap.duration) == (5, 45, 40)
        assert (gap.preceding_event, gap.following_event) == ("a", "b")
        assert {e.type for e in gap.estimated_events} == {"travel", "timeskip", "transition"}

    def test_small_distance_ignored(self):
        events = [make_event("a", 5, "Arrival"), make_event("b", 12, "Duel")]
        assert detect_gaps(events) == []

    def test_huge_distance_ignored(self):
        events = [make_event("a", 5, "Arrival"), make_event("b", 150, "Duel")]
        assert detect_gaps(events) == []

    def test_input_order_irrelevant(self):
        events = [make_event("b", 45, "Duel"), make_event("a", 5, "Arrival")]
        assert detect_gaps(events)[0].preceding_event == "a"

    def test_sequence_words_lower_confidence(self):
        plain = detect_gaps([make_event("a", 5, "Arrival", ["c1"]), make_event("b", 25, "Duel", ["c1"])])[0]
        then = detect_gaps([make_event("a", 5, "Arrival", ["c1"]), make_event("b", 25, "Then the duel", ["c1"])])[0]
        assert then.confidence < plain.confidence


class TestCausalGraph:
    """Tests for causal graph construction and queries."""

    def _events(self):
        return [
            make_event("e1", 1, "Rei meets Kai", ["rei", "kai"]),
            make_event("e2", 3, "Rei and Kai train", ["rei", "kai"], description="Training helps Rei grow"),
            make_event("e3", 6, "Rei wins the duel", ["rei", "kai"], description="She wins because of training"),
            make_event("e4", 90, "A festival far away", ["mika"]),
        ]

    def test_links_follow_page_order(self):
        graph = build_causal_graph(self._events())
        for link in graph.links:
            assert graph_page(self._events(), link.source) < graph_page(self._events(), link.target)
        assert graph.cycle_edges == []

    def test_depths_and_ends(self):
        graph = build_causal_graph(self._events())

        assert graph.nodes["e1"].depth == 0
        assert graph.nodes["e3"].depth == 2
        assert "e1" in roots(graph)
        assert "e4" in roots(graph) and "e4" in leaves(graph)

    def test_link_type_from_cues(self):
        graph = build_causal_graph(self._events())
        types = {(l.source, l.target): l.type for l in graph.links}
        assert types[("e2", "e3")] == CausalLinkType.CAUSES

    def test_unrelated_event_unlinked(self):
        graph = build_causal_graph(self._events())
        assert graph.nodes["e4"].incoming == []

    def test_reach_queries(self):
        graph = build_causal_graph(self._events())

        downstream = {r.event_id for r in downstream_effects(graph, "e1")}
        upstream = {r.event_id for r in upstream_causes(graph, "e3")}

        assert downstream == {"e2", "e3"}
        assert upstream == {"e1", "e2"}
        assert event_criticality(graph, "e4") == 0.0

    def test_critical_path(self):
        graph = build_causal_graph(self._events())
        assert critical_path(graph) == ["e1", "e2", "e3"]

    def test_stats(self):
        stats = graph_stats(build_causal_graph(self._events()))
        assert stats.total_nodes == 4
        assert stats.max_depth == 2

    def test_self_loop_terminates(self):
        """A hand-added self-loop is recorded and contributes nothing."""
        graph = CausalGraph()
        graph.add_link(CausalLink(source="x", target="x", strength=0.9))
        compute_depths(graph)

        assert graph.nodes["x"].depth == 0
        assert graph.cycle_edges == [("x", "x")]

    def test_two_node_cycle_terminates(self):
        graph = CausalGraph()
        graph.add_link(CausalLink(source="a", target="b", strength=0.9))
        graph.add_link(CausalLink(source="b", target="a", strength=0.9))
        compute_depths(graph)

        assert len(graph.cycle_edges) == 1
        assert {graph.nodes["a"].depth, graph.nodes["b"].depth} <= {0, 1}
        assert critical_path(graph) in ([], ["a", "b"], ["b", "a"])

    def test_empty(self):
        graph = build_causal_graph([])
        assert graph.nodes == {}
        assert critical_path(graph) == []


def graph_page(events, event_id):
    return next(e.page_number for e in events if e.id == event_id)


class TestOrdering:
    """Tests for order_timeline()."""

    def test_linear(self):
        events = [make_event("a", 1, "A"), make_event("b", 2, "B")]
        ordered = order_timeline(events)
        assert ordered.reading_order == ordered.chronological_order == ["a", "b"]
        assert ordered.flashback_count == 0
        assert ordered.discrepancies == []

    def test_flashback_moves_first(self):
        events = [make_event("a", 1, "A"), make_event("b", 2, "B"), make_event("m", 3, "Memory", is_flashback=True)]
        ordered = order_timeline(events)

        assert ordered.chronological_order[0] == "m"
        assert ordered.flashback_count == 1

    def test_explicit_order_discrepancy(self):
        """Non-flashback events out of order by more than the tolerance are reported."""
        events = [make_event(f"e{i}", i, f"Event {i}", chronological_order=i) for i in range(1, 6)]
        events[0] = events[0].model_copy(update={"chronological_order": 10})
        ordered = order_timeline(events, tolerance=2)

        assert ordered.chronological_order[-1] == "e1"
        assert [d.event_id for d in ordered.discrepancies] == ["e1"]
        assert ordered.discrepancies[0].gap == 4


class TestFlashback:
    """Tests for flashback cue detection."""

    def test_cues_found(self):
        event = make_event("e", 10, "Rei remembers", description="Sepia panels show her childhood, years ago")
        detection = detect_flashback(event)

        assert detection.is_flashback
        assert "sepia" in detection.visual_cues
        assert "remembers" in detection.narrative_cues
        assert detection.confidence > 0.5
        assert detection.kind == FlashbackType.MEMORY

    def test_no_cues(self):
        detection = detect_flashback(make_event("e", 10, "Rei fights", description="A sword duel on the roof"))
        assert not detection.is_flashback
        assert detection.kind is None

    def test_dream_kind(self):
        event = make_event("e", 10, "Dream", description="In a dream she remembers her mother")
        assert classify_flashback(event) == FlashbackType.DREAM

    def test_candidates_skip_flagged(self):
        events = [
            make_event("a", 1, "Rei remembers", description="Sepia memory of her childhood", is_flashback=True),
            make_event("b", 2, "Rei remembers", description="Sepia memory of her childhood"),
        ]
        assert [c.event_id for c in flashback_candidates(events)] == ["b"]
