"""Tests for the provenance tracker and audit report."""

import pytest

from conftest import make_character, make_event
from storyline_kg.provenance import ProvenanceTracker
from storyline_kg.types.provenance import OperationType
from storyline_kg.utils.telemetry import telemetry_stage


@pytest.fixture
def tracker():
    tracker = ProvenanceTracker("analysis-test")
    tracker.record_extraction(0, [make_character("c1", "Rei", confidence=0.6)], response_hash="hash-0")
    tracker.record_extraction(1, [make_character("c2", "Rei Ayama", confidence=0.9), make_event("e1", 25, "Duel")])
    return tracker


class TestRecording:
    """Tests for the record_* operations."""

    def test_extraction_creates_lineage(self, tracker):
        record = tracker.get_entity("c1")

        assert record.entity_type == "character"
        assert record.source_batches == [0]
        assert record.confidence == 0.6
        assert tracker.get_entity("e1").entity_type == "timelineevent"

    def test_extraction_entry(self, tracker):
        entry = tracker.trail.entries[0]
        assert entry.type == OperationType.EXTRACTION
        assert entry.inputs == ["hash-0"]
        assert entry.outputs == ["c1"]
        assert entry.parameters["batch_index"] == 0

    def test_merge_marks_removed_record(self, tracker):
        """The removed entity points at the survivor, which inherits its lineage."""
        entry = tracker.record_merge(["c1", "c2"], ["c2"], "deduplication", merged={"c1": "c2"})

        removed = tracker.get_entity("c1")
        kept = tracker.get_entity("c2")
        assert removed.merged_into == "c2"
        assert removed.created_by in kept.lineage
        assert sorted(kept.source_batches) == [0, 1]
        assert kept.modified_by == [entry.id]
        assert kept.confidence == 0.9

    def test_unknown_merge_type(self, tracker):
        with pytest.raises(ValueError):
            tracker.record_merge(["c1"], ["c1"], "guesswork")

    def test_stage_defaults_to_active_label(self, tracker):
        with telemetry_stage("characters"):
            entry = tracker.record_transform(["c1"], ["c1"], "normalize")
        assert entry.stage == "characters"
        assert tracker.record_transform(["c1"], ["c1"], "normalize").stage == "overview"

    def test_validation_issues_capped(self, tracker):
        entry = tracker.record_validation(2, False, [f"/characters/{i}: bad" for i in range(50)])
        assert entry.parameters["issue_count"] == 50
        assert len(entry.parameters["issues"]) == 20


class TestQueries:
    """Tests for lineage and integrity queries."""

    def test_lineage_in_order(self, tracker):
        merge = tracker.record_merge(["c1", "c2"], ["c2"], "deduplication", merged={"c1": "c2"})
        lineage = tracker.get_lineage("c2")
        assert lineage[-1].id == merge.id
        assert [e.type for e in lineage].count(OperationType.EXTRACTION) == 2

    def test_lineage_unknown(self, tracker):
        assert tracker.get_lineage("missing") is None

    def test_integrity(self, tracker):
        tracker.record_merge(["c1", "c2"], ["c2"], "deduplication", merged={"c1": "c2"})
        assert tracker.verify_integrity("c1").valid
        assert tracker.verify_integrity("c2").valid

        report = tracker.verify_integrity("missing")
        assert not report.valid
        assert report.issues == ["Entity not found in provenance"]

    def test_batch_entities(self, tracker):
        assert {p.entity_id for p in tracker.get_batch_entities(1)} == {"c2", "e1"}


class TestTrail:
    """Tests for trail snapshots and reports."""

    def test_fork_is_independent(self, tracker):
        forked = tracker.fork()
        forked.record_merge(["c1", "c2"], ["c2"], "deduplication", merged={"c1": "c2"})

        assert len(forked.trail.entries) == 3
        assert len(tracker.trail.entries) == 2
        assert tracker.get_entity("c1").merged_into is None

    def test_snapshot_is_a_copy(self, tracker):
        trail = tracker.trail
        trail.entries.clear()
        assert len(tracker.trail.entries) == 2

    def test_finalize_and_report(self, tracker):
        tracker.record_merge(["c1", "c2"], ["c2"], "deduplication", merged={"c1": "c2"})
        tracker.record_validation(3, False, ["/timeline: Expected an array"])
        trail = tracker.finalize()
        report = trail.export_report()

        assert trail.completed_at is not None
        assert report.analysis_id == "analysis-test"
        assert report.duration_seconds >= 0
        assert report.operations_by_type == {"extraction": 2, "merge": 1, "validation": 1}
        assert report.failed_validations == 1
        assert report.entities_created == 3
        assert report.entities_merged_away == 1

    def test_report_before_finalize(self, tracker):
        assert tracker.trail.completed_at is None
        assert tracker.trail.export_report().duration_seconds is None
