"""Tests for ReconciliationOrchestrator."""

import json

import pytest

from conftest import analysis_text, make_batch, make_character, make_event, raw_batch
from storyline_kg.config import ReconcileConfig
from storyline_kg.errors import MigrationError, ReconciliationAborted, ReconciliationError
from storyline_kg.ingestion.resolution.contradictions import REVIEW_MARKER
from storyline_kg.reconciliation import ReconciliationOrchestrator, ViewType
from storyline_kg.reconciliation.views import SummaryView
from storyline_kg.types.provenance import OperationType
from storyline_kg.types.results import Resolution


@pytest.fixture
def orchestrator():
    return ReconciliationOrchestrator(ReconcileConfig(), analysis_id="analysis-test")


def _rei_raw_batches():
    first = analysis_text(
        characters=[
            {
                "id": "char-rei",
                "name": "Rei",
                "description": "Young swordswoman with a scar across her left eye",
                "firstAppearance": 3,
                "importance": "major",
            }
        ],
        timeline=[
            {
                "id": "ev-arrival",
                "pageNumber": 5,
                "title": "Rei arrives at the academy",
                "description": "Rei walks through the academy gates for the first time",
                "characters": ["Rei"],
                "significance": "major",
            }
        ],
        themes=[{"name": "Friendship"}],
    )
    second = analysis_text(
        characters=[
            {
                "id": "char-rei-ayama",
                "name": "Rei Ayama",
                "aliases": ["Rei"],
                "description": "Swordswoman with a scar over her left eye, top of her class",
                "firstAppearance": 22,
            }
        ],
        timeline=[
            {
                "id": "ev-duel",
                "pageNumber": 30,
                "title": "Rei Ayama duels the captain",
                "description": "A long duel on the training grounds ends in a draw",
                "characters": ["Rei Ayama"],
            }
        ],
        themes=[{"name": "friendship", "keywords": ["bonds"]}],
    )
    return [raw_batch(0, 1, 20, first), raw_batch(1, 15, 35, second)]


def _snapshot(storyline):
    return (
        [c.id for c in storyline.characters],
        [(c.first_appearance, sorted(c.aliases)) for c in storyline.characters],
        [(e.id, e.page_number, e.characters) for e in storyline.timeline],
        sorted(t.name.lower() for t in storyline.themes),
    )


class TestReconcile:
    """End-to-end reconciliation."""

    @pytest.mark.asyncio
    async def test_raw_batches_end_to_end(self, orchestrator):
        """Two overlapping batches naming one character differently produce one character."""
        storyline = await orchestrator.reconcile(_rei_raw_batches())

        assert len(storyline.characters) == 1
        rei = storyline.characters[0]
        assert rei.id == "char-rei-ayama"
        assert "Rei" in rei.aliases
        assert rei.first_appearance == 3
        assert rei.importance.value == "major"

        assert [e.id for e in storyline.timeline] == ["ev-arrival", "ev-duel"]
        assert storyline.event("ev-arrival").characters == ["char-rei-ayama"]
        assert len(storyline.themes) == 1
        assert sorted(storyline.batches) == [0, 1]
        assert len(storyline.overlaps) == 1
        assert storyline.gaps == []

    @pytest.mark.asyncio
    async def test_provenance_of_merge(self, orchestrator):
        await orchestrator.reconcile(_rei_raw_batches())
        tracker = orchestrator.tracker

        assert tracker.get_entity("char-rei").merged_into == "char-rei-ayama"
        assert sorted(tracker.get_entity("char-rei-ayama").source_batches) == [0, 1]
        assert tracker.verify_integrity("char-rei-ayama").valid

        report = orchestrator.provenance.export_report()
        assert report.operations_by_type["extraction"] == 2
        assert report.operations_by_type["validation"] == 2
        assert report.operations_by_type["merge"] >= 2
        assert report.operations_by_stage["characters"] >= 1

    @pytest.mark.asyncio
    async def test_merge_order_does_not_matter(self, rei_batches):
        """Non-overlapping batches give the same Storyline in either order."""
        forward = ReconciliationOrchestrator(ReconcileConfig())
        backward = ReconciliationOrchestrator(ReconcileConfig())

        for batch in rei_batches:
            await forward.submit(batch)
        for batch in reversed(rei_batches):
            await backward.submit(batch)

        assert _snapshot(forward.storyline) == _snapshot(backward.storyline)

    @pytest.mark.asyncio
    async def test_resubmitting_is_idempotent(self, rei_batches):
        orchestrator = ReconciliationOrchestrator(ReconcileConfig())
        for batch in rei_batches:
            await orchestrator.submit(batch)
        before = _snapshot(orchestrator.storyline)

        await orchestrator.submit(rei_batches[1])

        after = _snapshot(orchestrator.storyline)
        assert [c.id for c in orchestrator.storyline.characters] == before[0]
        assert len(after[2]) == len(before[2])

    @pytest.mark.asyncio
    async def test_unparseable_batch_is_degraded(self, orchestrator):
        """A batch with no JSON is kept as an empty degraded batch."""
        good = _rei_raw_batches()[0]
        bad = raw_batch(1, 21, 40, "I could not analyze these pages.")

        prepared = await orchestrator.ingest_batch(bad)
        storyline = await orchestrator.reconcile([good, bad])

        assert not prepared.validation_passed
        assert prepared.batch.degraded
        assert prepared.batch.confidence == 0.0
        assert len(storyline.characters) == 1
        assert sorted(storyline.batches) == [0, 1]
        assert orchestrator.provenance.export_report().failed_validations == 1

    @pytest.mark.asyncio
    async def test_invalid_records_dropped(self, orchestrator):
        text = analysis_text(
            characters=[
                {"name": "Rei", "description": "Young swordswoman", "importance": "major"},
                {"name": "Kai", "importance": "legendary"},
            ]
        )
        prepared = await orchestrator.ingest_batch(raw_batch(0, 1, 20, text))

        assert not prepared.validation_passed
        assert [c.name for c in prepared.batch.characters] == ["Rei"]
        assert prepared.issues[0].startswith("/characters/1/importance")
        assert prepared.batch.confidence == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_unknown_version_is_fatal(self, orchestrator):
        text = json.dumps({"metadata": {"version": "0.1.0"}, "characters": []})
        with pytest.raises(MigrationError):
            await orchestrator.reconcile([raw_batch(0, 1, 20, text)])

    @pytest.mark.asyncio
    async def test_no_batches(self, orchestrator):
        with pytest.raises(ReconciliationError):
            await orchestrator.reconcile([])

    @pytest.mark.asyncio
    async def test_colliding_ids_rekeyed(self, orchestrator):
        """Different characters reported under one id are kept apart."""
        kai = make_batch(
            0,
            1,
            20,
            characters=[make_character("char-x", "Kai", description="Merchant who sells maps", first_appearance=2)],
        )
        mika = make_batch(
            1,
            60,
            80,
            characters=[make_character("char-x", "Mika", description="Pilot of the airship fleet", first_appearance=61)],
            events=[make_event("ev-takeoff", 62, "Mika takes off", ["char-x"])],
        )

        await orchestrator.submit(kai)
        storyline = await orchestrator.submit(mika)

        assert [c.id for c in storyline.characters] == ["char-x", "char-x-b1"]
        assert storyline.event("ev-takeoff").characters == ["char-x-b1"]
        transforms = [e for e in orchestrator.provenance.entries if e.type == OperationType.TRANSFORM]
        assert transforms[0].parameters["transform_type"] == "id_collision"
        assert transforms[0].outputs == ["char-x-b1"]


class TestLifecycle:
    """Abort, completion and export."""

    @pytest.mark.asyncio
    async def test_abort_between_batches(self, orchestrator, rei_batches):
        first = await orchestrator.submit(rei_batches[0])
        orchestrator.abort()

        with pytest.raises(ReconciliationAborted):
            await orchestrator.submit(rei_batches[1])
        with pytest.raises(ReconciliationAborted):
            await orchestrator.complete()

        assert orchestrator.storyline is first
        assert orchestrator.provenance.completed_at is None

    @pytest.mark.asyncio
    async def test_abort_mid_merge_keeps_committed_state(self, orchestrator, rei_batches, monkeypatch):
        """Aborting after a stage discards the whole in-flight merge."""
        await orchestrator.submit(rei_batches[0])
        committed = orchestrator.storyline
        entries = len(orchestrator.provenance.entries)
        dedupe = orchestrator._event_dedup.dedupe

        async def abort_during_timeline(*args, **kwargs):
            orchestrator.abort()
            return await dedupe(*args, **kwargs)

        monkeypatch.setattr(orchestrator._event_dedup, "dedupe", abort_during_timeline)

        with pytest.raises(ReconciliationAborted):
            await orchestrator.submit(rei_batches[1])

        assert orchestrator.storyline is committed
        assert len(orchestrator.storyline.characters) == 1
        assert orchestrator.storyline.characters[0].id == "char-rei"
        assert len(orchestrator.provenance.entries) == entries

    @pytest.mark.asyncio
    async def test_complete(self, orchestrator, rei_batches):
        await orchestrator.submit(rei_batches[0])
        trail = await orchestrator.complete()

        assert trail.completed_at is not None
        assert trail.analysis_id == "analysis-test"
        with pytest.raises(ReconciliationError):
            await orchestrator.submit(rei_batches[1])

    @pytest.mark.asyncio
    async def test_export_recorded(self, orchestrator, rei_batches):
        for batch in rei_batches:
            await orchestrator.submit(batch)

        view = await orchestrator.export(ViewType.SUMMARY)

        assert isinstance(view, SummaryView)
        assert view.total_characters == 1
        last = orchestrator.provenance.entries[-1]
        assert last.type == OperationType.EXPORT
        assert last.stage == "export"
        assert last.parameters == {"view": "summary"}

    @pytest.mark.asyncio
    async def test_view_does_not_record(self, orchestrator, rei_batches):
        await orchestrator.submit(rei_batches[0])
        entries = len(orchestrator.provenance.entries)

        orchestrator.view("anchor_detection")

        assert len(orchestrator.provenance.entries) == entries

    @pytest.mark.asyncio
    async def test_no_provider_makes_no_calls(self, orchestrator, rei_batches):
        for batch in rei_batches:
            await orchestrator.submit(batch)
        assert orchestrator.telemetry_summary().total_calls == 0
        assert orchestrator.unresolved() == []


class TestCrossBatchEvents:
    """Overlap stitching and contradictions through the full merge."""

    @pytest.mark.asyncio
    async def test_overlap_events_stitched_and_counted(self, orchestrator):
        """An event reported by both overlapping batches becomes one event."""
        first = make_batch(
            0,
            1,
            20,
            characters=[make_character("c-a", "Rei", first_appearance=2)],
            events=[make_event("e-a", 18, "The duel begins", ["c-a"])],
        )
        second = make_batch(
            1,
            15,
            35,
            characters=[make_character("c-b", "Rei", first_appearance=16)],
            events=[make_event("e-b", 18, "The duel begins", ["c-b"])],
        )

        await orchestrator.submit(first)
        storyline = await orchestrator.submit(second)

        assert [(e.id, e.page_number, e.characters) for e in storyline.timeline] == [("e-a", 18, ["c-a"])]
        assert len(storyline.overlaps) == 1
        region = storyline.overlaps[0]
        assert (region.batch_a, region.batch_b, region.start_page, region.end_page) == (0, 1, 15, 20)
        assert region.merged_events == 1

        assert orchestrator.tracker.get_entity("e-b").merged_into == "e-a"
        merge_types = [
            e.parameters["merge_type"] for e in orchestrator.provenance.entries if e.type == OperationType.MERGE
        ]
        assert "overlap" in merge_types

    @pytest.mark.asyncio
    async def test_overlap_count_survives_resubmission(self, orchestrator):
        first = make_batch(0, 1, 20, events=[make_event("e-a", 18, "The duel begins", ["c-a"])])
        second = make_batch(1, 15, 35, events=[make_event("e-b", 18, "The duel begins", ["c-a"])])

        await orchestrator.submit(first)
        await orchestrator.submit(second)
        storyline = await orchestrator.submit(second)

        assert len(storyline.timeline) == 1
        assert storyline.overlaps[0].merged_events == 1

    @pytest.mark.asyncio
    async def test_contradiction_flagged_for_review(self, orchestrator):
        """Comparably confident reports 6 pages apart are kept from A and flagged."""
        first = make_batch(
            0,
            30,
            45,
            characters=[make_character("rei-0", "Rei", first_appearance=31), make_character("cap-0", "Captain")],
            events=[
                make_event(
                    "ev-a", 40, "Confrontation", ["rei-0", "cap-0"], description="Rei faces the captain", confidence=0.6
                )
            ],
        )
        second = make_batch(
            1,
            46,
            60,
            characters=[make_character("rei-1", "Rei", first_appearance=46), make_character("cap-1", "Captain")],
            events=[
                make_event(
                    "ev-b", 46, "Confrontation", ["rei-1", "cap-1"], description="Rei faces the captain", confidence=0.5
                )
            ],
        )

        await orchestrator.submit(first)
        storyline = await orchestrator.submit(second)

        assert len(storyline.timeline) == 1
        event = storyline.timeline[0]
        assert event.id == "ev-a"
        assert event.page_number == 40
        assert event.description.endswith(REVIEW_MARKER)
        assert event.description.count(REVIEW_MARKER) == 1

        (item,) = storyline.review_items
        assert item.entity_id == "ev-a"
        assert item.resolution.resolution == Resolution.FLAG_FOR_REVIEW
        assert item.resolution.confidence == 0.3
        assert len(orchestrator.unresolved()) == 1

        conflicts = [
            e
            for e in orchestrator.provenance.entries
            if e.type == OperationType.MERGE and e.parameters["merge_type"] == "conflict_resolution"
        ]
        assert len(conflicts) == 1
        assert conflicts[0].parameters["field"] == "page_number"
        assert conflicts[0].parameters["resolution"] == "flag_for_review"
        assert conflicts[0].outputs == ["ev-a"]

    @pytest.mark.asyncio
    async def test_confident_report_wins(self, orchestrator):
        """A much more confident report decides the page without a review item."""
        first = make_batch(
            0,
            30,
            45,
            events=[make_event("ev-a", 40, "Confrontation", ["rei"], description="Rei faces the captain", confidence=0.9)],
        )
        second = make_batch(
            1,
            46,
            60,
            events=[make_event("ev-b", 46, "Confrontation", ["rei"], description="Rei faces the captain", confidence=0.4)],
        )

        await orchestrator.submit(first)
        storyline = await orchestrator.submit(second)

        assert [e.page_number for e in storyline.timeline] == [40]
        assert storyline.review_items == []
        assert REVIEW_MARKER not in storyline.timeline[0].description
