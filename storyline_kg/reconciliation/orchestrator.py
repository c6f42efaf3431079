"""
Reconciliation Orchestrator

Sequences the per-batch and cross-batch stages into one Storyline.

Pipeline:
    Per batch (concurrent, bounded by ``ingestion_concurrency``):
        raw text -> ingest (extract/repair/migrate) -> validate -> extract
        A batch that cannot be parsed is kept as an empty degraded batch.

    Merge (serialized by one lock, in arrival order):
        1. Extraction    - re-key id collisions, record extraction
        2. Characters    - dedupe, remap event/relationship references
        3. Timeline      - overlap stitching + dedupe with contradiction
                           resolution
        4. Themes        - dedupe
        5. Relationships - dedupe by character pair
        6. Analysis      - coverage gaps/overlaps, timeline gaps, ordering,
                           causal graph

Each merge runs on a clone of the repository and a fork of the provenance
tracker and is committed with one synchronous swap. ``abort()`` is checked
between stages; an aborted or cancelled merge leaves the last committed
Storyline and audit trail untouched.

Example:
    >>> orchestrator = ReconciliationOrchestrator(provider=OpenAILLMProvider(api_key))
    >>> storyline = await orchestrator.reconcile(raw_batches)
    >>> trail = await orchestrator.complete()
    >>> trail.export_report().operations_by_type
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field

from storyline_kg.config.settings import ReconcileConfig
from storyline_kg.errors import (
    ContradictionUnresolved,
    MigrationError,
    ParseError,
    ReconciliationAborted,
    ReconciliationError,
    ValidationError,
)
from storyline_kg.ingestion.extraction import EntityExtractor
from storyline_kg.ingestion.parsing import ingest
from storyline_kg.ingestion.resolution.contradictions import ContradictionResolver, EventCombiner
from storyline_kg.ingestion.resolution.dedup import Deduplicator
from storyline_kg.ingestion.resolution.similarity import CHARACTER_WEIGHTS, EVENT_WEIGHTS
from storyline_kg.ingestion.validation import validate_analysis
from storyline_kg.provenance import ProvenanceTracker
from storyline_kg.providers.arbitration import ArbitrationClient
from storyline_kg.providers.base import LLMProvider
from storyline_kg.reconciliation.repository import EntityRepository
from storyline_kg.reconciliation.views import ViewType, build_view
from storyline_kg.timeline.causal import build_causal_graph
from storyline_kg.timeline.coverage import CoverageAnalyzer
from storyline_kg.timeline.gaps import detect_gaps
from storyline_kg.timeline.ordering import order_timeline
from storyline_kg.types.batches import BatchResult, RawBatch
from storyline_kg.types.provenance import Actor, AuditTrail
from storyline_kg.types.results import DedupResult, ResponseShape, Storyline
from storyline_kg.utils.telemetry import ArbitrationCollector, ArbitrationSummary, telemetry_collector, telemetry_stage
from storyline_kg.utils.text import hash_response, normalize_name

logger = logging.getLogger(__name__)


class PreparedBatch(BaseModel):
    """
    A batch ready to merge, plus what ingestion found.

    Attributes:
        batch: Extracted entities (empty and degraded on parse failure)
        response_hash: Hash of the raw response, when there was one
        validation_passed: False when records were dropped or parsing failed
        issues: Validation issues as "path: message" strings
    """

    batch: BatchResult
    response_hash: str | None = None
    validation_passed: bool = True
    issues: list[str] = Field(default_factory=list)


class ReconciliationOrchestrator:
    """
    Incremental multi-batch reconciliation.

    Args:
        config: Reconciliation settings (defaults + environment when None)
        provider: LLM provider for arbitration (None = heuristics only)
        analysis_id: Id for the audit trail (generated when None)
    """

    def __init__(
        self,
        config: ReconcileConfig | None = None,
        provider: LLMProvider | None = None,
        analysis_id: str | None = None,
    ) -> None:
        self.config = config or ReconcileConfig()
        self.provider = provider
        cfg = self.config

        self._arbiter: ArbitrationClient | None = None
        if provider is not None:
            self._arbiter = ArbitrationClient(
                provider,
                timeout=cfg.arbitration_timeout,
                retries=cfg.arbitration_retries,
                max_tokens=cfg.arbitration_max_tokens,
                retry_wait=cfg.arbitration_retry_wait,
            )

        self._extractor = EntityExtractor(
            min_description_length=cfg.min_description_length,
            degraded_confidence_factor=cfg.degraded_confidence_factor,
        )
        self._character_dedup = Deduplicator.from_config(
            cfg,
            self._arbiter,
            CHARACTER_WEIGHTS.model_copy(update={"proximity_window": cfg.character_proximity_window}),
        )
        self._event_dedup = Deduplicator.from_config(
            cfg,
            self._arbiter,
            EVENT_WEIGHTS.model_copy(update={"proximity_window": cfg.event_proximity_window}),
        )
        self._theme_dedup = Deduplicator.from_config(cfg, self._arbiter)
        self._relationship_dedup = Deduplicator.from_config(cfg)
        self._resolver = ContradictionResolver.from_config(cfg, self._arbiter)
        self._coverage = CoverageAnalyzer.from_config(cfg)

        self._repository = EntityRepository()
        self._tracker = ProvenanceTracker(analysis_id, parameters=self._run_parameters())
        self._storyline = Storyline()
        self._lock = asyncio.Lock()
        self._aborted = False
        self._completed = False
        self.telemetry = ArbitrationCollector()

    def _run_parameters(self) -> dict[str, Any]:
        cfg = self.config
        return {
            "provider": self.provider.model_name if self.provider is not None else None,
            "strict_validation": cfg.strict_validation,
            "dedup_merge_threshold": cfg.dedup_merge_threshold,
            "dedup_auto_merge_floor": cfg.dedup_auto_merge_floor,
            "contradiction_page_tolerance": cfg.contradiction_page_tolerance,
            "contradiction_confidence_gap": cfg.contradiction_confidence_gap,
        }

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def storyline(self) -> Storyline:
        """Last committed Storyline."""
        return self._storyline

    @property
    def provenance(self) -> AuditTrail:
        """Snapshot of the last committed audit trail."""
        return self._tracker.trail

    @property
    def tracker(self) -> ProvenanceTracker:
        return self._tracker

    def telemetry_summary(self) -> ArbitrationSummary:
        return self.telemetry.summary()

    def unresolved(self) -> list[ContradictionUnresolved]:
        """Contradictions left for human review, as error annotations."""
        return [item.as_error() for item in self._storyline.review_items]

    def view(self, view_type: ViewType | str) -> BaseModel:
        """Build an output view of the committed Storyline."""
        return build_view(self._storyline, ViewType(view_type))

    async def export(self, view_type: ViewType | str) -> BaseModel:
        """Build a view and record the export in the audit trail."""
        view_type = ViewType(view_type)
        async with self._lock:
            view = build_view(self._storyline, view_type)
            entity_ids = [c.id for c in self._storyline.characters] + [e.id for e in self._storyline.timeline]
            self._tracker.record_export(view_type.value, entity_ids, stage="export")
        return view

    def abort(self) -> None:
        """Stop the in-flight merge at the next stage boundary and refuse further batches."""
        if not self._aborted:
            logger.warning(f"Reconciliation {self._tracker.analysis_id} aborted")
        self._aborted = True

    def _checkpoint(self) -> None:
        if self._aborted:
            raise ReconciliationAborted("Reconciliation aborted; last committed state kept")

    async def complete(self) -> AuditTrail:
        """Wait for the in-flight merge, then finalize and return the audit trail."""
        async with self._lock:
            self._checkpoint()
            self._completed = True
            return self._tracker.finalize()

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def ingest_batch(self, raw: RawBatch) -> PreparedBatch:
        """Parse, validate and extract one raw batch off the event loop."""
        return await asyncio.to_thread(self._prepare, raw)

    def _prepare(self, raw: RawBatch) -> PreparedBatch:
        response_hash = hash_response(raw.raw_text)
        try:
            result = ingest(
                raw.raw_text,
                ResponseShape.OBJECT,
                min_description_length=self.config.min_description_length,
            )
            report = validate_analysis(result.data, strict=self.config.strict_validation)
        except MigrationError as e:
            logger.error(f"Batch {raw.batch_index}: no migration path from {e.from_version} to {e.to_version}")
            raise
        except (ParseError, ValidationError) as e:
            logger.warning(f"Batch {raw.batch_index} could not be ingested, keeping it as degraded: {e}")
            if isinstance(e, ValidationError):
                issues = [f"{issue.path}: {issue.message}" for issue in e.issues]
            else:
                issues = [str(e)]
            batch = EntityExtractor.degraded_batch(
                raw.batch_index, raw.start_page, raw.end_page, f"{type(e).__name__}: {e}"
            )
            return PreparedBatch(batch=batch, response_hash=response_hash, validation_passed=False, issues=issues)

        batch = self._extractor.extract(
            report,
            batch_index=raw.batch_index,
            start_page=raw.start_page,
            end_page=raw.end_page,
            warnings=result.warnings,
        )
        return PreparedBatch(
            batch=batch,
            response_hash=response_hash,
            validation_passed=report.is_valid,
            issues=[f"{issue.path}: {issue.message}" for issue in report.errors],
        )

    # -------------------------------------------------------------------------
    # Merging
    # -------------------------------------------------------------------------

    async def reconcile(self, batches: Sequence[BatchResult | RawBatch]) -> Storyline:
        """
        Ingest all batches concurrently and merge each as soon as it is ready.

        Raises:
            ReconciliationError: If no batches were supplied
            MigrationError: If a response declares a version with no migration path
            ReconciliationAborted: If abort() was called
        """
        if not batches:
            logger.error("Reconciliation requested with no batches")
            raise ReconciliationError("No batches supplied")

        semaphore = asyncio.Semaphore(max(1, self.config.ingestion_concurrency))

        async def prepare(item: BatchResult | RawBatch) -> PreparedBatch:
            if isinstance(item, RawBatch):
                async with semaphore:
                    return await self.ingest_batch(item)
            return PreparedBatch(batch=item)

        start = time.perf_counter_ns()
        tasks = [asyncio.ensure_future(prepare(item)) for item in batches]
        try:
            for ready in asyncio.as_completed(tasks):
                await self.submit(await ready)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        elapsed_ms = (time.perf_counter_ns() - start) // 1_000_000
        storyline = self._storyline
        logger.info(
            f"Reconciled {len(batches)} batches: {len(storyline.characters)} characters, "
            f"{len(storyline.timeline)} events, {len(storyline.review_items)} review items, {elapsed_ms}ms"
        )
        return storyline

    async def submit(self, item: BatchResult | PreparedBatch | RawBatch) -> Storyline:
        """
        Merge one batch into the Storyline and commit.

        Returns:
            The newly committed Storyline
        """
        if isinstance(item, RawBatch):
            item = await self.ingest_batch(item)
        prepared = item if isinstance(item, PreparedBatch) else PreparedBatch(batch=item)

        async with self._lock:
            self._checkpoint()
            if self._completed:
                raise ReconciliationError("Reconciliation already completed")

            repository = self._repository.clone()
            tracker = self._tracker.fork()
            start = time.perf_counter_ns()

            with telemetry_collector(self.telemetry):
                storyline = await self._merge(prepared, repository, tracker)
            self._checkpoint()

            self._repository, self._tracker, self._storyline = repository, tracker, storyline

            elapsed_ms = (time.perf_counter_ns() - start) // 1_000_000
            logger.info(
                f"Merged batch {prepared.batch.batch_index} (pages {prepared.batch.start_page}-"
                f"{prepared.batch.end_page}): {len(storyline.characters)} characters, "
                f"{len(storyline.timeline)} events, {elapsed_ms}ms"
            )
            return storyline

    async def _merge(self, prepared: PreparedBatch, repo: EntityRepository, tracker: ProvenanceTracker) -> Storyline:
        cfg = self.config

        # Stage 1: Extraction
        with telemetry_stage("extraction"):
            batch = self._record_batch(prepared, repo, tracker)

        # Stage 2: Characters
        self._checkpoint()
        with telemetry_stage("characters"):
            inputs = repo.characters + batch.characters
            result = await self._character_dedup.dedupe(inputs)
            repo.replace_characters(result.unique)
            repo.replace_events(repo.events + batch.events)
            repo.replace_relationships(repo.relationships + batch.relationships)
            repo.apply_character_remap(result.id_remap)
            _record_dedup(tracker, result)

        # Stage 3: Timeline
        self._checkpoint()
        with telemetry_stage("timeline"):
            forced = self._overlap_pairs(batch, repo, tracker)
            combiner = EventCombiner(self._resolver)
            result = await self._event_dedup.dedupe(repo.events, combine=combiner, forced_pairs=forced)
            repo.replace_events(result.unique)
            repo.add_review_items(combiner.reviews)
            repo.apply_event_remap(result.id_remap)
            _record_dedup(tracker, result)
            for resolution in combiner.resolutions:
                contradiction = resolution.contradiction
                tracker.record_merge(
                    [contradiction.element_a, contradiction.element_b],
                    [result.id_remap.get(contradiction.element_a, contradiction.element_a)],
                    "conflict_resolution",
                    parameters={
                        "field": contradiction.field,
                        "resolution": resolution.resolution.value,
                        "confidence": resolution.confidence,
                        "method": resolution.method,
                    },
                    actor=Actor.LLM if resolution.method == "llm" else Actor.SYSTEM,
                )

        # Stage 4: Themes
        self._checkpoint()
        with telemetry_stage("themes"):
            result = await self._theme_dedup.dedupe(repo.themes + batch.themes)
            repo.replace_themes(result.unique)
            _record_dedup(tracker, result)

        # Stage 5: Relationships
        self._checkpoint()
        with telemetry_stage("relationships"):
            result = await self._relationship_dedup.dedupe(repo.relationships)
            repo.replace_relationships(result.unique)
            _record_dedup(tracker, result)

        # Stage 6: Analysis
        self._checkpoint()
        with telemetry_stage("analysis"):
            coverage = self._coverage.analyze(repo.batches)
            overlaps = [
                region.model_copy(update={"merged_events": repo.stitched_events(region.batch_a, region.batch_b)})
                for region in coverage.overlaps
            ]
            events = sorted(repo.events, key=lambda e: (e.page_number, e.id))
            timeline_gaps = detect_gaps(events, cfg.timeline_min_gap, cfg.timeline_max_gap)
            ordered = order_timeline(events, cfg.ordering_tolerance)
            graph = build_causal_graph(events, cfg.causal_lookahead, cfg.causal_strength_threshold)

        return Storyline(
            characters=sorted(repo.characters, key=lambda c: (c.first_appearance, normalize_name(c.name), c.id)),
            timeline=events,
            themes=sorted(repo.themes, key=lambda t: (normalize_name(t.name), t.id)),
            relationships=sorted(repo.relationships, key=lambda r: (r.pair_key, r.id)),
            gaps=coverage.gaps,
            overlaps=overlaps,
            timeline_gaps=timeline_gaps,
            discrepancies=ordered.discrepancies,
            causal_graph=graph,
            review_items=repo.review_items,
            batches=[b.batch_index for b in repo.batches],
            confidence=coverage.confidence,
        )

    def _record_batch(self, prepared: PreparedBatch, repo: EntityRepository, tracker: ProvenanceTracker) -> BatchResult:
        """Re-key colliding ids, store the batch and record its extraction."""
        batch, rekeyed = _rekey_collisions(prepared.batch, repo.all_ids() | tracker.entity_ids())
        if repo.has_batch(batch.batch_index):
            logger.warning(f"Batch {batch.batch_index} submitted again; its entities are merged as new reports")
        repo.add_batch(batch)

        if prepared.response_hash is not None or not prepared.validation_passed:
            tracker.record_validation(
                batch.batch_index,
                prepared.validation_passed,
                prepared.issues,
                response_hash=prepared.response_hash,
            )

        entities = [*batch.characters, *batch.events, *batch.themes, *batch.relationships]
        tracker.record_extraction(batch.batch_index, entities, response_hash=prepared.response_hash)
        for old_id, new_id in rekeyed.items():
            tracker.record_transform([old_id], [new_id], "id_collision", {"batch_index": batch.batch_index})
        if rekeyed:
            logger.debug(f"Batch {batch.batch_index}: re-keyed {len(rekeyed)} colliding id(s)")
        return batch

    def _overlap_pairs(
        self,
        batch: BatchResult,
        repo: EntityRepository,
        tracker: ProvenanceTracker,
    ) -> list[tuple[str, str]]:
        """Event pairs reported by both this batch and a batch it overlaps."""
        incoming_ids = {e.id for e in batch.events}
        incoming = [e for e in repo.events if e.id in incoming_ids]
        if not incoming:
            return []

        pairs: list[tuple[str, str]] = []
        for region in self._coverage.analyze(repo.batches).overlaps:
            if batch.batch_index not in (region.batch_a, region.batch_b):
                continue
            other = region.batch_b if region.batch_a == batch.batch_index else region.batch_a
            existing = [
                e for e in repo.events
                if e.id not in incoming_ids
                and (record := tracker.get_entity(e.id)) is not None
                and other in record.source_batches
            ]
            matches = self._coverage.match_overlap_events(region, existing, incoming)
            repo.add_stitched_events(region.batch_a, region.batch_b, [existing_id for existing_id, _ in matches])
            pairs.extend(matches)

        if pairs:
            logger.debug(f"Batch {batch.batch_index}: {len(pairs)} overlap event match(es)")
        return pairs


def _record_dedup(tracker: ProvenanceTracker, result: DedupResult) -> None:
    if not result.duplicates:
        return
    groups: dict[str, dict[str, str]] = {}
    for record in result.duplicates:
        merge_type = "overlap" if record.reason.endswith("overlap") else "deduplication"
        groups.setdefault(merge_type, {})[record.removed] = result.id_remap.get(record.removed, record.kept)

    for merge_type, merged in groups.items():
        tracker.record_merge(
            sorted({*merged, *merged.values()}),
            sorted(set(merged.values())),
            merge_type,
            merged=merged,
        )


def _rekey_collisions(batch: BatchResult, taken: set[str]) -> tuple[BatchResult, dict[str, str]]:
    """Give entities whose id is already in use a batch-scoped id."""
    taken = set(taken)
    rekeyed: dict[str, str] = {}

    def claim(entity_id: str) -> str:
        if entity_id not in taken:
            taken.add(entity_id)
            return entity_id
        candidate = f"{entity_id}-b{batch.batch_index}"
        suffix = 2
        while candidate in taken:
            candidate = f"{entity_id}-b{batch.batch_index}-{suffix}"
            suffix += 1
        taken.add(candidate)
        rekeyed[entity_id] = candidate
        return candidate

    characters = []
    character_remap: dict[str, str] = {}
    for character in batch.characters:
        new_id = claim(character.id)
        if new_id != character.id:
            character_remap[character.id] = new_id
            character = character.model_copy(update={"id": new_id})
        characters.append(character)

    events = []
    for event in batch.events:
        update: dict[str, Any] = {"characters": [character_remap.get(c, c) for c in event.characters]}
        new_id = claim(event.id)
        if new_id != event.id:
            update["id"] = new_id
        events.append(event.model_copy(update=update))

    themes = []
    for theme in batch.themes:
        new_id = claim(theme.id)
        themes.append(theme.model_copy(update={"id": new_id}) if new_id != theme.id else theme)

    relationships = []
    for rel in batch.relationships:
        update = {
            "character_a": character_remap.get(rel.character_a, rel.character_a),
            "character_b": character_remap.get(rel.character_b, rel.character_b),
        }
        new_id = claim(rel.id)
        if new_id != rel.id:
            update["id"] = new_id
        relationships.append(rel.model_copy(update=update))

    if not rekeyed:
        return batch, rekeyed
    rebuilt = batch.model_copy(
        update={"characters": characters, "events": events, "themes": themes, "relationships": relationships}
    )
    return rebuilt, rekeyed
