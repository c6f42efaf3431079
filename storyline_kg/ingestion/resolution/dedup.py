"""
Cross-Batch Deduplication

Merges records that describe the same character, event, theme or
relationship across batches and overlap windows.

Algorithm:
    1. Similarity matrix over all records (see similarity.py)
    2. Candidate pairs above the candidate floor, strongest first
    3. Band per pair:
        - >= auto-merge floor: merge
        - middle band: LLM yes/no confidence when an arbiter is supplied,
          otherwise the heuristic score against the merge threshold
        - below the floor: distinct
    4. Accepted pairs -> Union-Find components
    5. Each component folds into its best record (survivor tie-break)
    6. Repeat until no pair is accepted, so a second run is a no-op

Example:
    >>> dedup = Deduplicator(arbiter=None, merge_threshold=0.75)
    >>> result = await dedup.dedupe(characters)
    >>> print(f"{len(characters)} -> {len(result.unique)} characters")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import numpy as np

from storyline_kg.errors import ProviderError
from storyline_kg.ingestion.resolution.merge_policy import merge_entities, survivor_rank
from storyline_kg.ingestion.resolution.similarity import SimilarityWeights, similarity_matrix
from storyline_kg.types.entities import Character, TimelineEvent
from storyline_kg.types.results import DedupResult, DuplicateRecord, MatchBand, MatchDecision
from storyline_kg.utils.clustering import match_components

if TYPE_CHECKING:
    from storyline_kg.config.settings import ReconcileConfig
    from storyline_kg.providers.arbitration import ArbitrationClient

logger = logging.getLogger(__name__)

E = TypeVar("E")

Combine = Callable[[Any, Any, MatchDecision], Awaitable[Any]]


_VERIFY_SYSTEM_PROMPT = """You compare two records extracted from different page ranges of the same manga.

Decide whether they describe the SAME character or event.
- Different names can refer to one person (nicknames, family names, titles).
- Similar-sounding characters can still be different people.

Respond with ONLY a confidence score between 0.0 and 1.0 that they are the same."""


def _describe(entity: Any) -> str:
    if isinstance(entity, Character):
        aliases = ", ".join(entity.aliases) or "none"
        return (
            f"Name: {entity.name}\nAliases: {aliases}\nFirst appearance: page {entity.first_appearance}\n"
            f"Description: {entity.description or '(none)'}"
            + (f"\nAppearance: {entity.appearance}" if entity.appearance else "")
        )
    if isinstance(entity, TimelineEvent):
        return (
            f"Title: {entity.title}\nPage: {entity.page_number}\n"
            f"Characters: {', '.join(entity.characters) or 'none'}\n"
            f"Description: {entity.description or '(none)'}"
        )
    name = getattr(entity, "name", None) or getattr(entity, "id", "?")
    return f"Name: {name}\nDescription: {getattr(entity, 'description', '') or '(none)'}"


def _verify_prompt(a: Any, b: Any, score: float) -> str:
    return (
        f"RECORD A:\n{_describe(a)}\n\nRECORD B:\n{_describe(b)}\n\n"
        f"Heuristic similarity: {score:.2f}\n\n"
        "Confidence that A and B are the same (0.0-1.0):"
    )


async def _policy_combine(keep: Any, other: Any, decision: MatchDecision) -> Any:
    return merge_entities(keep, other)


class Deduplicator(Generic[E]):
    """
    Similarity-banded deduplicator with optional LLM verification.

    Args:
        arbiter: Client for middle-band verification (None = heuristic only)
        candidate_floor: Below this, pairs are distinct
        auto_merge_floor: At or above this, pairs merge without asking
        merge_threshold: Heuristic threshold for the middle band
        verify_threshold: Minimum LLM confidence to accept a merge
        max_passes: Merge passes before giving up on a fixpoint
        concurrency: Max concurrent verification calls
        weights: Component weights (defaults per entity kind)
    """

    def __init__(
        self,
        arbiter: ArbitrationClient | None = None,
        *,
        candidate_floor: float = 0.4,
        auto_merge_floor: float = 0.9,
        merge_threshold: float = 0.75,
        verify_threshold: float = 0.8,
        max_passes: int = 5,
        concurrency: int = 4,
        weights: SimilarityWeights | None = None,
    ) -> None:
        if not candidate_floor <= merge_threshold <= auto_merge_floor:
            raise ValueError(
                f"Thresholds must satisfy candidate_floor <= merge_threshold <= auto_merge_floor, "
                f"got {candidate_floor}, {merge_threshold}, {auto_merge_floor}"
            )
        self._arbiter = arbiter
        self.candidate_floor = candidate_floor
        self.auto_merge_floor = auto_merge_floor
        self.merge_threshold = merge_threshold
        self.verify_threshold = verify_threshold
        self._max_passes = max(1, max_passes)
        self._concurrency = max(1, concurrency)
        self._weights = weights
        # Verdicts by unordered id pair, so rejected pairs are not re-asked
        self._verdicts: dict[frozenset[str], float] = {}

    @classmethod
    def from_config(
        cls,
        config: ReconcileConfig,
        arbiter: ArbitrationClient | None = None,
        weights: SimilarityWeights | None = None,
    ) -> "Deduplicator":
        return cls(
            arbiter,
            candidate_floor=config.dedup_candidate_floor,
            auto_merge_floor=config.dedup_auto_merge_floor,
            merge_threshold=config.dedup_merge_threshold,
            verify_threshold=config.dedup_verify_threshold,
            max_passes=config.dedup_max_passes,
            concurrency=config.arbitration_concurrency,
            weights=weights,
        )

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def classify(self, score: float) -> MatchBand:
        """Band for a similarity score."""
        if score >= self.auto_merge_floor:
            return MatchBand.AUTO_MERGE
        if score >= self.candidate_floor:
            return MatchBand.VERIFY
        return MatchBand.DISTINCT

    def score_matrix(self, entities: Sequence[E]) -> np.ndarray:
        return similarity_matrix(list(entities), self._weights)

    def _candidates(self, scores: np.ndarray) -> list[tuple[int, int, float]]:
        if scores.size == 0:
            return []
        rows, cols = np.nonzero(np.triu(scores >= self.candidate_floor, k=1))
        pairs = [(int(i), int(j), float(scores[i, j])) for i, j in zip(rows, cols)]
        pairs.sort(key=lambda p: (-p[2], p[0], p[1]))
        return pairs

    async def _verify(self, a: Any, b: Any, score: float, semaphore: asyncio.Semaphore) -> tuple[bool, str]:
        if self._arbiter is None:
            return score >= self.merge_threshold, "heuristic"

        key = frozenset((a.id, b.id))
        if key not in self._verdicts:
            async with semaphore:
                try:
                    confidence = await self._arbiter.ask_confidence(
                        _verify_prompt(a, b, score), system=_VERIFY_SYSTEM_PROMPT
                    )
                except ProviderError as e:
                    logger.warning(f"Verification of {a.id} / {b.id} failed, using heuristic score {score:.2f}: {e}")
                    return score >= self.merge_threshold, "heuristic_fallback"
            self._verdicts[key] = confidence

        confidence = self._verdicts[key]
        logger.debug(f"LLM verification {a.id} / {b.id}: {confidence:.2f}")
        return confidence >= self.verify_threshold, "llm_verified"

    async def plan(
        self,
        entities: Sequence[E],
        *,
        forced_pairs: Sequence[tuple[str, str]] = (),
    ) -> list[MatchDecision]:
        """
        Decide which pairs are the same entity. Does not modify anything.

        Args:
            entities: Records of one kind
            forced_pairs: Id pairs already known to match (e.g. overlap matches)

        Returns:
            Accepted pairs by index into ``entities``
        """
        scores = self.score_matrix(entities)
        decisions: list[MatchDecision] = []
        pending: list[tuple[int, int, float]] = []

        for i, j, score in self._candidates(scores):
            if self.classify(score) == MatchBand.AUTO_MERGE:
                decisions.append(MatchDecision(index_a=i, index_b=j, score=score, reason="auto"))
            else:
                pending.append((i, j, score))

        if pending:
            semaphore = asyncio.Semaphore(self._concurrency)
            verdicts = await asyncio.gather(
                *(self._verify(entities[i], entities[j], score, semaphore) for i, j, score in pending)
            )
            for (i, j, score), (accepted, reason) in zip(pending, verdicts):
                if accepted:
                    decisions.append(MatchDecision(index_a=i, index_b=j, score=score, reason=reason))

        if forced_pairs:
            position = {getattr(e, "id", None): idx for idx, e in enumerate(entities)}
            for id_a, id_b in forced_pairs:
                i, j = position.get(id_a), position.get(id_b)
                if i is not None and j is not None and i != j:
                    score = float(scores[i, j])
                    decisions.append(MatchDecision(index_a=min(i, j), index_b=max(i, j), score=score, reason="overlap"))

        return decisions

    # -------------------------------------------------------------------------
    # Merging
    # -------------------------------------------------------------------------

    async def _apply(
        self,
        entities: list[E],
        decisions: list[MatchDecision],
        combine: Combine,
    ) -> tuple[list[E], list[DuplicateRecord]]:
        by_pair = {frozenset((d.index_a, d.index_b)): d for d in decisions}
        components = match_components(len(entities), [(d.index_a, d.index_b) for d in decisions])

        merged_at: dict[int, E] = {}
        absorbed: set[int] = set()
        records: list[DuplicateRecord] = []

        for component in components:
            if len(component) == 1:
                continue
            members = sorted(component, key=lambda i: survivor_rank(entities[i], i))
            head = members[0]
            survivor = entities[head]
            for index in members[1:]:
                other = entities[index]
                decision = by_pair.get(frozenset((head, index))) or _strongest_link(by_pair, component, index)
                survivor = await combine(survivor, other, decision)
                records.append(
                    DuplicateRecord(kept=survivor.id, removed=other.id, reason=decision.reason, score=decision.score)
                )
                absorbed.add(index)
            merged_at[head] = survivor

        result = [merged_at.get(i, e) for i, e in enumerate(entities) if i not in absorbed]
        return result, records

    async def dedupe(
        self,
        entities: Sequence[E],
        *,
        combine: Combine | None = None,
        forced_pairs: Sequence[tuple[str, str]] = (),
    ) -> DedupResult:
        """
        Merge duplicate records until no pair is accepted.

        Args:
            entities: Records of one kind
            combine: Async merge of (survivor, other, decision); defaults to
                the merge policy
            forced_pairs: Id pairs to merge regardless of score

        Returns:
            DedupResult with the final list, merged survivors, one record
            per absorbed entity, and the removed -> survivor id map
        """
        combine = combine or _policy_combine
        current = list(entities)
        duplicates: list[DuplicateRecord] = []
        forced = list(forced_pairs)

        for pass_number in range(1, self._max_passes + 1):
            decisions = await self.plan(current, forced_pairs=forced)
            forced = []
            if not decisions:
                break
            current, records = await self._apply(current, decisions, combine)
            duplicates.extend(records)
            logger.debug(f"Dedup pass {pass_number}: {len(records)} merge(s), {len(current)} remaining")
        else:
            logger.warning(f"Dedup did not reach a fixpoint after {self._max_passes} passes")

        id_remap = _resolve_remap(duplicates)
        survivors = set(id_remap.values())
        merged = [e for e in current if e.id in survivors]

        if duplicates:
            logger.info(f"Dedup: {len(entities)} -> {len(current)} ({len(duplicates)} merged)")

        return DedupResult(unique=current, merged=merged, duplicates=duplicates, id_remap=id_remap)


def _strongest_link(by_pair: dict[frozenset[int], MatchDecision], component: list[int], index: int) -> MatchDecision:
    """Best direct decision touching ``index`` (the survivor link may be transitive)."""
    candidates = [d for key, d in by_pair.items() if index in key and key <= set(component)]
    best = max(candidates, key=lambda d: d.score)
    return best.model_copy(update={"reason": f"transitive:{best.reason}"})


def _resolve_remap(duplicates: list[DuplicateRecord]) -> dict[str, str]:
    remap = {d.removed: d.kept for d in duplicates}
    resolved: dict[str, str] = {}
    for removed in remap:
        target = remap[removed]
        seen = {removed}
        while target in remap and target not in seen:
            seen.add(target)
            target = remap[target]
        resolved[removed] = target
    return resolved
