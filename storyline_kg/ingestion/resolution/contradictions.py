"""
Contradiction Resolution

Detects disagreements between two reports of the same event and resolves
them.

Per contradiction:
    detected -> heuristic decisive        -> resolved (use_a / use_b / merge)
    detected -> heuristic undecided -> LLM -> resolved
    detected -> heuristic undecided, no provider -> flagged for review

Detection (matched event pairs):
    - page numbers more than ``page_tolerance`` apart -> timeline / major
    - flashback flags differ                          -> fact / minor
    - significance differs                            -> fact / minor

Heuristic:
    - confidence gap > ``confidence_gap`` -> trust the more confident side,
      confidence = the gap
    - minor severity -> merge (0.6)
    - otherwise undecided (0.4)

Applying never drops data silently: a flagged field keeps side A's value,
the event description gets a review marker, and a ReviewItem annotation is
emitted.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from storyline_kg.errors import ProviderError
from storyline_kg.ingestion.resolution.merge_policy import merge_events
from storyline_kg.types.entities import SIGNIFICANCE_RANK, TimelineEvent
from storyline_kg.types.results import (
    Contradiction,
    ContradictionType,
    MatchDecision,
    Resolution,
    ResolutionResult,
    ReviewItem,
    Severity,
)
from storyline_kg.utils.text import token_jaccard

if TYPE_CHECKING:
    from storyline_kg.config.settings import ReconcileConfig
    from storyline_kg.providers.arbitration import ArbitrationClient

logger = logging.getLogger(__name__)

REVIEW_MARKER = "[REVIEW NEEDED]"

MERGE_CONFIDENCE = 0.6
UNDECIDED_CONFIDENCE = 0.4
NO_PROVIDER_CONFIDENCE = 0.3
PROVIDER_FAILURE_CONFIDENCE = 0.2
SAME_EVENT_TITLE_THRESHOLD = 0.8

_ARBITRATION_SYSTEM_PROMPT = """You resolve contradictions between two extractions of the same manga event.

Return JSON only:
{"choice": "A" | "B" | "merge" | "unsure", "confidence": 0.0-1.0, "reasoning": "<one sentence>"}"""

_CHOICES = {
    "a": Resolution.USE_A,
    "b": Resolution.USE_B,
    "merge": Resolution.MERGE,
    "unsure": Resolution.FLAG_FOR_REVIEW,
}


def is_same_event(a: TimelineEvent, b: TimelineEvent, *, title_threshold: float = SAME_EVENT_TITLE_THRESHOLD) -> bool:
    """Same id, or near-identical titles with at least one shared character."""
    if a.id == b.id:
        return True
    shared = set(a.characters) & set(b.characters)
    return token_jaccard(a.title, b.title) > title_threshold and bool(shared)


class ContradictionResolver:
    """
    Detects, resolves and applies event contradictions.

    Args:
        arbiter: Client for undecided contradictions (None = flag them)
        page_tolerance: Page distance tolerated between two reports
        confidence_gap: Gap above which the more confident source wins
    """

    def __init__(
        self,
        arbiter: ArbitrationClient | None = None,
        *,
        page_tolerance: int = 5,
        confidence_gap: float = 0.3,
    ) -> None:
        self._arbiter = arbiter
        self.page_tolerance = page_tolerance
        self.confidence_gap = confidence_gap

    @classmethod
    def from_config(cls, config: ReconcileConfig, arbiter: ArbitrationClient | None = None) -> "ContradictionResolver":
        return cls(
            arbiter,
            page_tolerance=config.contradiction_page_tolerance,
            confidence_gap=config.contradiction_confidence_gap,
        )

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def detect(self, a: TimelineEvent, b: TimelineEvent) -> list[Contradiction]:
        """List every disagreement between two reports of one event."""
        found: list[Contradiction] = []

        page_diff = abs(a.page_number - b.page_number)
        if page_diff > self.page_tolerance:
            found.append(
                _contradiction(
                    ContradictionType.TIMELINE,
                    a,
                    b,
                    "page_number",
                    f'"{a.title}" reported at page {a.page_number} and page {b.page_number} ({page_diff} apart)',
                    Severity.MAJOR,
                )
            )
        if a.is_flashback != b.is_flashback:
            found.append(
                _contradiction(
                    ContradictionType.FACT,
                    a,
                    b,
                    "is_flashback",
                    f'"{a.title}" flashback status disagrees ({a.is_flashback} vs {b.is_flashback})',
                    Severity.MINOR,
                )
            )
        if a.significance != b.significance:
            found.append(
                _contradiction(
                    ContradictionType.FACT,
                    a,
                    b,
                    "significance",
                    f'"{a.title}" significance disagrees ({a.significance.value} vs {b.significance.value})',
                    Severity.MINOR,
                )
            )
        return found

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve_heuristic(self, contradiction: Contradiction, confidence_a: float, confidence_b: float) -> ResolutionResult:
        """Resolve from source confidences and severity alone."""
        gap = abs(confidence_a - confidence_b)
        if gap > self.confidence_gap:
            winner = Resolution.USE_A if confidence_a > confidence_b else Resolution.USE_B
            side = "A" if winner == Resolution.USE_A else "B"
            return ResolutionResult(
                contradiction=contradiction,
                resolution=winner,
                confidence=min(1.0, gap),
                reasoning=f"Source {side} is more confident ({confidence_a:.2f} vs {confidence_b:.2f})",
            )
        if contradiction.severity == Severity.MINOR:
            return ResolutionResult(
                contradiction=contradiction,
                resolution=Resolution.MERGE,
                confidence=MERGE_CONFIDENCE,
                reasoning="Minor disagreement; combining both reports",
            )
        return ResolutionResult(
            contradiction=contradiction,
            resolution=Resolution.FLAG_FOR_REVIEW,
            confidence=UNDECIDED_CONFIDENCE,
            reasoning="Sources are comparably confident and the disagreement is not minor",
        )

    async def _arbitrate(self, contradiction: Contradiction, a: TimelineEvent, b: TimelineEvent) -> ResolutionResult:
        prompt = (
            f"CONTRADICTION ({contradiction.type.value}, {contradiction.severity.value}): {contradiction.description}\n\n"
            f"VERSION A (confidence {a.confidence:.2f}):\n{a.model_dump_json(by_alias=True, exclude={'confidence'})}\n\n"
            f"VERSION B (confidence {b.confidence:.2f}):\n{b.model_dump_json(by_alias=True, exclude={'confidence'})}\n\n"
            "Which version is correct?"
        )
        try:
            answer = await self._arbiter.ask_json(prompt, system=_ARBITRATION_SYSTEM_PROMPT)
            choice = _CHOICES.get(str(answer.get("choice", "")).strip().lower())
            if choice is None:
                raise ProviderError(f"Unknown arbitration choice: {answer.get('choice')!r}")
            confidence = float(answer.get("confidence", 0.5))
        except (ProviderError, TypeError, ValueError) as e:
            logger.warning(f"Arbitration of {contradiction.id} failed, flagging for review: {e}")
            return ResolutionResult(
                contradiction=contradiction,
                resolution=Resolution.FLAG_FOR_REVIEW,
                confidence=PROVIDER_FAILURE_CONFIDENCE,
                reasoning=f"Arbitration failed: {e}",
                method="fallback",
            )
        return ResolutionResult(
            contradiction=contradiction,
            resolution=choice,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=str(answer.get("reasoning", "")) or "LLM arbitration",
            method="llm",
        )

    async def resolve(self, contradiction: Contradiction, a: TimelineEvent, b: TimelineEvent) -> ResolutionResult:
        """Run one contradiction through the resolution state machine."""
        heuristic = self.resolve_heuristic(contradiction, a.confidence, b.confidence)
        if heuristic.resolution != Resolution.FLAG_FOR_REVIEW:
            return heuristic
        if self._arbiter is None:
            return heuristic.model_copy(
                update={
                    "confidence": NO_PROVIDER_CONFIDENCE,
                    "reasoning": f"{heuristic.reasoning}; no provider for arbitration",
                    "method": "no_provider",
                }
            )
        return await self._arbitrate(contradiction, a, b)

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def apply(
        self,
        a: TimelineEvent,
        b: TimelineEvent,
        resolutions: list[ResolutionResult],
    ) -> tuple[TimelineEvent, list[ReviewItem]]:
        """
        Combine two reports under the given resolutions.

        Non-contradicted fields follow the merge policy. Each contradicted
        field takes A's value, B's value, or the merged value.
        """
        merged = merge_events(a, b)
        update: dict[str, object] = {}
        reviews: list[ReviewItem] = []

        for result in resolutions:
            field = result.contradiction.field
            if result.resolution == Resolution.USE_A:
                update[field] = getattr(a, field)
            elif result.resolution == Resolution.USE_B:
                update[field] = getattr(b, field)
            elif result.resolution == Resolution.MERGE:
                update[field] = _merged_value(field, a, b)
            else:
                update[field] = getattr(a, field)
                reviews.append(ReviewItem(entity_id=a.id, resolution=result))

        if reviews and REVIEW_MARKER not in merged.description:
            update["description"] = f"{merged.description} {REVIEW_MARKER}".strip()

        return merged.model_copy(update=update), reviews

    async def reconcile(
        self,
        a: TimelineEvent,
        b: TimelineEvent,
    ) -> tuple[TimelineEvent, list[ResolutionResult], list[ReviewItem]]:
        """Detect, resolve and apply in one step."""
        contradictions = self.detect(a, b)
        resolutions = [await self.resolve(c, a, b) for c in contradictions]
        for result in resolutions:
            logger.debug(
                f"{result.contradiction.description}: {result.resolution.value} "
                f"({result.confidence:.2f}, {result.method})"
            )
        merged, reviews = self.apply(a, b, resolutions)
        return merged, resolutions, reviews


class EventCombiner:
    """
    Contradiction-aware combine callback for Deduplicator.dedupe().

    Collects every resolution and review item produced while merging.
    """

    def __init__(self, resolver: ContradictionResolver) -> None:
        self._resolver = resolver
        self.resolutions: list[ResolutionResult] = []
        self.reviews: list[ReviewItem] = []

    async def __call__(self, keep: TimelineEvent, other: TimelineEvent, decision: MatchDecision) -> TimelineEvent:
        merged, resolutions, reviews = await self._resolver.reconcile(keep, other)
        self.resolutions.extend(resolutions)
        self.reviews.extend(reviews)
        return merged


def _merged_value(field: str, a: TimelineEvent, b: TimelineEvent) -> object:
    if field == "page_number":
        return min(a.page_number, b.page_number)
    if field == "is_flashback":
        return a.is_flashback or b.is_flashback
    if field == "significance":
        return max(a.significance, b.significance, key=lambda s: SIGNIFICANCE_RANK[s])
    return getattr(a, field)


def _contradiction(
    kind: ContradictionType,
    a: TimelineEvent,
    b: TimelineEvent,
    field: str,
    description: str,
    severity: Severity,
) -> Contradiction:
    return Contradiction(
        id=f"contra-{uuid.uuid4().hex[:8]}",
        type=kind,
        element_a=a.id,
        element_b=b.id,
        field=field,
        description=description,
        severity=severity,
    )
