"""
Batch Coverage Analysis

Finds page ranges no batch covered (gaps) and page ranges two adjacent
batches both covered (overlaps), and matches the events reported twice
inside an overlap.

Example:
    >>> analyzer = CoverageAnalyzer()
    >>> report = analyzer.analyze(batches)
    >>> [(g.start_page, g.end_page, g.classification) for g in report.gaps]
    [(21, 29, 'transition')]
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from storyline_kg.types.batches import BatchResult
from storyline_kg.types.entities import TimelineEvent
from storyline_kg.types.results import CoverageReport, GapClassification, MergeGap, OverlapRegion
from storyline_kg.utils.text import has_keyword, token_jaccard

if TYPE_CHECKING:
    from storyline_kg.config.settings import ReconcileConfig

logger = logging.getLogger(__name__)

TIMESKIP_PAGES = 30
TRANSITION_PAGES = 5

TIMESKIP_CUES = (
    "years later",
    "months later",
    "weeks later",
    "time skip",
    "timeskip",
    "years pass",
    "grown up",
)
TRANSITION_CUES = (
    "meanwhile",
    "elsewhere",
    "next day",
    "next morning",
    "that night",
    "later",
    "arrive",
    "arrives",
    "travel",
    "journey",
)


class CoverageAnalyzer:
    """
    Gap and overlap detection over batch page ranges.

    Args:
        page_window: Max page distance for two overlap events to match
        title_threshold: Min title similarity for two overlap events to match
        gap_penalty: Confidence penalty per gap
    """

    def __init__(self, *, page_window: int = 2, title_threshold: float = 0.7, gap_penalty: float = 0.05) -> None:
        self.page_window = page_window
        self.title_threshold = title_threshold
        self.gap_penalty = gap_penalty

    @classmethod
    def from_config(cls, config: ReconcileConfig) -> "CoverageAnalyzer":
        return cls(
            page_window=config.overlap_page_window,
            title_threshold=config.overlap_title_threshold,
            gap_penalty=config.gap_penalty,
        )

    def analyze(self, batches: Sequence[BatchResult]) -> CoverageReport:
        """
        Report gaps and overlaps between adjacent batches (sorted by start page).

        ``merged_events`` on each overlap counts event pairs the same-event
        test matches inside the region.
        """
        ordered = sorted(batches, key=lambda b: (b.start_page, b.batch_index))
        gaps: list[MergeGap] = []
        overlaps: list[OverlapRegion] = []

        for current, following in zip(ordered, ordered[1:]):
            if current.end_page < following.start_page:
                gaps.append(self._gap(current, following))
            elif current.end_page > following.start_page:
                region = OverlapRegion(
                    batch_a=current.batch_index,
                    batch_b=following.batch_index,
                    start_page=following.start_page,
                    end_page=min(current.end_page, following.end_page),
                )
                matches = self.match_overlap_events(region, current.events, following.events)
                overlaps.append(region.model_copy(update={"merged_events": len(matches)}))

        confidence = 0.0
        if ordered:
            confidence = sum(b.confidence for b in ordered) / len(ordered)
            confidence = max(0.0, min(1.0, confidence - self.gap_penalty * len(gaps)))

        if gaps:
            logger.info(f"Coverage: {len(gaps)} gap(s), {len(overlaps)} overlap(s) across {len(ordered)} batches")

        return CoverageReport(gaps=gaps, overlaps=overlaps, confidence=confidence)

    # -------------------------------------------------------------------------
    # Overlaps
    # -------------------------------------------------------------------------

    def is_same_event(self, a: TimelineEvent, b: TimelineEvent) -> bool:
        """Same-event test for overlap stitching."""
        if abs(a.page_number - b.page_number) > self.page_window:
            return False
        if token_jaccard(a.title, b.title) < self.title_threshold:
            return False
        return bool(set(a.characters) & set(b.characters))

    def match_overlap_events(
        self,
        region: OverlapRegion,
        events_a: Sequence[TimelineEvent],
        events_b: Sequence[TimelineEvent],
    ) -> list[tuple[str, str]]:
        """
        Pair events reported by both batches inside the overlap region.

        Each event is matched at most once; unmatched events are left alone.
        """
        in_region_a = [e for e in events_a if _near_region(e, region, self.page_window)]
        in_region_b = [e for e in events_b if _near_region(e, region, self.page_window)]

        pairs: list[tuple[str, str]] = []
        used: set[str] = set()
        for a in in_region_a:
            candidates = [b for b in in_region_b if b.id not in used and self.is_same_event(a, b)]
            if not candidates:
                continue
            best = max(candidates, key=lambda b: (token_jaccard(a.title, b.title), -abs(a.page_number - b.page_number)))
            used.add(best.id)
            pairs.append((a.id, best.id))
        return pairs

    # -------------------------------------------------------------------------
    # Gaps
    # -------------------------------------------------------------------------

    def _gap(self, before: BatchResult, after: BatchResult) -> MergeGap:
        start, end = before.end_page + 1, after.start_page - 1
        size = after.start_page - before.end_page - 1
        last = max(before.events, key=lambda e: e.page_number, default=None)
        first = min(after.events, key=lambda e: e.page_number, default=None)
        classification = classify_gap(size, last, first)
        return MergeGap(
            after_batch=before.batch_index,
            before_batch=after.batch_index,
            start_page=start,
            end_page=max(start, end),
            size=max(0, size),
            classification=classification,
            estimated_content=_estimate_content(classification, size, last, first),
        )


def classify_gap(size: int, before: TimelineEvent | None, after: TimelineEvent | None) -> GapClassification:
    """Classify a gap from its size and keyword cues around it."""
    text = " ".join(f"{e.title} {e.description}" for e in (before, after) if e is not None)
    if size > TIMESKIP_PAGES or has_keyword(text, TIMESKIP_CUES):
        return GapClassification.TIMESKIP
    if size <= TRANSITION_PAGES or has_keyword(text, TRANSITION_CUES):
        return GapClassification.TRANSITION
    return GapClassification.UNKNOWN


def _estimate_content(
    classification: GapClassification,
    size: int,
    before: TimelineEvent | None,
    after: TimelineEvent | None,
) -> str:
    bridge = ""
    if before is not None and after is not None:
        bridge = f' between "{before.title}" and "{after.title}"'
    if classification == GapClassification.TIMESKIP:
        return f"Likely time skip of {size} pages{bridge}"
    if classification == GapClassification.TRANSITION:
        return f"Likely scene transition ({size} pages){bridge}"
    return f"{size} uncovered pages{bridge}"


def _near_region(event: TimelineEvent, region: OverlapRegion, window: int) -> bool:
    return region.start_page - window <= event.page_number <= region.end_page + window
