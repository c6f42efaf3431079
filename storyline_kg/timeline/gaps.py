"""
Timeline Gap Detection

Finds long page stretches between consecutive events and guesses what the
missing pages contain.

Example:
    >>> gaps = detect_gaps(events)  # events at pages 5 and 45
    >>> [(g.start_page, g.end_page, g.duration) for g in gaps]
    [(5, 45, 40)]
"""

from __future__ import annotations

from collections.abc import Sequence

from storyline_kg.types.entities import TimelineEvent
from storyline_kg.types.timeline import EstimatedEvent, TimelineGap
from storyline_kg.utils.text import has_keyword

TRAVEL_PAGES = 20
TIMESKIP_PAGES = 30
TRANSITION_PAGES = 15

_SEQUENCE_CUES = ("then", "next", "after")
_TRANSITION_CUES = ("later", "meanwhile")


def detect_gaps(
    events: Sequence[TimelineEvent],
    min_gap_size: int = 10,
    max_gap_size: int = 100,
) -> list[TimelineGap]:
    """
    Report page gaps between consecutive events (sorted by page).

    A gap is reported when ``min_gap_size <= distance <= max_gap_size``.
    Larger distances are treated as separate arcs rather than missing
    content.
    """
    ordered = sorted(events, key=lambda e: e.page_number)
    gaps: list[TimelineGap] = []

    for current, following in zip(ordered, ordered[1:]):
        distance = following.page_number - current.page_number
        if not min_gap_size <= distance <= max_gap_size:
            continue
        gaps.append(
            TimelineGap(
                start_page=current.page_number,
                end_page=following.page_number,
                duration=distance,
                preceding_event=current.id,
                following_event=following.id,
                estimated_events=estimate_gap_events(current, following, distance),
                confidence=gap_confidence(current, following, distance),
            )
        )
    return gaps


def estimate_gap_events(before: TimelineEvent, after: TimelineEvent, distance: int) -> list[EstimatedEvent]:
    """Likely content of a gap: travel, time skip and/or scene transition."""
    estimated: list[EstimatedEvent] = []
    shared = set(before.characters) & set(after.characters)

    if not shared or distance > TRAVEL_PAGES:
        estimated.append(
            EstimatedEvent(
                estimated_page=(before.page_number + after.page_number) // 2,
                type="travel",
                description="Travel between locations",
                likelihood=0.6,
            )
        )
    if distance > TIMESKIP_PAGES:
        estimated.append(
            EstimatedEvent(
                estimated_page=before.page_number + int(distance * 0.3),
                type="timeskip",
                description="Time passes",
                likelihood=0.7,
            )
        )
    text = f"{before.description} {after.description}"
    if has_keyword(text, _TRANSITION_CUES) or distance > TRANSITION_PAGES:
        estimated.append(
            EstimatedEvent(
                estimated_page=before.page_number + int(distance * 0.5),
                type="transition",
                description="Scene transition",
                likelihood=0.5,
            )
        )
    return estimated


def gap_confidence(before: TimelineEvent, after: TimelineEvent, distance: int) -> float:
    """How likely the gap hides real content."""
    confidence = 0.5 + min(0.3, distance / 100)
    # sequential titles suggest the events follow directly
    if has_keyword(f"{before.title} {after.title}", _SEQUENCE_CUES):
        confidence -= 0.2
    if not set(before.characters) & set(after.characters):
        confidence += 0.2
    return max(0.0, min(1.0, confidence))
