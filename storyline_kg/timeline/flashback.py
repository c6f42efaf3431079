"""
Flashback Cue Detection

Keyword heuristics for events the model did not mark as flashbacks but
whose text suggests one. Results are advisory; event flags are never
changed here.
"""

from __future__ import annotations

from collections.abc import Sequence

from storyline_kg.types.entities import TimelineEvent
from storyline_kg.types.timeline import FlashbackDetection, FlashbackType
from storyline_kg.utils.text import has_keyword

VISUAL_CUES = (
    "sepia",
    "black and white",
    "monochrome",
    "faded colors",
    "soft focus",
    "frame border",
    "thought bubble",
    "memory cloud",
    "dream sequence",
)
NARRATIVE_CUES = (
    "remember",
    "remembers",
    "recall",
    "recalls",
    "memory",
    "flashback",
    "years ago",
    "when i was",
    "back then",
    "in the past",
    "childhood",
    "used to",
)
TEMPORAL_CUES = (
    "ago",
    "earlier",
    "previously",
    "yesterday",
    "last week",
    "last year",
    "long ago",
    "back when",
)

_KIND_CUES: list[tuple[FlashbackType, tuple[str, ...]]] = [
    (FlashbackType.DREAM, ("dream", "dreams", "sleep", "asleep")),
    (FlashbackType.VISION, ("vision", "prophecy")),
    (FlashbackType.BACKSTORY, ("backstory", "origin")),
    (FlashbackType.EXPOSITION, ("explain", "explains", "history")),
]


def _matches(text: str, cues: tuple[str, ...]) -> list[str]:
    return [cue for cue in cues if has_keyword(text, (cue,))]


def classify_flashback(event: TimelineEvent) -> FlashbackType:
    text = f"{event.title} {event.description}"
    for kind, cues in _KIND_CUES:
        if has_keyword(text, cues):
            return kind
    return FlashbackType.MEMORY


def detect_flashback(event: TimelineEvent, context: str = "") -> FlashbackDetection:
    """
    Look for flashback cues in an event's title, description and context.

    Confidence is ``0.1 + 0.2`` per cue found, capped at 1.
    """
    text = f"{event.title} {event.description} {context}"
    visual = _matches(text, VISUAL_CUES)
    narrative = _matches(text, NARRATIVE_CUES)
    temporal = _matches(text, TEMPORAL_CUES)

    found = len(visual) + len(narrative) + len(temporal)
    is_flashback = event.is_flashback or found > 0
    return FlashbackDetection(
        event_id=event.id,
        is_flashback=is_flashback,
        visual_cues=visual,
        narrative_cues=narrative,
        temporal_cues=temporal,
        kind=classify_flashback(event) if is_flashback else None,
        confidence=min(1.0, found * 0.2 + 0.1),
    )


def flashback_candidates(events: Sequence[TimelineEvent], min_confidence: float = 0.5) -> list[FlashbackDetection]:
    """Unflagged events whose cues reach ``min_confidence``."""
    candidates = []
    for event in events:
        if event.is_flashback:
            continue
        detection = detect_flashback(event)
        if detection.is_flashback and detection.confidence >= min_confidence:
            candidates.append(detection)
    return candidates
