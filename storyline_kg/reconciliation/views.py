"""
Output Views

Read-only projections of a Storyline for downstream consumers. Every view
is a pure function of the Storyline it is given.

Views:
    anchor_detection   - events ranked by causal reach, character arcs
    branch_generation  - world state, character states, anchor points
    story_continuation - narrative voice, pacing, recent events
    summary            - counts, key themes, story arc
    full_analysis      - the Storyline itself (deep copy)
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from storyline_kg.timeline.causal import downstream_effects, event_criticality
from storyline_kg.types.entities import (
    Character,
    Importance,
    NarrativeModel,
    Significance,
    TimelineEvent,
)
from storyline_kg.types.results import Storyline
from storyline_kg.utils.text import has_keyword

ARC_GAP_PAGES = 30
MAX_KEY_FACTS = 5
MAX_CONFLICTS = 5
RECENT_EVENTS = 5

_SIGNIFICANT = (Significance.MAJOR, Significance.CRITICAL)


class ViewType(str, Enum):
    ANCHOR_DETECTION = "anchor_detection"
    BRANCH_GENERATION = "branch_generation"
    STORY_CONTINUATION = "story_continuation"
    SUMMARY = "summary"
    FULL_ANALYSIS = "full_analysis"


# =============================================================================
# View models
# =============================================================================


class AnchorCharacter(NarrativeModel):
    id: str
    name: str
    importance: Importance
    arc_summary: str


class AnchorEvent(NarrativeModel):
    id: str
    page_number: int
    title: str
    significance: Significance
    characters: list[str] = Field(default_factory=list)
    downstream_events: int = 0
    criticality: float = 0.0


class AnchorLink(NarrativeModel):
    source: str
    target: str
    type: str
    strength: float


class AnchorDetectionView(NarrativeModel):
    characters: list[AnchorCharacter] = Field(default_factory=list)
    events: list[AnchorEvent] = Field(default_factory=list)
    links: list[AnchorLink] = Field(default_factory=list)
    cycle_edges: list[tuple[str, str]] = Field(default_factory=list)


class CharacterRelation(NarrativeModel):
    with_character: str
    type: str


class CharacterState(NarrativeModel):
    character_id: str
    current_state: str
    motivations: list[str] = Field(default_factory=list)
    relationships: list[CharacterRelation] = Field(default_factory=list)


class AnchorPoint(NarrativeModel):
    event_id: str
    title: str
    alternatives: list[str] = Field(default_factory=list)


class WorldState(NarrativeModel):
    setting: str
    key_facts: list[str] = Field(default_factory=list)
    active_conflicts: list[str] = Field(default_factory=list)


class BranchGenerationView(NarrativeModel):
    world_state: WorldState
    character_states: list[CharacterState] = Field(default_factory=list)
    anchor_points: list[AnchorPoint] = Field(default_factory=list)
    open_reviews: int = 0


class CharacterVoice(NarrativeModel):
    character_id: str
    speech_pattern: str


class PlotStructure(NarrativeModel):
    pacing: str
    chapter_length: str
    average_event_spacing: float = 0.0


class StoryContinuationView(NarrativeModel):
    style: str
    tone: str
    character_voices: list[CharacterVoice] = Field(default_factory=list)
    plot_structure: PlotStructure
    recent_events: list[str] = Field(default_factory=list)
    unresolved_gaps: int = 0


class SummaryView(NarrativeModel):
    total_pages: int = 0
    total_characters: int = 0
    total_events: int = 0
    key_themes: list[str] = Field(default_factory=list)
    story_arc: str = ""
    confidence: float = 0.0
    coverage_gaps: int = 0
    review_items: int = 0


class Appearance(NarrativeModel):
    page_number: int
    event_id: str
    event_title: str
    role: str


class ArcGap(BaseModel):
    start: int
    end: int
    duration: int


class CharacterTimeline(NarrativeModel):
    """
    One character's path through the timeline.

    Attributes:
        introduction: Page of first appearance
        development: Pages of major/critical events
        climax: Page of the last critical event, if any
        resolution: Page of the last appearance, if any
        arc_gaps: Stretches of at least 30 pages without an appearance
    """

    character_id: str
    name: str
    appearances: list[Appearance] = Field(default_factory=list)
    introduction: int
    development: list[int] = Field(default_factory=list)
    climax: int | None = None
    resolution: int | None = None
    arc_gaps: list[ArcGap] = Field(default_factory=list)


# =============================================================================
# Builders
# =============================================================================


def build_view(storyline: Storyline, view_type: ViewType | str) -> BaseModel:
    """Project a Storyline into the requested view."""
    view_type = ViewType(view_type)
    if view_type == ViewType.ANCHOR_DETECTION:
        return anchor_detection_view(storyline)
    if view_type == ViewType.BRANCH_GENERATION:
        return branch_generation_view(storyline)
    if view_type == ViewType.STORY_CONTINUATION:
        return story_continuation_view(storyline)
    if view_type == ViewType.SUMMARY:
        return summary_view(storyline)
    return storyline.model_copy(deep=True)


def anchor_detection_view(storyline: Storyline) -> AnchorDetectionView:
    graph = storyline.causal_graph
    events = [
        AnchorEvent(
            id=e.id,
            page_number=e.page_number,
            title=e.title,
            significance=e.significance,
            characters=list(e.characters),
            downstream_events=len(downstream_effects(graph, e.id)),
            criticality=event_criticality(graph, e.id),
        )
        for e in storyline.timeline
    ]
    return AnchorDetectionView(
        characters=[
            AnchorCharacter(id=c.id, name=c.name, importance=c.importance, arc_summary=_arc_summary(c, storyline.timeline))
            for c in storyline.characters
        ],
        events=events,
        links=[
            AnchorLink(source=l.source, target=l.target, type=l.type.value, strength=l.strength) for l in graph.links
        ],
        cycle_edges=list(graph.cycle_edges),
    )


def branch_generation_view(storyline: Storyline) -> BranchGenerationView:
    names = {c.id: c.name for c in storyline.characters}
    conflicts = [
        f"{names.get(r.character_a, r.character_a)} vs {names.get(r.character_b, r.character_b)}"
        for r in storyline.relationships
        if has_keyword(r.type, ("enemy", "enemies", "rival", "rivals", "rivalry"))
    ]
    key_facts = [e.title for e in storyline.timeline if e.significance == Significance.CRITICAL]

    states = []
    for character in storyline.characters:
        last = max(
            (e for e in storyline.timeline if character.id in e.characters),
            key=lambda e: e.page_number,
            default=None,
        )
        relations = [
            CharacterRelation(
                with_character=r.character_b if r.character_a == character.id else r.character_a,
                type=r.type,
            )
            for r in storyline.relationships
            if character.id in (r.character_a, r.character_b)
        ]
        states.append(
            CharacterState(
                character_id=character.id,
                current_state=f"Last seen: {last.title}" if last else "Unknown",
                motivations=_motivations(character),
                relationships=relations,
            )
        )

    anchors = [
        AnchorPoint(
            event_id=e.id,
            title=e.title,
            alternatives=[
                f"What if {e.title.lower()} didn't happen?",
                "What if the outcome was different?",
                "What if another character intervened?",
            ],
        )
        for e in storyline.timeline
        if e.significance in _SIGNIFICANT
    ]

    return BranchGenerationView(
        world_state=WorldState(
            setting=_setting(storyline),
            key_facts=key_facts[:MAX_KEY_FACTS],
            active_conflicts=conflicts[:MAX_CONFLICTS],
        ),
        character_states=states,
        anchor_points=anchors,
        open_reviews=len(storyline.review_items),
    )


def story_continuation_view(storyline: Storyline) -> StoryContinuationView:
    events = sorted(storyline.timeline, key=lambda e: e.page_number)
    spacing = _average_spacing(events)
    last_page = max((e.page_number for e in events), default=0)
    density = len(events) / max(last_page, 1)

    if density < 0.1:
        pacing = "slow"
    elif density > 0.3:
        pacing = "fast"
    else:
        pacing = "moderate"

    if spacing < 10:
        chapter_length = "short"
    elif spacing > 30:
        chapter_length = "long"
    else:
        chapter_length = "medium"

    return StoryContinuationView(
        style=_style(events),
        tone=_tone(events),
        character_voices=[
            CharacterVoice(character_id=c.id, speech_pattern=c.personality or "Neutral speech pattern")
            for c in storyline.characters
        ],
        plot_structure=PlotStructure(pacing=pacing, chapter_length=chapter_length, average_event_spacing=spacing),
        recent_events=[e.title for e in events[-RECENT_EVENTS:]],
        unresolved_gaps=len(storyline.gaps),
    )


def summary_view(storyline: Storyline) -> SummaryView:
    significant = sum(1 for e in storyline.timeline if e.significance in _SIGNIFICANT)
    if significant < 3:
        arc = "Simple linear narrative"
    elif significant > 10:
        arc = "Complex multi-arc narrative"
    else:
        arc = "Standard three-act structure"

    return SummaryView(
        total_pages=max((e.page_number for e in storyline.timeline), default=0),
        total_characters=len(storyline.characters),
        total_events=len(storyline.timeline),
        key_themes=[t.name for t in sorted(storyline.themes, key=lambda t: t.prevalence, reverse=True)],
        story_arc=arc,
        confidence=storyline.confidence,
        coverage_gaps=len(storyline.gaps),
        review_items=len(storyline.review_items),
    )


def character_timeline(storyline: Storyline, character_id: str) -> CharacterTimeline | None:
    """Appearances, arc milestones and long absences of one character."""
    character = storyline.character(character_id)
    if character is None:
        return None

    events = sorted((e for e in storyline.timeline if character_id in e.characters), key=lambda e: e.page_number)
    appearances = [
        Appearance(page_number=e.page_number, event_id=e.id, event_title=e.title, role=_role(e)) for e in events
    ]
    critical = [e.page_number for e in events if e.significance == Significance.CRITICAL]

    arc_gaps = [
        ArcGap(start=a.page_number, end=b.page_number, duration=b.page_number - a.page_number)
        for a, b in zip(appearances, appearances[1:])
        if b.page_number - a.page_number >= ARC_GAP_PAGES
    ]

    return CharacterTimeline(
        character_id=character.id,
        name=character.name,
        appearances=appearances,
        introduction=appearances[0].page_number if appearances else character.first_appearance,
        development=[e.page_number for e in events if e.significance in _SIGNIFICANT],
        climax=critical[-1] if critical else None,
        resolution=appearances[-1].page_number if appearances else None,
        arc_gaps=arc_gaps,
    )


# =============================================================================
# Helpers
# =============================================================================


def _role(event: TimelineEvent) -> str:
    if event.significance == Significance.CRITICAL:
        return "primary"
    if event.significance == Significance.MAJOR:
        return "supporting"
    return "background"


def _arc_summary(character: Character, timeline: list[TimelineEvent]) -> str:
    events = [e for e in timeline if character.id in e.characters]
    significant = [e for e in events if e.significance in _SIGNIFICANT]
    if not significant:
        return f"{character.name} appears in {len(events)} events"
    return f"{character.name}: {len(significant)} significant events, {character.importance.value} role"


def _motivations(character: Character) -> list[str]:
    text = character.personality or ""
    found = [
        label
        for label, cues in (
            ("ambition", ("ambition", "ambitious")),
            ("revenge", ("revenge", "vengeful", "vengeance")),
            ("protection", ("protect", "protective", "protects")),
        )
        if has_keyword(text, cues)
    ]
    return found or ["unknown"]


def _setting(storyline: Storyline) -> str:
    names = " ".join(t.name for t in storyline.themes)
    if has_keyword(names, ("fantasy", "magic")):
        return "Fantasy world"
    if has_keyword(names, ("sci-fi", "science fiction", "future")):
        return "Science fiction setting"
    if has_keyword(names, ("school", "academy")):
        return "School/academy setting"
    return "Contemporary or unspecified setting"


def _style(events: list[TimelineEvent]) -> str:
    if not events:
        return "Unknown"
    average = sum(len(e.description) for e in events) / len(events)
    if average > 200:
        return "Descriptive, detailed"
    if average < 100:
        return "Concise, action-focused"
    return "Balanced narrative"


def _tone(events: list[TimelineEvent]) -> str:
    text = " ".join(e.description for e in events)
    dark = sum(1 for w in ("death", "dark", "sad", "tragic", "loss") if has_keyword(text, (w,)))
    light = sum(1 for w in ("happy", "joy", "love", "hope", "comedy") if has_keyword(text, (w,)))
    if dark > light * 2:
        return "Dark, serious"
    if light > dark * 2:
        return "Light, optimistic"
    return "Mixed tone"


def _average_spacing(events: list[TimelineEvent]) -> float:
    if len(events) < 2:
        return 0.0
    return (events[-1].page_number - events[0].page_number) / (len(events) - 1)
