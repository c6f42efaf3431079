"""
Timeline Types

Causal graph, ordering and in-timeline gap models.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class CausalLinkType(str, Enum):
    CAUSES = "causes"
    ENABLES = "enables"
    PREVENTS = "prevents"
    INFLUENCES = "influences"


class CausalLink(BaseModel):
    """Directed edge from an earlier event to an event it affects."""

    source: str
    target: str
    type: CausalLinkType = CausalLinkType.INFLUENCES
    strength: float = Field(default=0.0, ge=0.0, le=1.0)
    evidence: str = ""


class CausalNode(BaseModel):
    """
    One event in the causal graph.

    Attributes:
        event_id: Id of the TimelineEvent
        incoming: Links whose target is this node
        outgoing: Links whose source is this node
        depth: Longest incoming path length (0 for roots)
    """

    event_id: str
    incoming: list[CausalLink] = Field(default_factory=list)
    outgoing: list[CausalLink] = Field(default_factory=list)
    depth: int = 0


class CausalGraph(BaseModel):
    """
    Adjacency structure over events.

    ``cycle_edges`` lists back-edges found while computing depths. They are
    kept in the graph but contribute nothing to depth.
    """

    nodes: dict[str, CausalNode] = Field(default_factory=dict)
    cycle_edges: list[tuple[str, str]] = Field(default_factory=list)

    @property
    def links(self) -> list[CausalLink]:
        return [link for node in self.nodes.values() for link in node.outgoing]

    def add_link(self, link: CausalLink) -> None:
        """Add a link, creating endpoint nodes as needed."""
        source = self.nodes.setdefault(link.source, CausalNode(event_id=link.source))
        target = self.nodes.setdefault(link.target, CausalNode(event_id=link.target))
        source.outgoing.append(link)
        target.incoming.append(link)


class CausalGraphStats(BaseModel):
    total_nodes: int = 0
    total_links: int = 0
    links_by_type: dict[str, int] = Field(default_factory=dict)
    average_links_per_node: float = 0.0
    max_depth: int = 0
    root_count: int = 0
    leaf_count: int = 0
    clustering_coefficient: float = 0.0


class OrderingDiscrepancy(BaseModel):
    """An event whose reading and chronological positions disagree."""

    event_id: str
    reading_position: int
    chronological_position: int
    gap: int


class OrderedTimeline(BaseModel):
    """Both orderings of a timeline plus the discrepancies between them."""

    reading_order: list[str] = Field(default_factory=list)
    chronological_order: list[str] = Field(default_factory=list)
    discrepancies: list[OrderingDiscrepancy] = Field(default_factory=list)
    flashback_count: int = 0


class EstimatedEvent(BaseModel):
    """A guess at what happened inside a timeline gap."""

    estimated_page: int = 0
    type: str
    description: str
    likelihood: float = Field(default=0.5, ge=0.0, le=1.0)


class TimelineGap(BaseModel):
    """
    Large page gap between two consecutive events.

    Attributes:
        start_page: Page of the preceding event
        end_page: Page of the following event
        duration: Page distance
        preceding_event: Id of the event before the gap
        following_event: Id of the event after the gap
        estimated_events: Likely missing content
        confidence: How sure we are that content is missing
    """

    start_page: int
    end_page: int
    duration: int
    preceding_event: str
    following_event: str
    estimated_events: list[EstimatedEvent] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class FlashbackType(str, Enum):
    MEMORY = "memory"
    BACKSTORY = "backstory"
    EXPOSITION = "exposition"
    DREAM = "dream"
    VISION = "vision"


class FlashbackDetection(BaseModel):
    """
    Keyword-cue evidence that an event is a flashback.

    Attributes:
        event_id: Id of the inspected event
        is_flashback: Declared flag or any cue found
        visual_cues: Art cues (sepia, monochrome, ...)
        narrative_cues: Story cues (remember, years ago, ...)
        temporal_cues: Time words (ago, earlier, ...)
        kind: Flashback category when it is one
        confidence: Grows with the number of cues
    """

    event_id: str
    is_flashback: bool = False
    visual_cues: list[str] = Field(default_factory=list)
    narrative_cues: list[str] = Field(default_factory=list)
    temporal_cues: list[str] = Field(default_factory=list)
    kind: FlashbackType | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class CausalReach(BaseModel):
    """An event reached by walking causal links, with the path taken."""

    event_id: str
    depth: int
    path: list[str] = Field(default_factory=list)
