"""
Causal Graph

Infers cause-and-effect links between nearby events and answers
reachability queries over them.

Link inference (page-sorted events, each compared with the next few):
    strength = character_overlap * 0.6 + max(0, 1 - page_gap / 20) * 0.4
    a link is added when strength > threshold

Link type from keyword cues in either event:
    because / so / therefore / as a result -> causes
    allow / enable / help                  -> enables
    prevent / stop / block                 -> prevents
    otherwise                              -> influences

Depth is the longest incoming path. Graphs built here are acyclic, but
callers may add links by hand; a back-edge found during the depth walk is
recorded in ``graph.cycle_edges`` and adds nothing to depth.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from collections.abc import Iterator, Sequence

from storyline_kg.types.entities import TimelineEvent
from storyline_kg.types.timeline import (
    CausalGraph,
    CausalGraphStats,
    CausalLink,
    CausalLinkType,
    CausalNode,
    CausalReach,
)
from storyline_kg.utils.text import has_keyword

logger = logging.getLogger(__name__)

MAX_QUERY_DEPTH = 5
PROXIMITY_PAGES = 20

_TYPE_CUES: list[tuple[CausalLinkType, tuple[str, ...]]] = [
    (CausalLinkType.CAUSES, ("because", "so", "therefore", "as a result")),
    (CausalLinkType.ENABLES, ("allow", "allows", "allowed", "enable", "enables", "enabled", "help", "helps", "helped")),
    (
        CausalLinkType.PREVENTS,
        ("prevent", "prevents", "prevented", "stop", "stops", "stopped", "block", "blocks", "blocked"),
    ),
]


def build_causal_graph(
    events: Sequence[TimelineEvent],
    lookahead: int = 5,
    threshold: float = 0.3,
) -> CausalGraph:
    """
    Build a causal graph over events.

    Args:
        events: Timeline events (any order)
        lookahead: Window size; each event is compared with the events
            that follow it inside the window
        threshold: Minimum strength for a link

    Returns:
        CausalGraph with one node per event and depths computed
    """
    graph = CausalGraph()
    for event in events:
        graph.nodes[event.id] = CausalNode(event_id=event.id)

    ordered = sorted(events, key=lambda e: e.page_number)
    for i, current in enumerate(ordered):
        for following in ordered[i + 1 : i + lookahead]:
            link = infer_link(current, following)
            if link.strength > threshold:
                graph.add_link(link)

    compute_depths(graph)
    logger.debug(f"Causal graph: {len(graph.nodes)} nodes, {len(graph.links)} links")
    return graph


def infer_link(source: TimelineEvent, target: TimelineEvent) -> CausalLink:
    """Score and type the link from an earlier event to a later one."""
    chars_a, chars_b = set(source.characters), set(target.characters)
    largest = max(len(chars_a), len(chars_b))
    overlap = len(chars_a & chars_b) / largest if largest else 0.0
    proximity = max(0.0, 1 - (target.page_number - source.page_number) / PROXIMITY_PAGES)
    strength = round(min(1.0, overlap * 0.6 + proximity * 0.4), 2)

    text = f"{source.title} {source.description} {target.title} {target.description}"
    link_type = CausalLinkType.INFLUENCES
    for candidate, cues in _TYPE_CUES:
        if has_keyword(text, cues):
            link_type = candidate
            break

    return CausalLink(
        source=source.id,
        target=target.id,
        type=link_type,
        strength=strength,
        evidence=f"{len(chars_a & chars_b)} shared character(s), {target.page_number - source.page_number} page(s) apart",
    )


def compute_depths(graph: CausalGraph) -> None:
    """
    Set each node's depth to its longest incoming path.

    Iterative DFS over incoming links with visiting/visited sets. Every
    back-edge into a node still being visited is appended to
    ``graph.cycle_edges``.
    """
    graph.cycle_edges = []
    visiting: set[str] = set()
    visited: set[str] = set()
    best: dict[str, int] = {}

    for start in graph.nodes:
        if start in visited:
            continue
        visiting.add(start)
        best[start] = 0
        stack: list[tuple[str, Iterator[CausalLink]]] = [(start, iter(graph.nodes[start].incoming))]

        while stack:
            node_id, pending = stack[-1]
            link = next(pending, None)

            if link is None:
                stack.pop()
                visiting.discard(node_id)
                visited.add(node_id)
                graph.nodes[node_id].depth = best[node_id]
                if stack:
                    child = stack[-1][0]
                    best[child] = max(best[child], best[node_id] + 1)
                continue

            parent = link.source
            if parent in visiting:
                graph.cycle_edges.append((parent, node_id))
            elif parent in visited:
                best[node_id] = max(best[node_id], graph.nodes[parent].depth + 1)
            elif parent in graph.nodes:
                visiting.add(parent)
                best[parent] = 0
                stack.append((parent, iter(graph.nodes[parent].incoming)))

    if graph.cycle_edges:
        logger.warning(f"Causal graph has {len(graph.cycle_edges)} cycle edge(s): {graph.cycle_edges}")


# =============================================================================
# Queries
# =============================================================================


def roots(graph: CausalGraph) -> list[str]:
    return [node_id for node_id, node in graph.nodes.items() if not node.incoming]


def leaves(graph: CausalGraph) -> list[str]:
    return [node_id for node_id, node in graph.nodes.items() if not node.outgoing]


def downstream_effects(graph: CausalGraph, event_id: str, max_depth: int = MAX_QUERY_DEPTH) -> list[CausalReach]:
    """Events reachable along outgoing links (BFS, at most ``max_depth`` hops)."""
    return _walk(graph, event_id, max_depth, forward=True)


def upstream_causes(graph: CausalGraph, event_id: str, max_depth: int = MAX_QUERY_DEPTH) -> list[CausalReach]:
    """Events that reach this one along incoming links (BFS, at most ``max_depth`` hops)."""
    return _walk(graph, event_id, max_depth, forward=False)


def _walk(graph: CausalGraph, event_id: str, max_depth: int, *, forward: bool) -> list[CausalReach]:
    found: list[CausalReach] = []
    seen = {event_id}
    queue: deque[tuple[str, int, list[str]]] = deque([(event_id, 0, [event_id])])

    while queue:
        node_id, depth, path = queue.popleft()
        if depth >= max_depth or node_id not in graph.nodes:
            continue
        node = graph.nodes[node_id]
        neighbours = [l.target for l in node.outgoing] if forward else [l.source for l in node.incoming]
        for neighbour in neighbours:
            if neighbour in seen:
                continue
            seen.add(neighbour)
            next_path = path + [neighbour] if forward else [neighbour] + path
            found.append(CausalReach(event_id=neighbour, depth=depth + 1, path=next_path))
            queue.append((neighbour, depth + 1, next_path))
    return found


def critical_path(graph: CausalGraph) -> list[str]:
    """
    Longest causal chain, ending at the deepest node.

    Walks back from the deepest node along the strongest incoming link
    whose source is one level shallower.
    """
    if not graph.nodes:
        return []
    deepest = max(graph.nodes.values(), key=lambda n: n.depth)
    if deepest.depth == 0:
        return []

    path = [deepest.event_id]
    seen = {deepest.event_id}
    current = deepest
    while current.incoming:
        candidates = [
            l for l in current.incoming
            if l.source in graph.nodes and l.source not in seen and graph.nodes[l.source].depth == current.depth - 1
        ]
        if not candidates:
            break
        strongest = max(candidates, key=lambda l: l.strength)
        path.insert(0, strongest.source)
        seen.add(strongest.source)
        current = graph.nodes[strongest.source]
    return path


def event_criticality(graph: CausalGraph, event_id: str) -> float:
    """Share of other events that are upstream or downstream of this one."""
    max_reach = len(graph.nodes) - 1
    if max_reach <= 0:
        return 0.0
    reach = len(downstream_effects(graph, event_id)) + len(upstream_causes(graph, event_id))
    return min(1.0, reach / max_reach)


def graph_stats(graph: CausalGraph) -> CausalGraphStats:
    links = graph.links
    total_degree = sum(len(n.incoming) + len(n.outgoing) for n in graph.nodes.values())
    node_count = len(graph.nodes)
    return CausalGraphStats(
        total_nodes=node_count,
        total_links=len(links),
        links_by_type=dict(Counter(l.type.value for l in links)),
        average_links_per_node=total_degree / node_count if node_count else 0.0,
        max_depth=max((n.depth for n in graph.nodes.values()), default=0),
        root_count=len(roots(graph)),
        leaf_count=len(leaves(graph)),
        clustering_coefficient=_clustering_coefficient(graph),
    )


def _clustering_coefficient(graph: CausalGraph) -> float:
    adjacency: dict[str, set[str]] = {node_id: set() for node_id in graph.nodes}
    for link in graph.links:
        if link.source == link.target:
            continue
        adjacency.setdefault(link.source, set()).add(link.target)
        adjacency.setdefault(link.target, set()).add(link.source)

    total, counted = 0.0, 0
    for neighbours in adjacency.values():
        if len(neighbours) < 2:
            continue
        ordered = sorted(neighbours)
        connections = sum(
            1 for i, a in enumerate(ordered) for b in ordered[i + 1 :] if b in adjacency.get(a, set())
        )
        possible = len(ordered) * (len(ordered) - 1) / 2
        total += connections / possible
        counted += 1
    return total / counted if counted else 0.0
