"""
Match Grouping

Accepted match pairs become edges of an undirected graph over entity
positions; each connected component is one merge group.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components


def match_components(n: int, edges: Sequence[tuple[int, int]]) -> list[list[int]]:
    """
    Group node indices connected by match edges.

    Args:
        n: Number of nodes
        edges: (i, j) pairs of matched entities

    Returns:
        Components as ascending index lists, ordered by their first member.
        Unmatched nodes come back as singletons.
    """
    if n == 0:
        return []

    rows = np.fromiter((i for i, _ in edges), dtype=np.int64, count=len(edges))
    cols = np.fromiter((j for _, j in edges), dtype=np.int64, count=len(edges))
    graph = coo_matrix((np.ones(len(edges), dtype=np.int8), (rows, cols)), shape=(n, n))
    _, labels = connected_components(graph, directed=False)

    components: dict[int, list[int]] = {}
    for index, label in enumerate(labels):
        components.setdefault(int(label), []).append(index)
    return list(components.values())
