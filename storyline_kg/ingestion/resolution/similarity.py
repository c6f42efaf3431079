"""
Pairwise Entity Similarity

Builds a dense similarity matrix for a list of same-kind entities. Every
component is a token or set Jaccard computed in one shot with
scipy.spatial.distance.cdist over boolean indicator matrices.

Components (weights are per entity kind):
    name         - token Jaccard of name/title
    alias        - overlap of alias sets (characters), participants (events)
                   or keywords (themes)
    description  - token Jaccard of descriptions
    appearance   - token Jaccard of appearance text, only when both have it
    proximity    - max(0, 1 - page distance / window)

The blend is normalized by the weights actually used for each pair.
Relationships are compared by character pair only.
"""

from __future__ import annotations

from typing import Any

import numpy as np
from pydantic import BaseModel
from scipy.spatial.distance import cdist

from storyline_kg.types.entities import Character, Relationship, Theme, TimelineEvent
from storyline_kg.utils.text import normalize_name, tokenize

# Score assigned when one record's name is literally another's name or alias
NAME_MATCH_SCORE = 0.95


class SimilarityWeights(BaseModel):
    """Component weights and proximity window for one entity kind."""

    name: float = 0.4
    alias: float = 0.2
    description: float = 0.2
    appearance: float = 0.0
    proximity: float = 0.0
    proximity_window: int = 0
    identity_boost: bool = False


CHARACTER_WEIGHTS = SimilarityWeights(
    name=0.4, alias=0.2, description=0.2, appearance=0.1, proximity=0.1, proximity_window=50, identity_boost=True
)
EVENT_WEIGHTS = SimilarityWeights(name=0.4, alias=0.2, description=0.2, proximity=0.2, proximity_window=10)
THEME_WEIGHTS = SimilarityWeights(name=0.6, alias=0.2, description=0.2, identity_boost=True)


def default_weights(entity: Any) -> SimilarityWeights:
    if isinstance(entity, Character):
        return CHARACTER_WEIGHTS
    if isinstance(entity, TimelineEvent):
        return EVENT_WEIGHTS
    return THEME_WEIGHTS


# -----------------------------------------------------------------------------
# Profiles
# -----------------------------------------------------------------------------


class _Profile(BaseModel):
    name: str
    identities: set[str]
    alias_set: set[str]
    description: str
    appearance: str | None = None
    position: int | None = None


def _profile(entity: Any) -> _Profile:
    if isinstance(entity, Character):
        names = {normalize_name(entity.name), *(normalize_name(a) for a in entity.aliases)}
        names.discard("")
        return _Profile(
            name=entity.name,
            identities=names,
            alias_set=names,
            description=entity.description,
            appearance=entity.appearance or None,
            position=entity.first_appearance,
        )
    if isinstance(entity, TimelineEvent):
        return _Profile(
            name=entity.title,
            identities=set(),
            alias_set={c.lower() for c in entity.characters},
            description=entity.description,
            position=entity.page_number,
        )
    if isinstance(entity, Theme):
        return _Profile(
            name=entity.name,
            identities={normalize_name(entity.name)},
            alias_set={k.lower() for k in entity.keywords},
            description=entity.description,
        )
    raise TypeError(f"Unsupported entity type: {type(entity).__name__}")


# -----------------------------------------------------------------------------
# Matrix helpers
# -----------------------------------------------------------------------------


def _set_jaccard_matrix(sets: list[set[str]]) -> np.ndarray:
    """Pairwise Jaccard similarity of string sets; rows with empty sets score 0."""
    n = len(sets)
    vocabulary = sorted(set().union(*sets)) if sets else []
    if not vocabulary:
        return np.zeros((n, n))

    index = {term: i for i, term in enumerate(vocabulary)}
    indicator = np.zeros((n, len(vocabulary)), dtype=bool)
    for row, terms in enumerate(sets):
        for term in terms:
            indicator[row, index[term]] = True

    with np.errstate(invalid="ignore", divide="ignore"):
        similarity = 1.0 - cdist(indicator, indicator, metric="jaccard")
    similarity = np.nan_to_num(similarity, nan=0.0)

    empty = ~indicator.any(axis=1)
    similarity[empty, :] = 0.0
    similarity[:, empty] = 0.0
    return similarity


def _token_jaccard_matrix(texts: list[str]) -> np.ndarray:
    return _set_jaccard_matrix([tokenize(t) for t in texts])


def _proximity_matrix(positions: list[int | None], window: int) -> np.ndarray:
    n = len(positions)
    if window <= 0:
        return np.zeros((n, n))
    known = np.array([p is not None for p in positions])
    values = np.array([p if p is not None else 0 for p in positions], dtype=float)
    distance = np.abs(values[:, None] - values[None, :])
    proximity = np.clip(1.0 - distance / window, 0.0, 1.0)
    proximity[~known, :] = 0.0
    proximity[:, ~known] = 0.0
    return proximity


def _relationship_matrix(relationships: list[Relationship]) -> np.ndarray:
    keys = [r.pair_key for r in relationships]
    n = len(keys)
    matrix = np.zeros((n, n))
    for i in range(n):
        for j in range(i + 1, n):
            if keys[i] == keys[j]:
                matrix[i, j] = matrix[j, i] = 1.0
    return matrix


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def similarity_matrix(entities: list[Any], weights: SimilarityWeights | None = None) -> np.ndarray:
    """
    Compute the symmetric pairwise similarity matrix.

    Args:
        entities: Entities of a single kind
        weights: Component weights (defaults per kind)

    Returns:
        n x n array in [0, 1] with a zero diagonal
    """
    n = len(entities)
    if n == 0:
        return np.zeros((0, 0))

    if isinstance(entities[0], Relationship):
        matrix = _relationship_matrix(entities)
    else:
        weights = weights or default_weights(entities[0])
        profiles = [_profile(e) for e in entities]

        weighted = np.zeros((n, n))
        total = np.zeros((n, n))

        if weights.name:
            weighted += weights.name * _token_jaccard_matrix([p.name for p in profiles])
            total += weights.name
        if weights.alias:
            weighted += weights.alias * _set_jaccard_matrix([p.alias_set for p in profiles])
            total += weights.alias
        if weights.description:
            weighted += weights.description * _token_jaccard_matrix([p.description for p in profiles])
            total += weights.description
        if weights.appearance:
            has_appearance = np.array([bool(p.appearance) for p in profiles])
            both = np.outer(has_appearance, has_appearance)
            appearance = _token_jaccard_matrix([p.appearance or "" for p in profiles])
            weighted += weights.appearance * appearance * both
            total += weights.appearance * both
        if weights.proximity:
            weighted += weights.proximity * _proximity_matrix([p.position for p in profiles], weights.proximity_window)
            total += weights.proximity

        with np.errstate(invalid="ignore", divide="ignore"):
            matrix = np.where(total > 0, weighted / total, 0.0)

        if weights.identity_boost:
            _apply_identity_boost(matrix, profiles)

    ids = [getattr(e, "id", None) for e in entities]
    for i in range(n):
        for j in range(i + 1, n):
            if ids[i] is not None and ids[i] == ids[j]:
                matrix[i, j] = matrix[j, i] = 1.0

    np.fill_diagonal(matrix, 0.0)
    return np.clip(matrix, 0.0, 1.0)


def _apply_identity_boost(matrix: np.ndarray, profiles: list[_Profile]) -> None:
    primary = [normalize_name(p.name) for p in profiles]
    for i, name_i in enumerate(primary):
        for j in range(i + 1, len(profiles)):
            if name_i in profiles[j].identities or primary[j] in profiles[i].identities:
                boosted = max(matrix[i, j], NAME_MATCH_SCORE)
                matrix[i, j] = matrix[j, i] = boosted


def pair_similarity(a: Any, b: Any, weights: SimilarityWeights | None = None) -> float:
    """Similarity of two entities of the same kind."""
    return float(similarity_matrix([a, b], weights)[0, 1])
