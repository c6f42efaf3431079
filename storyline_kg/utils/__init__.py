"""
Utility Functions

Core algorithms and helper functions used throughout the package.

Modules:
    clustering: Connected components over accepted match pairs
    text: Name normalization, tokenization and hashing
    telemetry: Context-scoped arbitration telemetry and stage labels
"""

from storyline_kg.utils.clustering import match_components
from storyline_kg.utils.telemetry import (
    ArbitrationCollector,
    current_stage,
    telemetry_collector,
    telemetry_stage,
)
from storyline_kg.utils.text import hash_response, normalize_name, stable_id, token_jaccard, tokenize

__all__ = [
    "match_components",
    "ArbitrationCollector",
    "telemetry_collector",
    "telemetry_stage",
    "current_stage",
    "normalize_name",
    "tokenize",
    "token_jaccard",
    "stable_id",
    "hash_response",
]
