"""
Text Helpers

Name normalization, tokenization and hashing shared by the resolution and
timeline stages.
"""

from __future__ import annotations

import hashlib
import re

_TOKEN_RE = re.compile(r"[\w']+", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """
    Normalize a name for identity comparison.

    Lowercases, drops punctuation other than apostrophes and hyphens, and
    collapses whitespace.

    Example:
        >>> normalize_name("  Rei   AYAMA! ")
        'rei ayama'
    """
    cleaned = re.sub(r"[^\w\s'-]", " ", name.lower())
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def tokenize(text: str) -> set[str]:
    """Lowercased word tokens."""
    return set(_TOKEN_RE.findall(text.lower()))


def token_jaccard(a: str, b: str) -> float:
    """Token-set Jaccard similarity. Two empty strings score 0."""
    tokens_a, tokens_b = tokenize(a), tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def set_overlap(a: set[str], b: set[str]) -> float:
    """Jaccard overlap of two sets. Empty sets score 0."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def has_keyword(text: str, keywords: tuple[str, ...] | list[str]) -> bool:
    """True if any keyword (or phrase) appears as whole words in text."""
    lowered = text.lower()
    return any(re.search(rf"\b{re.escape(kw)}\b", lowered) for kw in keywords)


def stable_id(prefix: str, *parts: object) -> str:
    """
    Deterministic short id from arbitrary parts.

    Example:
        >>> stable_id("char", 2, "rei")
        'char-...'
    """
    digest = hashlib.sha1("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return f"{prefix}-{digest[:12]}"


def hash_response(text: str) -> str:
    """SHA-256 reference for a raw model response."""
    return "sha256:" + hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
