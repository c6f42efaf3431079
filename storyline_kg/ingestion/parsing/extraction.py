"""
JSON Extraction

Pulls a JSON value out of free-form model text without modifying it.
Strategies are tried in order and the first one that yields a value of the
expected shape wins:

    1. direct      - the whole text is JSON
    2. code_block  - the body of a ``` / ```json fence
    3. span        - the outermost {...} or [...] span
    4. prefix      - text after a label such as "JSON:" or "Result:"

Example:
    >>> data, method = extract_json('Sure! ```json\\n{"characters": []}\\n```', ResponseShape.OBJECT)
    >>> method
    'code_block'
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from storyline_kg.errors import ParseError
from storyline_kg.types.results import ResponseShape

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?([\s\S]*?)```")
_PREFIX_RE = re.compile(r"(?im)^[ \t]*(?:json|response|output|result|answer)[ \t]*:[ \t]*")

MAX_PREFIX_DEPTH = 2


def matches_shape(data: Any, shape: ResponseShape) -> bool:
    """Check the top-level JSON type against the expected shape."""
    if shape == ResponseShape.OBJECT:
        return isinstance(data, dict)
    if shape == ResponseShape.ARRAY:
        return isinstance(data, list)
    return isinstance(data, (dict, list))


def _try_parse(text: str, shape: ResponseShape) -> tuple[bool, Any]:
    text = text.strip()
    if not text:
        return False, None
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False, None
    if not matches_shape(data, shape):
        return False, None
    return True, data


def _outer_span(text: str, opener: str, closer: str) -> str | None:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _span_order(shape: ResponseShape) -> list[tuple[str, str]]:
    if shape == ResponseShape.ARRAY:
        return [("[", "]"), ("{", "}")]
    return [("{", "}"), ("[", "]")]


def _extract(text: str, shape: ResponseShape, attempts: list[str], depth: int) -> tuple[Any, str] | None:
    ok, data = _try_parse(text, shape)
    attempts.append("direct")
    if ok:
        return data, "direct"

    for match in _FENCE_RE.finditer(text):
        ok, data = _try_parse(match.group(1), shape)
        if ok:
            attempts.append("code_block")
            return data, "code_block"
    attempts.append("code_block")

    for opener, closer in _span_order(shape):
        span = _outer_span(text, opener, closer)
        if span is not None:
            ok, data = _try_parse(span, shape)
            if ok:
                attempts.append("span")
                return data, "span"
    attempts.append("span")

    if depth < MAX_PREFIX_DEPTH:
        for match in _PREFIX_RE.finditer(text):
            found = _extract(text[match.end() :], shape, attempts, depth + 1)
            if found is not None:
                return found[0], "prefix"
    attempts.append("prefix")

    return None


def extract_json(text: str, shape: ResponseShape = ResponseShape.OBJECT) -> tuple[Any, str]:
    """
    Extract a JSON value of the expected shape from model text.

    Args:
        text: Raw model output
        shape: Expected top-level shape

    Returns:
        (data, method) where method names the strategy that succeeded

    Raises:
        ParseError: If no strategy produced JSON of the expected shape
    """
    attempts: list[str] = []
    found = _extract(text, shape, attempts, depth=0)
    if found is None:
        raise ParseError(
            f"No {shape.value} JSON found in response",
            attempts=list(dict.fromkeys(attempts)),
            preview=text[:200],
        )
    data, method = found
    logger.debug(f"Extracted JSON via {method}")
    return data, method
