"""
JSON Repair

Fixed sequence of textual transforms for malformed model output. Steps are
applied cumulatively and the text is re-parsed after each one; the first
successful parse wins.

Steps:
    1. strip_control_characters  - BOM, C0/C1 controls, CRLF
    2. normalize_quotes          - smart quotes and single-quoted strings
    3. remove_trailing_commas    - ",}" and ",]"
    4. balance_brackets          - close unterminated strings and containers
    5. longest_valid_prefix      - cut back to the longest parseable prefix

All transforms are string-aware: nothing inside a double-quoted string is
touched except by step 1.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from storyline_kg.errors import ParseError
from storyline_kg.ingestion.parsing.extraction import matches_shape
from storyline_kg.types.results import RepairMetadata, ResponseShape

logger = logging.getLogger(__name__)

_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F]")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "„": '"', "‘": "'", "’": "'"})
_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?([\s\S]*?)(?:```|$)")

PREFIX_SEARCH_LIMIT = 400
SUBSET_CONFIDENCE_FACTOR = 0.7


# -----------------------------------------------------------------------------
# Transforms
# -----------------------------------------------------------------------------


def strip_control_characters(text: str) -> str:
    """Remove BOM and control characters, normalize line endings."""
    text = text.lstrip("﻿")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _CONTROL_RE.sub("", text).strip()


def normalize_quotes(text: str) -> str:
    """
    Replace smart quotes and rewrite single-quoted strings as JSON strings.

    Example:
        >>> normalize_quotes("{'name': 'Rei'}")
        '{"name": "Rei"}'
    """
    text = text.translate(_SMART_QUOTES)
    out: list[str] = []
    i = 0
    in_string = False
    while i < len(text):
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < len(text):
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif ch == "'":
            end = i + 1
            chars: list[str] = []
            while end < len(text) and text[end] != "'":
                if text[end] == "\\" and end + 1 < len(text):
                    chars.append(text[end + 1])
                    end += 2
                    continue
                chars.append(text[end])
                end += 1
            out.append(json.dumps("".join(chars)))
            i = end + 1
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def remove_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing bracket."""
    out: list[str] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == ",":
            rest = text[i + 1 :].lstrip()
            if not rest or rest[0] in "}]":
                continue
        out.append(ch)
    return "".join(out)


def balance_brackets(text: str) -> str:
    """
    Close unterminated strings and containers.

    Stray closers that match nothing are dropped. A dangling key with no
    value gets ``null``.
    """
    out: list[str] = []
    stack: list[str] = []
    in_string = False
    escaped = False
    pairs = {"{": "}", "[": "]"}

    for ch in text:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in pairs:
            stack.append(pairs[ch])
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                continue
            stack.pop()
        out.append(ch)

    if in_string:
        out.append('"')

    result = "".join(out).rstrip()
    if result.endswith(":"):
        result += " null"
    result = result.rstrip(",").rstrip()
    return result + "".join(reversed(stack))


def longest_valid_prefix(text: str, shape: ResponseShape = ResponseShape.ANY) -> tuple[Any, str] | None:
    """
    Find the longest prefix that parses once balanced.

    Cut points are positions just after a complete JSON token (closing
    bracket, closing quote, digit or literal). At most PREFIX_SEARCH_LIMIT
    cut points are tried, longest first.

    Returns:
        (data, prefix_text) or None
    """
    tried = 0
    for end in range(len(text), 0, -1):
        if text[end - 1] not in '}]"0123456789el':
            continue
        tried += 1
        if tried > PREFIX_SEARCH_LIMIT:
            break
        candidate = balance_brackets(remove_trailing_commas(text[:end]))
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if matches_shape(data, shape):
            return data, candidate
    return None


# -----------------------------------------------------------------------------
# Pipeline
# -----------------------------------------------------------------------------

RepairStep = Callable[[str], str]

REPAIR_STEPS: list[tuple[str, RepairStep]] = [
    ("basic_cleaning", strip_control_characters),
    ("quote_fixing", normalize_quotes),
    ("trailing_comma_removal", remove_trailing_commas),
    ("bracket_balancing", balance_brackets),
]


def _repair_source(text: str, shape: ResponseShape) -> str:
    """Narrow the text to the part most likely to be JSON."""
    fence = _FENCE_RE.search(text)
    if fence and fence.group(1).strip():
        return fence.group(1)

    openers = "[{" if shape == ResponseShape.ARRAY else "{["
    positions = [p for p in (text.find(o) for o in openers) if p != -1]
    if not positions:
        return text
    if shape == ResponseShape.ANY:
        return text[min(positions) :]
    return text[positions[0] :]


def _parse(text: str, shape: ResponseShape) -> tuple[bool, Any]:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False, None
    return matches_shape(data, shape), data


def repair_json(text: str, shape: ResponseShape = ResponseShape.OBJECT) -> tuple[Any, RepairMetadata]:
    """
    Run the repair sequence until the text parses.

    Args:
        text: Raw model output that failed plain extraction
        shape: Expected top-level shape

    Returns:
        (data, metadata)

    Raises:
        ParseError: If no repair step produced parseable JSON
    """
    original_length = len(text)
    current = _repair_source(text, shape)
    steps: list[str] = []

    for name, step in REPAIR_STEPS:
        repaired = step(current)
        if repaired != current:
            steps.append(name)
        current = repaired
        ok, data = _parse(current, shape)
        if ok:
            return data, _metadata(steps, original_length, len(current), subset=False)

    found = longest_valid_prefix(current, shape)
    if found is not None:
        data, prefix = found
        steps.append("valid_subset_extraction")
        logger.debug(f"Recovered {len(prefix)}/{original_length} chars via prefix extraction")
        return data, _metadata(steps, original_length, len(prefix), subset=True)

    raise ParseError(
        "Response could not be repaired into valid JSON",
        attempts=[name for name, _ in REPAIR_STEPS] + ["valid_subset_extraction"],
        preview=text[:200],
    )


def _metadata(steps: list[str], original_length: int, repaired_length: int, *, subset: bool) -> RepairMetadata:
    ratio = repaired_length / original_length if original_length else 0.0
    confidence = min(1.0, ratio)
    if subset:
        confidence *= SUBSET_CONFIDENCE_FACTOR
    return RepairMetadata(
        steps=steps,
        original_length=original_length,
        repaired_length=repaired_length,
        confidence=max(0.0, min(1.0, confidence)),
    )
