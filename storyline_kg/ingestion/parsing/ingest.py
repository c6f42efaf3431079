"""
Response Ingestion

Turns raw model text into JSON in the current schema version.

Pipeline:
    1. extract_json()  - direct / code block / span / prefix
    2. repair_json()   - only if extraction failed
    3. migrate_response() - only for whole analysis responses
    4. collect_quality_warnings()

Example:
    >>> result = ingest(raw_text, ResponseShape.OBJECT)
    >>> result.method, result.source_version
    ('code_block', '2.0.0')
"""

from __future__ import annotations

import logging

from storyline_kg.errors import ParseError
from storyline_kg.ingestion.migration.versions import is_analysis_response, migrate_response
from storyline_kg.ingestion.parsing.extraction import extract_json
from storyline_kg.ingestion.parsing.repair import repair_json
from storyline_kg.ingestion.validation import collect_quality_warnings
from storyline_kg.types.results import IngestResult, ResponseShape

logger = logging.getLogger(__name__)


def ingest(
    raw_text: str,
    expected_shape: ResponseShape | str = ResponseShape.OBJECT,
    *,
    from_version: str | None = None,
    migrate: bool = True,
    min_description_length: int = 10,
) -> IngestResult:
    """
    Parse, repair and migrate one model response.

    Args:
        raw_text: Raw model output
        expected_shape: Expected top-level JSON shape
        from_version: Declared response version (auto-detected when None)
        migrate: Migrate analysis responses to the current version
        min_description_length: Threshold for short-description warnings

    Returns:
        IngestResult with data in the current schema

    Raises:
        ParseError: If nothing parseable could be recovered
        MigrationError: If the declared version cannot be migrated
    """
    shape = ResponseShape(expected_shape)
    if not raw_text or not raw_text.strip():
        raise ParseError("Empty response", attempts=[], preview="")

    warnings: list[str] = []
    repair = None
    try:
        data, method = extract_json(raw_text, shape)
    except ParseError as extraction_error:
        logger.debug(f"Extraction failed ({extraction_error.attempts}); running repair")
        try:
            data, repair = repair_json(raw_text, shape)
        except ParseError as repair_error:
            repair_error.attempts = [*extraction_error.attempts, *repair_error.attempts]
            logger.warning(f"Unrecoverable response ({len(raw_text)} chars): {repair_error}")
            raise
        method = "repaired"
        warnings.append(f"Response required repair: {', '.join(repair.steps) or 'none'}")

    source_version = None
    migrations: list[str] = []
    if migrate and is_analysis_response(data):
        result = migrate_response(data, from_version)
        data = result.data
        source_version = result.from_version
        migrations = result.applied
        if migrations:
            logger.debug(f"Migrated response from {source_version}: {migrations}")

    warnings.extend(collect_quality_warnings(data, min_description_length=min_description_length))

    return IngestResult(
        data=data,
        warnings=warnings,
        method=method,
        repair=repair,
        source_version=source_version,
        migrations=migrations,
    )
