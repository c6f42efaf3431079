"""
Response Validation

Field-by-field validation of a migrated analysis response against the
entity schemas in ``storyline_kg.types.entities``.

Each record is validated on its own so one bad character does not sink the
batch. Failures become ValidationIssues with JSON-pointer paths such as
``/characters/0/importance``; the offending record is dropped. In strict
mode unknown fields are also issues and any issue raises ValidationError.

Data-quality problems (empty strings, very short descriptions) are
warnings, never issues.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from storyline_kg.errors import ValidationError
from storyline_kg.types.entities import Character, Relationship, Theme, TimelineEvent
from storyline_kg.types.results import ValidationIssue, ValidationReport

logger = logging.getLogger(__name__)

COLLECTION_MODELS: dict[str, type[BaseModel]] = {
    "characters": Character,
    "timeline": TimelineEvent,
    "themes": Theme,
    "relationships": Relationship,
}

RESPONSE_KEYS = frozenset({*COLLECTION_MODELS, "confidence", "metadata"})

# Fields checked for minimum length
DESCRIPTIVE_FIELDS = ("description", "summary")

PLACEHOLDER_ID = "pending"


def _pointer(*parts: object) -> str:
    return "/" + "/".join(str(p).replace("~", "~0").replace("/", "~1") for p in parts)


def _allowed_keys(model: type[BaseModel]) -> set[str]:
    keys: set[str] = set()
    for name, field in model.model_fields.items():
        keys.add(name)
        if field.alias:
            keys.add(field.alias)
    return keys


def _validate_record(
    model: type[BaseModel],
    collection: str,
    index: int,
    item: Any,
    *,
    strict: bool,
) -> list[ValidationIssue]:
    if not isinstance(item, dict):
        return [ValidationIssue(path=_pointer(collection, index), message="Expected an object", value=item)]

    issues: list[ValidationIssue] = []
    if strict:
        for key in sorted(set(item) - _allowed_keys(model)):
            issues.append(
                ValidationIssue(path=_pointer(collection, index, key), message="Unknown field", value=item[key])
            )

    payload = {"id": PLACEHOLDER_ID, **item} if not item.get("id") else item
    try:
        model.model_validate(payload)
    except PydanticValidationError as e:
        for error in e.errors():
            issues.append(
                ValidationIssue(
                    path=_pointer(collection, index, *error["loc"]),
                    message=error["msg"],
                    value=error.get("input"),
                )
            )
    return issues


def validate_analysis(data: Any, *, strict: bool = False) -> ValidationReport:
    """
    Validate an analysis response field by field.

    Args:
        data: Migrated response object
        strict: Reject unknown fields and raise on any issue

    Returns:
        ValidationReport holding the valid records and all issues

    Raises:
        ValidationError: In strict mode, when any issue was found
    """
    if not isinstance(data, dict):
        issue = ValidationIssue(path="/", message="Expected an object", value=type(data).__name__)
        if strict:
            raise ValidationError("Response is not an object", [issue])
        return ValidationReport(errors=[issue])

    report = ValidationReport()

    if strict:
        for key in sorted(set(data) - RESPONSE_KEYS):
            report.errors.append(ValidationIssue(path=_pointer(key), message="Unknown field"))

    for collection, model in COLLECTION_MODELS.items():
        items = data.get(collection)
        if items is None:
            report.warnings.append(f"Missing collection {_pointer(collection)}")
            continue
        if not isinstance(items, list):
            report.errors.append(
                ValidationIssue(path=_pointer(collection), message="Expected an array", value=type(items).__name__)
            )
            continue

        valid: list[dict[str, Any]] = getattr(report, collection)
        for index, item in enumerate(items):
            issues = _validate_record(model, collection, index, item, strict=strict)
            if issues:
                report.errors.extend(issues)
            else:
                valid.append(item)

    confidence = data.get("confidence", 0.5)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0.0 <= confidence <= 1.0:
        report.errors.append(
            ValidationIssue(path="/confidence", message="Expected a number between 0 and 1", value=confidence)
        )
    else:
        report.confidence = float(confidence)

    if report.errors:
        logger.debug(f"Validation found {len(report.errors)} issue(s): {[i.path for i in report.errors[:5]]}")
        if strict:
            raise ValidationError(f"Response failed validation with {len(report.errors)} issue(s)", report.errors)

    return report


def collect_quality_warnings(data: Any, *, min_description_length: int = 10, _path: tuple = ()) -> list[str]:
    """
    Walk parsed data and report empty strings and very short descriptions.

    Example:
        >>> collect_quality_warnings({"characters": [{"name": "", "description": "Hero"}]})
        ['Empty value at /characters/0/name', 'Very short description at /characters/0/description']
    """
    warnings: list[str] = []
    if isinstance(data, dict):
        for key, value in data.items():
            path = (*_path, key)
            if isinstance(value, str):
                if not value.strip():
                    warnings.append(f"Empty value at {_pointer(*path)}")
                elif key in DESCRIPTIVE_FIELDS and len(value.strip()) < min_description_length:
                    warnings.append(f"Very short description at {_pointer(*path)}")
            else:
                warnings.extend(
                    collect_quality_warnings(value, min_description_length=min_description_length, _path=path)
                )
    elif isinstance(data, list):
        for index, item in enumerate(data):
            warnings.extend(
                collect_quality_warnings(item, min_description_length=min_description_length, _path=(*_path, index))
            )
    return warnings
