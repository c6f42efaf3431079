"""
Error Taxonomy

Exceptions raised across the reconciliation pipeline.

Only structural failures (no batches supplied, a migration path that does
not exist for a declared version) abort reconciliation. Everything else
degrades a single batch or falls back to a heuristic.

Example:
    >>> from storyline_kg.errors import ParseError
    >>> try:
    ...     ingest("not json at all", "object")
    ... except ParseError as e:
    ...     print(e.attempts)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from storyline_kg.types.results import ResolutionResult, ValidationIssue


class ReconciliationError(Exception):
    """Base class for all storyline_kg errors."""


class ParseError(ReconciliationError):
    """Raw model text could not be turned into JSON, even after repair."""

    def __init__(self, message: str, *, attempts: list[str] | None = None, preview: str = "") -> None:
        super().__init__(message)
        self.attempts = attempts or []
        self.preview = preview


class ValidationError(ReconciliationError):
    """Well-formed JSON that violates the response schema."""

    def __init__(self, message: str, issues: list[ValidationIssue]) -> None:
        super().__init__(message)
        self.issues = issues

    @property
    def paths(self) -> list[str]:
        return [issue.path for issue in self.issues]


class MigrationError(ReconciliationError):
    """No migration path between two versions, or a migration step failed."""

    def __init__(self, message: str, *, from_version: str | None = None, to_version: str | None = None) -> None:
        super().__init__(message)
        self.from_version = from_version
        self.to_version = to_version


class ContradictionUnresolved(ReconciliationError):
    """
    A contradiction that was flagged for human review.

    Not raised by the pipeline. Instances are attached to the Storyline as
    review annotations so the conflict stays visible.
    """

    def __init__(self, resolution: ResolutionResult) -> None:
        super().__init__(resolution.contradiction.description)
        self.resolution = resolution


class ProviderError(ReconciliationError):
    """An arbitration call failed, returned garbage, or timed out."""


class ReconciliationAborted(ReconciliationError):
    """The caller aborted a merge pass. The last committed state is intact."""
