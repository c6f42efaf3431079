"""
Schema Registry

Named schema versions connected by migration steps. A migration path is
found by breadth-first search over the version graph and applied in order.

Example:
    >>> registry = SchemaRegistry(current_version="2.0.0")
    >>> registry.register_version("1.0.0", required=("characters",))
    >>> registry.register_version("2.0.0", required=("characters", "timeline"))
    >>> registry.register_migration("1.0.0", "2.0.0", rename_field("events", "timeline"))
    >>> registry.migrate({"characters": [], "events": []}).data
    {'characters': [], 'timeline': []}
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from storyline_kg.errors import MigrationError

logger = logging.getLogger(__name__)

MigrationFn = Callable[[dict[str, Any]], dict[str, Any]]
DetectFn = Callable[[dict[str, Any]], str | None]


class Migration(BaseModel):
    """One edge in the version graph."""

    from_version: str
    to_version: str
    description: str = ""
    transform: MigrationFn = Field(exclude=True)


class SchemaVersion(BaseModel):
    """A named shape and the keys it must carry."""

    version: str
    required: tuple[str, ...] = ()
    description: str = ""


class MigrationResult(BaseModel):
    """Migrated data plus the path that produced it."""

    data: Any
    from_version: str
    to_version: str
    applied: list[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Transform builders
# -----------------------------------------------------------------------------


def rename_field(old: str, new: str) -> MigrationFn:
    """Move ``old`` to ``new`` when present and ``new`` is absent."""

    def _rename(data: dict[str, Any]) -> dict[str, Any]:
        if old not in data:
            return data
        result = {k: v for k, v in data.items() if k != old}
        result.setdefault(new, data[old])
        return result

    return _rename


def add_default_field(name: str, default: Any = None, *, factory: Callable[[], Any] | None = None) -> MigrationFn:
    """Add ``name`` when missing (or None) using a deep-copied default or a factory."""

    def _add(data: dict[str, Any]) -> dict[str, Any]:
        if data.get(name) is not None:
            return data
        value = factory() if factory is not None else copy.deepcopy(default)
        return {**data, name: value}

    return _add


def remove_field(name: str) -> MigrationFn:
    def _remove(data: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in data.items() if k != name}

    return _remove


def transform_array_items(
    name: str,
    item_fn: Callable[[Any, int], Any],
) -> MigrationFn:
    """Apply ``item_fn(item, index)`` to every element of the list at ``name``."""

    def _transform(data: dict[str, Any]) -> dict[str, Any]:
        items = data.get(name)
        if not isinstance(items, list):
            return data
        return {**data, name: [item_fn(item, i) for i, item in enumerate(items)]}

    return _transform


def compose(*steps: MigrationFn) -> MigrationFn:
    """Chain transforms left to right."""

    def _composed(data: dict[str, Any]) -> dict[str, Any]:
        for step in steps:
            data = step(data)
        return data

    return _composed


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class SchemaRegistry:
    """
    Version graph for one kind of document.

    Args:
        current_version: Destination version for migrate()
        detect: Optional function inferring a version from structural cues
    """

    def __init__(self, current_version: str, *, detect: DetectFn | None = None) -> None:
        self.current_version = current_version
        self._versions: dict[str, SchemaVersion] = {}
        self._edges: dict[str, list[Migration]] = {}
        self._detect = detect

    @property
    def versions(self) -> list[str]:
        return list(self._versions)

    def register_version(self, version: str, *, required: tuple[str, ...] = (), description: str = "") -> None:
        self._versions[version] = SchemaVersion(version=version, required=required, description=description)
        self._edges.setdefault(version, [])

    def register_migration(
        self,
        from_version: str,
        to_version: str,
        transform: MigrationFn,
        description: str = "",
    ) -> None:
        for version in (from_version, to_version):
            if version not in self._versions:
                raise ValueError(f"Unknown schema version: {version}")
        self._edges[from_version].append(
            Migration(
                from_version=from_version,
                to_version=to_version,
                description=description or f"{from_version} -> {to_version}",
                transform=transform,
            )
        )

    def find_path(self, from_version: str, to_version: str) -> list[Migration] | None:
        """Shortest migration path by BFS, or None when unreachable."""
        if from_version == to_version:
            return []

        queue: deque[str] = deque([from_version])
        came_from: dict[str, Migration | None] = {from_version: None}
        while queue:
            version = queue.popleft()
            if version == to_version:
                break
            for edge in self._edges.get(version, []):
                if edge.to_version not in came_from:
                    came_from[edge.to_version] = edge
                    queue.append(edge.to_version)

        if to_version not in came_from:
            return None

        path: list[Migration] = []
        cursor = to_version
        while (edge := came_from[cursor]) is not None:
            path.append(edge)
            cursor = edge.from_version
        path.reverse()
        return path

    def detect_version(self, data: dict[str, Any]) -> str:
        """Infer the version of ``data``; falls back to the current version."""
        if self._detect is not None:
            detected = self._detect(data)
            if detected in self._versions:
                return detected
        return self.current_version

    def validate(self, data: dict[str, Any], version: str) -> list[str]:
        """Return required keys of ``version`` missing from ``data``."""
        schema = self._versions.get(version)
        if schema is None:
            return []
        return [key for key in schema.required if key not in data]

    def migrate(
        self,
        data: dict[str, Any],
        from_version: str | None = None,
        to_version: str | None = None,
    ) -> MigrationResult:
        """
        Migrate ``data`` to ``to_version`` (default: current).

        Args:
            data: Document to migrate (not modified)
            from_version: Source version; auto-detected when None
            to_version: Destination version

        Raises:
            MigrationError: Unknown version, no path, a step raised, or the
                result is missing required keys
        """
        source = from_version or self.detect_version(data)
        target = to_version or self.current_version

        if source not in self._versions:
            raise MigrationError(f"Unknown schema version: {source}", from_version=source, to_version=target)

        path = self.find_path(source, target)
        if path is None:
            raise MigrationError(
                f"No migration path from {source} to {target}",
                from_version=source,
                to_version=target,
            )

        result = copy.deepcopy(data)
        applied: list[str] = []
        for edge in path:
            try:
                result = edge.transform(result)
            except Exception as e:
                logger.error(f"Migration step {edge.description} failed: {e}")
                raise MigrationError(
                    f"Migration step {edge.description} failed: {e}",
                    from_version=edge.from_version,
                    to_version=edge.to_version,
                ) from e
            applied.append(edge.description)

        if path:
            missing = self.validate(result, target)
            if missing:
                raise MigrationError(
                    f"Migrated data is missing required fields for {target}: {', '.join(missing)}",
                    from_version=source,
                    to_version=target,
                )

        return MigrationResult(data=result, from_version=source, to_version=target, applied=applied)
