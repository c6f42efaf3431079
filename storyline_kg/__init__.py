"""
StorylineKG - Multi-Batch Narrative Reconciliation

Merges per-batch manga analyses (characters, events, themes, relationships)
into one consistent storyline with provenance for every merge.

Example:
    >>> from storyline_kg import ReconciliationOrchestrator
    >>> orchestrator = ReconciliationOrchestrator()
    >>> storyline = await orchestrator.reconcile(batches)
    >>> print(len(storyline.characters))

Main Classes:
    ReconciliationOrchestrator: Primary entry point for a reconciliation run
    ReconcileConfig: Configuration management
"""

__version__ = "0.1.0"

# Public API - lazy imports to avoid loading optional dependencies
def __getattr__(name: str):
    """Lazy import public API components."""

    if name == "ReconciliationOrchestrator":
        from storyline_kg.reconciliation.orchestrator import ReconciliationOrchestrator
        return ReconciliationOrchestrator

    if name == "ReconcileConfig":
        from storyline_kg.config.settings import ReconcileConfig
        return ReconcileConfig

    if name in ("ViewType", "build_view", "character_timeline"):
        from storyline_kg.reconciliation import views
        return getattr(views, name)

    # Types
    if name in ("Character", "TimelineEvent", "Theme", "Relationship", "RawBatch", "BatchResult", "Storyline"):
        from storyline_kg import types
        return getattr(types, name)

    raise AttributeError(f"module 'storyline_kg' has no attribute {name!r}")


__all__ = [
    # Main classes
    "ReconciliationOrchestrator",
    "ReconcileConfig",

    # Views
    "ViewType",
    "build_view",
    "character_timeline",

    # Types
    "Character",
    "TimelineEvent",
    "Theme",
    "Relationship",
    "RawBatch",
    "BatchResult",
    "Storyline",

    # Version
    "__version__",
]
