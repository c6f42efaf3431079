"""
Ingestion Pipeline

Per-batch processing from raw model text to typed entities, plus the
resolution stages that merge entities across batches.

Phases:
    Phase 1 - Parsing (per batch, parallel):
        - JSON extraction and repair
        - Schema migration to the current response version
        - Field-by-field validation

    Phase 2 - Extraction (per batch, parallel):
        - Validated records -> BatchResult with provisional confidence

    Phase 3 - Resolution (serialized merge):
        - Cross-batch deduplication
        - Contradiction resolution

Modules:
    parsing/: Extraction, repair, ingest()
    migration/: Schema registry and known versions
    validation: Field-level validation and quality warnings
    extraction/: EntityExtractor
    resolution/: Deduplicator, ContradictionResolver
"""

from storyline_kg.ingestion.extraction import EntityExtractor
from storyline_kg.ingestion.parsing import ingest
from storyline_kg.ingestion.validation import validate_analysis

__all__ = ["ingest", "validate_analysis", "EntityExtractor"]
