"""
Entity Extraction

Modules:
    extractor: Validated response -> BatchResult of domain entities
"""

from storyline_kg.ingestion.extraction.extractor import EntityExtractor

__all__ = ["EntityExtractor"]
