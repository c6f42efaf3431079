"""
Response Parsing

Modules:
    extraction: Locate JSON inside model text
    repair: Fix malformed JSON step by step
    ingest: Extraction + repair + migration entry point
"""

from storyline_kg.ingestion.parsing.extraction import extract_json
from storyline_kg.ingestion.parsing.ingest import ingest
from storyline_kg.ingestion.parsing.repair import repair_json

__all__ = ["extract_json", "repair_json", "ingest"]
