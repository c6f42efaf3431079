"""
Configuration System

Manages configuration for storyline reconciliation with a layered approach.

Configuration Priority (highest to lowest):
    1. Programmatic (passed to ReconcileConfig())
    2. Environment variables (STORYLINE_* prefix, optionally from .env)
    3. Config file (ReconcileConfig.from_file)
    4. Built-in defaults
"""

from storyline_kg.config.settings import ReconcileConfig

__all__ = ["ReconcileConfig"]
