"""
ReconcileConfig - Configuration Management

Sensible defaults with full override capability.

Example:
    >>> # Use defaults (reads from environment)
    >>> orchestrator = ReconciliationOrchestrator()

    >>> # Explicit configuration
    >>> config = ReconcileConfig(dedup_merge_threshold=0.8, strict_validation=True)
    >>> orchestrator = ReconciliationOrchestrator(config=config)

    >>> # From config file
    >>> config = ReconcileConfig.from_file("./storyline.toml")

Environment Variables:
    STORYLINE_DEDUP_MERGE_THRESHOLD - Heuristic merge threshold for the middle band
    STORYLINE_ARBITRATION_TIMEOUT - Seconds before an arbitration call is abandoned
    STORYLINE_ARBITRATION_RETRIES - Attempts per arbitration call
    STORYLINE_INGESTION_CONCURRENCY - Max batches ingested concurrently
    STORYLINE_STRICT_VALIDATION - "1"/"true" to reject unknown fields
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ReconcileConfig:
    """Configuration for storyline reconciliation."""

    # === Arbitration ===

    arbitration_timeout: float = 20.0
    """Seconds before an arbitration call counts as a provider failure"""

    arbitration_retries: int = 2
    """Attempts per arbitration call (1 = no retry)"""

    arbitration_retry_wait: float = 0.5
    """Base backoff in seconds between arbitration attempts"""

    arbitration_max_tokens: int = 256
    """Token budget for arbitration answers"""

    arbitration_concurrency: int = 4
    """Max concurrent arbitration calls within one merge pass"""

    # === Ingestion ===

    ingestion_concurrency: int = 8
    """Max batches ingested concurrently"""

    strict_validation: bool = False
    """Reject unknown fields and raise instead of dropping invalid items"""

    min_description_length: int = 10
    """Descriptions shorter than this produce a warning"""

    degraded_confidence_factor: float = 0.5
    """Multiplier applied to batch confidence when items were dropped"""

    # === Deduplication ===

    dedup_candidate_floor: float = 0.4
    """Pairs below this are distinct"""

    dedup_auto_merge_floor: float = 0.9
    """Pairs at or above this merge without arbitration"""

    dedup_merge_threshold: float = 0.75
    """Heuristic threshold for the middle band when no provider answers"""

    dedup_verify_threshold: float = 0.8
    """Minimum LLM confidence to accept a middle-band merge"""

    dedup_max_passes: int = 5
    """Merge passes before giving up on reaching a fixpoint"""

    character_proximity_window: int = 50
    """Pages over which character proximity decays to zero"""

    event_proximity_window: int = 10
    """Pages over which event proximity decays to zero"""

    # === Contradictions ===

    contradiction_page_tolerance: int = 5
    """Page difference above which two reports of an event contradict"""

    contradiction_confidence_gap: float = 0.3
    """Confidence gap above which the more confident source wins"""

    # === Coverage ===

    overlap_page_window: int = 2
    """Max page distance for two overlap events to be the same event"""

    overlap_title_threshold: float = 0.7
    """Min title similarity for two overlap events to be the same event"""

    gap_penalty: float = 0.05
    """Confidence penalty per uncovered gap"""

    timeline_min_gap: int = 10
    """Smallest page distance reported as a timeline gap"""

    timeline_max_gap: int = 100
    """Largest page distance reported as a timeline gap"""

    # === Causal ===

    causal_lookahead: int = 5
    """How many following events are considered for causal links"""

    causal_strength_threshold: float = 0.3
    """Minimum strength for a causal link"""

    ordering_tolerance: int = 2
    """Position difference tolerated before an ordering discrepancy is reported"""

    def __init__(self, **kwargs: Any) -> None:
        """
        Initialize configuration.

        Args:
            **kwargs: Override any configuration option
        """
        # Load from environment first
        self._load_from_env()

        # Apply explicit overrides
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                raise ValueError(f"Unknown configuration option: {key}")

    def _load_from_env(self, dotenv: bool = False) -> None:
        """Load configuration from environment variables."""
        import os

        if dotenv:
            from dotenv import load_dotenv

            load_dotenv()

        if threshold := os.getenv("STORYLINE_DEDUP_MERGE_THRESHOLD"):
            self.dedup_merge_threshold = float(threshold)
        if timeout := os.getenv("STORYLINE_ARBITRATION_TIMEOUT"):
            self.arbitration_timeout = float(timeout)
        if retries := os.getenv("STORYLINE_ARBITRATION_RETRIES"):
            self.arbitration_retries = int(retries)
        if concurrency := os.getenv("STORYLINE_INGESTION_CONCURRENCY"):
            self.ingestion_concurrency = int(concurrency)
        if strict := os.getenv("STORYLINE_STRICT_VALIDATION"):
            self.strict_validation = _parse_bool(strict)

    @classmethod
    def from_file(cls, path: str | Path) -> "ReconcileConfig":
        """
        Load configuration from TOML file.

        Nested sections are flattened with the section prefix.

        Example TOML:
            [arbitration]
            timeout = 10.0
            retries = 3

            [dedup]
            merge_threshold = 0.8

            [ingestion]
            strict_validation = true

        Args:
            path: Path to TOML configuration file

        Returns:
            ReconcileConfig instance with values from file

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If the file names an unknown option
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        data = _load_toml(path)

        flat_config: dict[str, Any] = {}

        # Map section names to config key prefixes
        section_mapping = {
            "arbitration": "arbitration_",
            "ingestion": "",
            "dedup": "dedup_",
            "contradictions": "contradiction_",
            "coverage": "",
            "causal": "",
        }

        for section, prefix in section_mapping.items():
            if section in data:
                for key, value in data[section].items():
                    flat_config[f"{prefix}{key}"] = value

        # Also support flat top-level keys
        for key, value in data.items():
            if key not in section_mapping and not isinstance(value, dict):
                flat_config[key] = value

        return cls(**flat_config)

    @classmethod
    def from_env(cls, *, dotenv: bool = False) -> "ReconcileConfig":
        """Load configuration from environment variables (optionally a .env file)."""
        config = cls()
        if dotenv:
            config._load_from_env(dotenv=True)
        return config

    def to_file(self, path: str | Path) -> None:
        """
        Save configuration to TOML file.

        Args:
            path: Path to write TOML configuration file
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        sections: dict[str, dict[str, str | int | float | bool | None]] = {
            "arbitration": {
                "timeout": self.arbitration_timeout,
                "retries": self.arbitration_retries,
                "retry_wait": self.arbitration_retry_wait,
                "max_tokens": self.arbitration_max_tokens,
                "concurrency": self.arbitration_concurrency,
            },
            "ingestion": {
                "ingestion_concurrency": self.ingestion_concurrency,
                "strict_validation": self.strict_validation,
                "min_description_length": self.min_description_length,
                "degraded_confidence_factor": self.degraded_confidence_factor,
            },
            "dedup": {
                "candidate_floor": self.dedup_candidate_floor,
                "auto_merge_floor": self.dedup_auto_merge_floor,
                "merge_threshold": self.dedup_merge_threshold,
                "verify_threshold": self.dedup_verify_threshold,
                "max_passes": self.dedup_max_passes,
            },
            "contradictions": {
                "page_tolerance": self.contradiction_page_tolerance,
                "confidence_gap": self.contradiction_confidence_gap,
            },
            "coverage": {
                "overlap_page_window": self.overlap_page_window,
                "overlap_title_threshold": self.overlap_title_threshold,
                "gap_penalty": self.gap_penalty,
                "timeline_min_gap": self.timeline_min_gap,
                "timeline_max_gap": self.timeline_max_gap,
            },
            "causal": {
                "causal_lookahead": self.causal_lookahead,
                "causal_strength_threshold": self.causal_strength_threshold,
                "ordering_tolerance": self.ordering_tolerance,
                "character_proximity_window": self.character_proximity_window,
                "event_proximity_window": self.event_proximity_window,
            },
        }

        lines = ["# storyline-kg configuration", ""]

        for section_name, section_values in sections.items():
            lines.append(f"[{section_name}]")
            for key, value in section_values.items():
                if isinstance(value, str):
                    lines.append(f'{key} = "{value}"')
                elif isinstance(value, bool):
                    lines.append(f"{key} = {str(value).lower()}")
                elif isinstance(value, (int, float)):
                    lines.append(f"{key} = {value}")
            lines.append("")

        path.write_text("\n".join(lines))

    def with_overrides(self, **kwargs: Any) -> "ReconcileConfig":
        """Return new config with specified overrides."""
        new_config = ReconcileConfig.__new__(ReconcileConfig)
        for key in dir(self):
            if not key.startswith("_") and not callable(getattr(self, key)):
                setattr(new_config, key, getattr(self, key))
        for key, value in kwargs.items():
            if not hasattr(new_config, key):
                raise ValueError(f"Unknown configuration option: {key}")
            setattr(new_config, key, value)
        return new_config
