"""
Request-scoped arbitration telemetry helpers.

Telemetry is enabled by attaching an ArbitrationCollector via contextvars.
The arbitration client reads the active collector and stage and records
each call automatically. The stage label is also the default stage for
provenance entries.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar

from pydantic import BaseModel, Field

_COLLECTOR: ContextVar[ArbitrationCollector | None] = ContextVar(
    "storyline_arbitration_collector",
    default=None,
)
_STAGE: ContextVar[str] = ContextVar("storyline_stage", default="overview")


class ArbitrationCall(BaseModel):
    """One arbitration call as seen by the client."""

    stage: str
    model: str
    outcome: str
    """One of: ok, timeout, error"""
    latency_ms: int = 0
    attempts: int = 1


class StageArbitrationSummary(BaseModel):
    stage: str
    calls: int = 0
    failures: int = 0
    total_latency_ms: int = 0


class ArbitrationSummary(BaseModel):
    total_calls: int = 0
    total_failures: int = 0
    by_stage: list[StageArbitrationSummary] = Field(default_factory=list)


class ArbitrationCollector:
    """Accumulates arbitration calls for one reconciliation run."""

    def __init__(self) -> None:
        self._calls: list[ArbitrationCall] = []

    def add(self, call: ArbitrationCall) -> None:
        """Add one call record."""
        self._calls.append(call)

    @property
    def calls(self) -> list[ArbitrationCall]:
        return list(self._calls)

    def summary(self) -> ArbitrationSummary:
        """Build aggregate report across all calls."""
        by_stage: dict[str, StageArbitrationSummary] = {}
        failures = 0
        for call in self._calls:
            stage = by_stage.setdefault(call.stage, StageArbitrationSummary(stage=call.stage))
            stage.calls += 1
            stage.total_latency_ms += call.latency_ms
            if call.outcome != "ok":
                stage.failures += 1
                failures += 1

        return ArbitrationSummary(
            total_calls=len(self._calls),
            total_failures=failures,
            by_stage=sorted(by_stage.values(), key=lambda s: s.calls, reverse=True),
        )


@contextmanager
def telemetry_collector(collector: ArbitrationCollector | None):
    """Set active collector for arbitration instrumentation."""
    token = _COLLECTOR.set(collector)
    try:
        yield
    finally:
        _COLLECTOR.reset(token)


@contextmanager
def telemetry_stage(stage: str):
    """Set pipeline stage label for arbitration and provenance."""
    token = _STAGE.set(stage)
    try:
        yield
    finally:
        _STAGE.reset(token)


def current_stage() -> str:
    """Return currently active stage label."""
    return _STAGE.get()


def record_call(call: ArbitrationCall) -> None:
    """Add call to active collector if telemetry is enabled."""
    collector = _COLLECTOR.get()
    if collector is not None:
        collector.add(call)
