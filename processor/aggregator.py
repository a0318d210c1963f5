"""Latest-reading aggregation: last-write-wins per sensor kind with a readiness test."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from processor.schemas import Reading, SensorKind

DEFAULT_REQUIRED_KINDS = (SensorKind.TEMPERATURE.value, SensorKind.HUMIDITY.value)


@dataclass(frozen=True)
class LatestValue:
    value: float
    observed_at: datetime


@dataclass
class AggregateState:
    latest_by_kind: dict[str, LatestValue] = field(default_factory=dict)


@dataclass(frozen=True)
class TriggerDecision:
    triggered: bool
    snapshot: dict[str, float] | None = None


class SensorAggregator:
    """
    Holds the latest value per sensor kind and decides trigger readiness.

    Readiness is level-triggered: every ingestion of a required kind
    re-evaluates the subset test, so a fresh temperature re-triggers even
    when the humidity value is much older. Values are never cleared.
    """

    def __init__(self, required_kinds: Iterable[str] = DEFAULT_REQUIRED_KINDS, state: AggregateState | None = None):
        self.required_kinds = frozenset(str(k).strip().lower() for k in required_kinds)
        if not self.required_kinds:
            raise ValueError("at least one required kind is needed")
        self.state = state if state is not None else AggregateState()

    def ingest(self, reading: Reading) -> TriggerDecision:
        """Record the reading, then evaluate readiness if its kind is required."""
        self.state.latest_by_kind[reading.kind] = LatestValue(reading.value, reading.observed_at)

        if reading.kind not in self.required_kinds or not self.ready:
            return TriggerDecision(triggered=False)
        return TriggerDecision(triggered=True, snapshot=self.required_snapshot())

    @property
    def ready(self) -> bool:
        return self.required_kinds <= self.state.latest_by_kind.keys()

    def required_snapshot(self) -> dict[str, float]:
        return {
            kind: self.state.latest_by_kind[kind].value
            for kind in sorted(self.required_kinds)
            if kind in self.state.latest_by_kind
        }

    def latest(self, kind: str) -> LatestValue | None:
        return self.state.latest_by_kind.get(kind.strip().lower())

    def snapshot(self) -> dict[str, dict]:
        """Every known kind with its latest value, for status reporting."""
        return {
            kind: {"value": lv.value, "observed_at": lv.observed_at.isoformat()}
            for kind, lv in self.state.latest_by_kind.items()
        }
