"""Tests for latest-value aggregation and trigger readiness."""

import pytest

from processor.aggregator import AggregateState, SensorAggregator
from processor.schemas import Reading


def _reading(kind: str, value: float) -> Reading:
    return Reading(kind=kind, value=value)


class TestSensorAggregator:
    def test_single_kind_does_not_trigger(self):
        agg = SensorAggregator()
        decision = agg.ingest(_reading("temperature", 22.5))
        assert not decision.triggered
        assert decision.snapshot is None

    def test_triggers_once_all_required_present(self):
        agg = SensorAggregator()
        agg.ingest(_reading("temperature", 22.5))
        decision = agg.ingest(_reading("humidity", 45.2))
        assert decision.triggered
        assert decision.snapshot == {"humidity": 45.2, "temperature": 22.5}

    def test_last_write_wins(self):
        agg = SensorAggregator()
        agg.ingest(_reading("temperature", 20.0))
        agg.ingest(_reading("humidity", 50.0))
        decision = agg.ingest(_reading("temperature", 24.0))
        assert decision.triggered
        assert decision.snapshot["temperature"] == 24.0
        assert agg.latest("temperature").value == 24.0

    def test_every_required_update_retriggers(self):
        agg = SensorAggregator()
        agg.ingest(_reading("temperature", 22.0))
        triggers = [agg.ingest(_reading("humidity", h)).triggered for h in (40.0, 41.0, 42.0)]
        assert triggers == [True, True, True]

    def test_non_required_kind_never_triggers(self):
        agg = SensorAggregator()
        agg.ingest(_reading("temperature", 22.0))
        agg.ingest(_reading("humidity", 45.0))
        decision = agg.ingest(_reading("pressure", 1013.0))
        assert not decision.triggered
        assert agg.latest("pressure").value == 1013.0

    def test_snapshot_only_contains_required_kinds(self):
        agg = SensorAggregator(required_kinds=["temperature"])
        agg.ingest(_reading("pressure", 1013.0))
        decision = agg.ingest(_reading("temperature", 19.0))
        assert decision.snapshot == {"temperature": 19.0}

    def test_status_snapshot_lists_every_kind(self):
        agg = SensorAggregator()
        agg.ingest(_reading("pressure", 1013.0))
        snap = agg.snapshot()
        assert snap["pressure"]["value"] == 1013.0
        assert "observed_at" in snap["pressure"]

    def test_ready_property(self):
        agg = SensorAggregator()
        assert not agg.ready
        agg.ingest(_reading("temperature", 22.0))
        agg.ingest(_reading("humidity", 45.0))
        assert agg.ready

    def test_injected_state_is_used(self):
        state = AggregateState()
        agg = SensorAggregator(state=state)
        agg.ingest(_reading("temperature", 22.0))
        assert "temperature" in state.latest_by_kind

    def test_empty_required_kinds_rejected(self):
        with pytest.raises(ValueError):
            SensorAggregator(required_kinds=[])
