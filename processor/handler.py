"""Sensor topic handler: payload parsing, persistence, aggregation and triggering."""

import json
import math
from datetime import datetime, timezone
from typing import Any

from config import configure_logging
from processor.aggregator import SensorAggregator
from processor.orchestrator import PipelineOrchestrator
from processor.schemas import Reading, as_utc
from storage.reading_store import BoundedReadingStore, PersistenceError

TIMESTAMP_KEYS = ("timestamp", "observed_at", "observedAt")


def kind_from_topic(topic: str) -> str:
    """The last topic segment names the sensor kind: a/b/temperature → temperature."""
    kind = topic.rstrip("/").rsplit("/", 1)[-1].strip().lower()
    if not kind:
        raise ValueError(f"cannot derive sensor kind from topic {topic!r}")
    return kind


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Epoch values above 1e12 are milliseconds
        seconds = value / 1000.0 if value > 1e12 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _as_number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a sensor value: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"sensor value must be finite, got {value!r}")
    return number


def parse_payload(topic: str, payload: str, kind: str | None = None) -> Reading:
    """
    Accept a JSON object with a `value` field, a bare JSON number, or a bare
    numeric string. Extra object fields are kept in `raw`; a parseable
    timestamp field becomes `observed_at`, otherwise ingestion time is used.
    `kind` overrides the kind derived from the topic's last segment.
    Raises ValueError when no numeric value can be extracted.
    """
    kind = kind or kind_from_topic(topic)
    text = payload.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        value = _as_number(data["value"] if "value" in data else text)
        fields: dict[str, Any] = {"kind": kind, "value": value}
        raw = {k: v for k, v in data.items() if k != "value"}
        for key in TIMESTAMP_KEYS:
            observed_at = _parse_timestamp(raw.get(key))
            if observed_at is not None:
                fields["observed_at"] = observed_at
                del raw[key]
                break
        fields["raw"] = raw
        return Reading(**fields)

    if isinstance(data, (int, float)):
        return Reading(kind=kind, value=_as_number(data))

    return Reading(kind=kind, value=_as_number(text))


class SensorMessageHandler:
    """
    MessageHandler for the sensor topics.

    Topics listed in `topic_kinds` map straight to a sensor kind; any other
    topic falls back to its last segment.

    A store failure is logged and does not stop aggregation; the aggregate
    is the source of truth for triggering, the log is best-effort history.
    """

    def __init__(
        self,
        store: BoundedReadingStore,
        aggregator: SensorAggregator,
        orchestrator: PipelineOrchestrator,
        topic_kinds: dict[str, str] | None = None,
        log_level: str | None = None,
    ):
        self.store = store
        self.topic_kinds = dict(topic_kinds or {})
        self.aggregator = aggregator
        self.orchestrator = orchestrator
        self.readings_received = 0
        self.readings_rejected = 0
        self.log = configure_logging("sensor-handler", log_level)

    async def handle(self, topic: str, payload: str) -> None:
        try:
            reading = parse_payload(topic, payload, kind=self.topic_kinds.get(topic))
        except (ValueError, TypeError) as e:
            self.readings_rejected += 1
            self.log.warning("sensor_payload_rejected", topic=topic, payload=payload[:200], error=str(e))
            return

        self.readings_received += 1
        self.log.info("sensor_reading_received", kind=reading.kind, value=reading.value)

        try:
            await self.store.append(reading)
        except PersistenceError as e:
            self.log.error("reading_not_persisted", kind=reading.kind, error=str(e))

        decision = self.aggregator.ingest(reading)
        if decision.triggered:
            await self.orchestrator.trigger(decision.snapshot)
