"""Sensor simulator: publishes synthetic temperature and humidity readings over MQTT."""

import argparse
import asyncio
import math
import random
import signal
import sys
import time
from dataclasses import dataclass, field

from broker.connection import ConnectionManager
from broker.errors import TransportError
from config import ConfigurationError, Settings, configure_logging, load_settings


@dataclass
class SimulatedSensor:
    kind: str
    topic: str
    baseline: float
    amplitude: float
    noise_std: float
    lower: float
    upper: float
    period_sec: float = 300.0
    _start_time: float = field(default_factory=time.time)

    def simulate_value(self, now: float | None = None) -> float:
        """Baseline plus a slow sinusoidal cycle and gaussian noise, clamped to range."""
        elapsed = (now if now is not None else time.time()) - self._start_time
        value = self.baseline
        value += self.amplitude * math.sin(2 * math.pi * elapsed / self.period_sec)
        value += random.gauss(0.0, self.noise_std)
        return round(min(self.upper, max(self.lower, value)), 2)

    def payload(self, now: float | None = None) -> dict:
        now = now if now is not None else time.time()
        return {"value": self.simulate_value(now), "timestamp": int(now * 1000), "source": "simulator"}


def build_sensors(settings: Settings) -> list[SimulatedSensor]:
    return [
        SimulatedSensor("temperature", settings.topic_temperature, baseline=22.0, amplitude=3.0,
                        noise_std=0.4, lower=-10.0, upper=50.0),
        SimulatedSensor("humidity", settings.topic_humidity, baseline=50.0, amplitude=10.0,
                        noise_std=1.5, lower=0.0, upper=100.0),
    ]


class SensorSimulator:
    def __init__(self, settings: Settings, interval_sec: float, connection: ConnectionManager | None = None):
        self.settings = settings
        self.interval_sec = interval_sec
        self.log = configure_logging("sensor-simulator", settings.log_level)
        self.sensors = build_sensors(settings)
        self._connection = connection or ConnectionManager.from_settings(
            settings.model_copy(update={"mqtt_client_id": f"{settings.mqtt_client_id}-simulator"})
        )
        self._sent_count = 0
        self._error_count = 0

    async def publish_once(self):
        for sensor in self.sensors:
            payload = sensor.payload()
            try:
                await self._connection.publish(sensor.topic, payload)
                self._sent_count += 1
            except TransportError as e:
                self._error_count += 1
                self.log.error("simulated_publish_failed", topic=sensor.topic, error=str(e))

    async def run(self, stop: asyncio.Event):
        await self._connection.connect()
        self.log.info("simulator_started", sensors=len(self.sensors), interval_sec=self.interval_sec)
        try:
            while not stop.is_set():
                await self.publish_once()
                # Small jitter avoids lockstep with other publishers
                delay = self.interval_sec * (0.8 + random.random() * 0.4)
                try:
                    await asyncio.wait_for(stop.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._connection.disconnect()
            self.log.info("simulator_stopped", total_sent=self._sent_count, total_errors=self._error_count)


async def _run(settings: Settings, interval_sec: float) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    simulator = SensorSimulator(settings, interval_sec)
    try:
        await simulator.run(stop)
    except TransportError as e:
        simulator.log.error("simulator_connect_failed", error=str(e))
        return 1
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Publish simulated AuraLink sensor readings")
    parser.add_argument("--interval", type=float, default=10.0, help="Seconds between reading sets")
    args = parser.parse_args()

    log = configure_logging("sensor-simulator")
    try:
        settings = load_settings(required=("broker_url",))
    except ConfigurationError as e:
        log.error("configuration_invalid", error=str(e))
        return 1
    return asyncio.run(_run(settings, args.interval))


if __name__ == "__main__":
    sys.exit(main())
