"""Shared test fixtures."""

from types import SimpleNamespace

import paho.mqtt.client as mqtt
import pytest

from broker.connection import ConnectionManager
from broker.errors import PublishError
from config import Settings
from processor.schemas import Priority


@pytest.fixture
def settings(tmp_path):
    """Test settings with a localhost broker and a throwaway data file."""
    return Settings(
        _env_file=None,
        broker_url="mqtt://localhost:1883",
        openai_api_key="test-key",
        data_file_path=str(tmp_path / "sensorData.json"),
        api_enabled=False,
    )


class RecordingPublisher:
    """Collects (topic, message) pairs; topics in `failing` raise PublishError."""

    def __init__(self, failing: tuple[str, ...] = ()):
        self.published: list[tuple[str, object]] = []
        self.failing = set(failing)

    async def publish(self, topic, message, *, qos=0, retain=False):
        if topic in self.failing:
            raise PublishError(f"publish to {topic} failed")
        self.published.append((topic, message))

    def on(self, topic: str) -> list:
        return [m for t, m in self.published if t == topic]


class StubText:
    """TextGenerator returning canned answers; any value that is an Exception is raised."""

    def __init__(self, quote="Calm air, clear mind.", summary="Invoice due Friday.", priority=Priority.NORMAL):
        self.quote = quote
        self.summary = summary
        self.priority = priority
        self.calls: list[str] = []

    @staticmethod
    def _answer(value):
        if isinstance(value, Exception):
            raise value
        return value

    async def generate_quote(self, values):
        self.calls.append("quote")
        return self._answer(self.quote)

    async def summarize_messages(self, messages):
        self.calls.append("summary")
        return self._answer(self.summary)

    async def classify_priority(self, values, messages):
        self.calls.append("priority")
        return self._answer(self.priority)


class StubMailbox:
    def __init__(self, enabled=True, messages=None, error: Exception | None = None):
        self.enabled = enabled
        self.messages = messages if messages is not None else []
        self.error = error
        self.fetches = 0

    def is_enabled(self):
        return self.enabled

    async def fetch_unread(self, max_count):
        self.fetches += 1
        if self.error is not None:
            raise self.error
        return self.messages[:max_count]


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def text():
    return StubText()


@pytest.fixture
def mailbox():
    return StubMailbox()


class FakeMqttClient:
    """Records calls; loop_start completes, refuses or (silent) never answers the handshake."""

    def __init__(self, client_id: str, refuse: bool = False, silent: bool = False):
        self.client_id = client_id
        self.refuse = refuse
        self.silent = silent
        self.subscriptions: list[str] = []
        self.published: list[tuple[str, object]] = []
        self.publish_rc = mqtt.MQTT_ERR_SUCCESS
        self.subscribe_rc = mqtt.MQTT_ERR_SUCCESS
        self.disconnects = 0
        self.loop_running = False

    def username_pw_set(self, username, password=None):
        self.credentials = (username, password)

    def tls_set(self):
        self.tls = True

    def reconnect_delay_set(self, min_delay, max_delay):
        self.reconnect_delay = (min_delay, max_delay)

    def connect_async(self, host, port, keepalive=60):
        self.target = (host, port, keepalive)

    def loop_start(self):
        self.loop_running = True
        if self.silent:
            return
        if self.refuse:
            self.on_connect_fail(self, None)
        else:
            self.on_connect(self, None, {}, 0, None)

    def loop_stop(self):
        self.loop_running = False

    def disconnect(self):
        self.disconnects += 1

    def subscribe(self, topic, qos=0):
        if self.subscribe_rc == mqtt.MQTT_ERR_SUCCESS:
            self.subscriptions.append(topic)
        return self.subscribe_rc, 1

    def publish(self, topic, payload, qos=0, retain=False):
        if "#" in topic or "+" in topic:
            raise ValueError("Publish topic cannot contain wildcards.")
        if self.publish_rc == mqtt.MQTT_ERR_SUCCESS:
            self.published.append((topic, payload))
        return SimpleNamespace(rc=self.publish_rc)

    # helpers driving the paho callbacks the way the network thread would
    def deliver(self, topic: str, payload: str):
        self.on_message(self, None, SimpleNamespace(topic=topic, payload=payload.encode()))

    def drop(self):
        self.on_disconnect(self, None, None, 7, None)

    def reconnect(self):
        self.on_connect(self, None, {}, 0, None)


@pytest.fixture
def make_connection():
    """Build a ConnectionManager whose paho clients are FakeMqttClients.

    Returns (manager, clients); `clients` fills up as the manager connects.
    """

    def build(refuse: bool = False, url: str = "mqtt://broker.local:1883", silent: bool = False):
        clients: list[FakeMqttClient] = []

        def factory(client_id):
            client = FakeMqttClient(client_id, refuse=refuse, silent=silent)
            clients.append(client)
            return client

        return ConnectionManager(url, client_factory=factory), clients

    return build
