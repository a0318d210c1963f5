"""MQTT connection lifecycle, topic dispatch and publish gate on top of paho-mqtt."""

import asyncio
import json
from enum import Enum
from typing import Any, Callable
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from broker.errors import NotConnectedError, PublishError, TransportError
from broker.events import (
    BrokerEvent,
    ConnectFailed,
    Connected,
    Message,
    MessageHandler,
    Offline,
    as_handler,
)
from config import Settings, configure_logging

DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883}


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    OFFLINE = "offline"


def encode_message(message: Any) -> str | bytes:
    """Strings and bytes pass through; anything else becomes JSON."""
    if isinstance(message, Enum):
        message = message.value
    if isinstance(message, (str, bytes, bytearray)):
        return message
    return json.dumps(message, default=str)


def _is_failure(reason_code: Any) -> bool:
    flag = getattr(reason_code, "is_failure", None)
    if flag is not None:
        return bool(flag)
    return reason_code != 0


class ConnectionManager:
    """
    Owns the broker session and isolates the rest of the service from it.

    paho callbacks fire on paho's network thread. They never touch state;
    they push typed events onto one asyncio queue, and a single dispatch
    task applies status transitions and routes messages on the event loop.

    Status: disconnected → connecting → connected ⇄ offline → disconnected.
    Handler registrations survive reconnects; after a reconnect the manager
    re-issues broker subscriptions for every registered topic itself.
    """

    def __init__(
        self,
        broker_url: str,
        client_id: str = "auralink-backend",
        username: str = "",
        password: str = "",
        keepalive: int = 60,
        reconnect_sec: int = 5,
        subscribe_qos: int = 0,
        client_factory: Callable[[str], Any] | None = None,
        log_level: str | None = None,
    ):
        url = urlparse(broker_url if "://" in broker_url else f"mqtt://{broker_url}")
        if not url.hostname:
            raise ValueError(f"invalid broker url: {broker_url!r}")
        self.scheme = url.scheme or "mqtt"
        self.host = url.hostname
        self.port = url.port or DEFAULT_PORTS.get(self.scheme, 1883)
        self.client_id = client_id
        self._username = username or (url.username or "")
        self._password = password or (url.password or "")
        self.keepalive = keepalive
        self.reconnect_sec = reconnect_sec
        self.subscribe_qos = subscribe_qos
        self._client_factory = client_factory or self._default_client
        self.log = configure_logging("mqtt-connection", log_level)

        self._status = ConnectionStatus.DISCONNECTED
        self._handlers: dict[str, MessageHandler] = {}
        self._client: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._events: asyncio.Queue[BrokerEvent] | None = None
        self._first_connect: asyncio.Future | None = None
        self._dispatcher: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "ConnectionManager":
        return cls(
            settings.broker_url,
            client_id=settings.mqtt_client_id,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            keepalive=settings.mqtt_keepalive_sec,
            reconnect_sec=settings.mqtt_reconnect_sec,
            log_level=settings.log_level,
            **kwargs,
        )

    # ─── State ──────────────────────────────────────────────────────

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def topics(self) -> list[str]:
        return list(self._handlers)

    # ─── Lifecycle ──────────────────────────────────────────────────

    async def connect(self):
        """Resolve on the first successful handshake, raise on the first failure."""
        if self._status is not ConnectionStatus.DISCONNECTED:
            self.log.debug("mqtt_connect_ignored", status=self._status.value)
            return

        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._first_connect = self._loop.create_future()
        self._status = ConnectionStatus.CONNECTING
        self._client = self._build_client()
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="mqtt-dispatch")

        self.log.info("mqtt_connecting", host=self.host, port=self.port, client_id=self.client_id)
        try:
            self._client.connect_async(self.host, self.port, keepalive=self.keepalive)
            self._client.loop_start()
        except (OSError, ValueError) as e:
            self._first_connect.cancel()
            await self._teardown()
            raise TransportError(f"cannot start MQTT session to {self.host}:{self.port}: {e}") from e

        try:
            await self._first_connect
        except TransportError:
            if self._status is not ConnectionStatus.DISCONNECTED:
                await self._teardown()
            raise

    async def disconnect(self):
        """Graceful shutdown. Safe to call any number of times."""
        if self._status is ConnectionStatus.DISCONNECTED:
            return
        self._status = ConnectionStatus.DISCONNECTED
        try:
            self._client.disconnect()
        except Exception as e:
            self.log.warning("mqtt_disconnect_error", error=str(e))
        await self._teardown()
        self.log.info("mqtt_disconnected")

    async def _teardown(self):
        self._status = ConnectionStatus.DISCONNECTED
        if self._first_connect is not None and not self._first_connect.done():
            self._first_connect.set_exception(TransportError("connection closed before the broker accepted it"))
        if self._client is not None:
            await asyncio.to_thread(self._client.loop_stop)
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _default_client(self, client_id: str):
        return mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
            protocol=mqtt.MQTTv311,
        )

    def _build_client(self):
        client = self._client_factory(self.client_id)
        if self._username:
            client.username_pw_set(self._username, self._password or None)
        if self.scheme in ("mqtts", "ssl"):
            client.tls_set()
        client.reconnect_delay_set(min_delay=self.reconnect_sec, max_delay=self.reconnect_sec)
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    # ─── paho callbacks (network thread) ────────────────────────────

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if _is_failure(reason_code):
            self._emit(ConnectFailed(str(reason_code)))
        else:
            self._emit(Connected())

    def _on_connect_fail(self, client, userdata):
        self._emit(ConnectFailed("connection attempt failed"))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        self._emit(Offline(str(reason_code)))

    def _on_message(self, client, userdata, message):
        self._emit(Message(message.topic, bytes(message.payload)))

    def _emit(self, event: BrokerEvent):
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._events.put_nowait, event)

    # ─── Dispatch (event loop) ──────────────────────────────────────

    async def _dispatch_loop(self):
        while True:
            event = await self._events.get()
            if isinstance(event, Message):
                self._dispatch(event)
            elif isinstance(event, Connected):
                self._handle_connected()
            elif isinstance(event, Offline):
                self._handle_offline(event)
            elif isinstance(event, ConnectFailed):
                self._handle_connect_failed(event)

    def _handle_connected(self):
        if self._status is ConnectionStatus.DISCONNECTED:
            return
        reconnect = self._status is ConnectionStatus.OFFLINE
        self._status = ConnectionStatus.CONNECTED
        if not self._first_connect.done():
            self._first_connect.set_result(None)
            self.log.info("mqtt_connected", host=self.host, port=self.port)
            return
        if reconnect:
            self.log.info("mqtt_reconnected", topics=len(self._handlers))
            for topic in self._handlers:
                result, _ = self._client.subscribe(topic, qos=self.subscribe_qos)
                if result != mqtt.MQTT_ERR_SUCCESS:
                    self.log.error("mqtt_resubscribe_failed", topic=topic, error=mqtt.error_string(result))

    def _handle_offline(self, event: Offline):
        if self._status is ConnectionStatus.CONNECTED:
            self._status = ConnectionStatus.OFFLINE
            self.log.warning("mqtt_offline", reason=event.reason)
            self.log.info("mqtt_reconnecting", retry_in_sec=self.reconnect_sec)

    def _handle_connect_failed(self, event: ConnectFailed):
        if not self._first_connect.done():
            self.log.error("mqtt_connect_failed", host=self.host, port=self.port, reason=event.reason)
            self._first_connect.set_exception(
                TransportError(f"cannot connect to {self.host}:{self.port}: {event.reason}")
            )
        elif self._status is not ConnectionStatus.DISCONNECTED:
            self.log.warning("mqtt_reconnect_attempt_failed", reason=event.reason, retry_in_sec=self.reconnect_sec)

    def _dispatch(self, event: Message):
        handler = self._handlers.get(event.topic)
        if handler is None:
            self.log.debug("mqtt_message_unrouted", topic=event.topic)
            return
        task = asyncio.create_task(self._invoke(handler, event.topic, event.text()))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _invoke(self, handler: MessageHandler, topic: str, payload: str):
        self.log.debug("mqtt_message_received", topic=topic, payload=payload)
        try:
            await handler.handle(topic, payload)
        except Exception as e:
            self.log.error("message_handler_error", topic=topic, error=str(e), exc_info=True)

    # ─── Subscribe / publish ────────────────────────────────────────

    def _require_connected(self, action: str):
        if not self.connected:
            raise NotConnectedError(f"cannot {action}: MQTT client not connected ({self._status.value})")

    async def subscribe(self, topic: str, handler: MessageHandler | Callable):
        """Subscribe and register the topic's handler, replacing any earlier one."""
        self._require_connected("subscribe")
        handler = as_handler(handler)
        result, _ = self._client.subscribe(topic, qos=self.subscribe_qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self.log.error("mqtt_subscribe_failed", topic=topic, error=mqtt.error_string(result))
            raise TransportError(f"subscribe to {topic} failed: {mqtt.error_string(result)}")
        self._handlers[topic] = handler
        self.log.info("mqtt_subscribed", topic=topic)

    async def publish(self, topic: str, message: Any, *, qos: int = 0, retain: bool = False):
        self._require_connected("publish")
        payload = encode_message(message)
        try:
            info = self._client.publish(topic, payload, qos=qos, retain=retain)
        except ValueError as e:
            # paho rejects wildcard topics and oversized payloads before sending
            self.log.error("mqtt_publish_rejected", topic=topic, error=str(e))
            raise PublishError(f"publish to {topic} rejected: {e}") from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self.log.error("mqtt_publish_failed", topic=topic, error=mqtt.error_string(info.rc))
            raise PublishError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        self.log.debug("mqtt_published", topic=topic, size=len(payload))
