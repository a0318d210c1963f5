"""AuraLink service: wires broker, store, aggregator, enrichment and the HTTP surface."""

import asyncio
import signal
import sys
import time

import uvicorn

from broker.connection import ConnectionManager
from broker.errors import TransportError
from config import ConfigurationError, Settings, configure_logging, load_settings
from enrichment.base import Mailbox, TextGenerator
from enrichment.mailbox import GmailMailbox
from enrichment.text_generation import OpenAITextGenerator
from processor.aggregator import SensorAggregator
from processor.handler import SensorMessageHandler
from processor.orchestrator import DisplayTopics, PipelineOrchestrator
from storage.reading_store import BoundedReadingStore, PersistenceError

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


class AuraLinkService:
    """
    Wires together: MQTT → SensorMessageHandler → store + aggregator →
    PipelineOrchestrator → MQTT display topics.
    Collaborators are injectable so tests can swap the broker and providers.
    """

    def __init__(
        self,
        settings: Settings,
        connection: ConnectionManager | None = None,
        text: TextGenerator | None = None,
        mailbox: Mailbox | None = None,
    ):
        self.settings = settings
        self.log = configure_logging("auralink", settings.log_level)
        self.started_at = time.time()

        self.connection = connection or ConnectionManager.from_settings(settings)
        self.text = text or OpenAITextGenerator.from_settings(settings)
        self.mailbox = mailbox or GmailMailbox.from_settings(settings)

        self.store = BoundedReadingStore(
            settings.data_file_path,
            max_readings=settings.store_max_readings,
            log_level=settings.log_level,
        )
        self.aggregator = SensorAggregator(settings.required_kinds)
        self.orchestrator = PipelineOrchestrator(
            publisher=self.connection,
            text=self.text,
            mailbox=self.mailbox,
            topics=DisplayTopics.from_settings(settings),
            quote_max_chars=settings.quote_max_chars,
            email_fetch_count=settings.email_fetch_count,
            publish_qos=settings.mqtt_publish_qos,
            log_level=settings.log_level,
        )
        self.handler = SensorMessageHandler(
            self.store,
            self.aggregator,
            self.orchestrator,
            topic_kinds=settings.topic_kinds,
            log_level=settings.log_level,
        )

    async def start(self):
        """Open the store, connect, subscribe. TransportError aborts startup."""
        self.log.info("auralink_starting", broker=self.connection.host, topics=self.settings.sensor_topics)
        try:
            await self.store.open()
        except PersistenceError as e:
            self.log.error("reading_store_unavailable", error=str(e))

        await self.connection.connect()
        for topic in self.settings.sensor_topics:
            await self.connection.subscribe(topic, self.handler)
        self.log.info("auralink_started", subscribed=self.connection.topics)

    async def stop(self):
        await self.connection.disconnect()
        self.log.info("auralink_stopped", readings_stored=len(self.store), pipeline_runs=self.orchestrator.stats.runs)


def _api_server(service: AuraLinkService) -> uvicorn.Server:
    from api.main import create_app

    config = uvicorn.Config(
        create_app(service),
        host=service.settings.api_host,
        port=service.settings.api_port,
        log_level=service.settings.log_level.lower(),
        lifespan="on",
    )
    return uvicorn.Server(config)


async def serve(settings: Settings, service: AuraLinkService | None = None) -> int:
    """Run until SIGINT/SIGTERM, then disconnect and return the exit code."""
    service = service or AuraLinkService(settings)
    log = service.log
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(stop.set))

    try:
        await service.start()
    except TransportError as e:
        log.error("auralink_startup_failed", error=str(e))
        await service.stop()
        return EXIT_STARTUP_FAILURE

    waiters = {asyncio.create_task(stop.wait(), name="shutdown-signal")}
    server = None
    if settings.api_enabled:
        server = _api_server(service)
        waiters.add(asyncio.create_task(server.serve(), name="http-api"))

    # uvicorn may consume the signal itself, so either task finishing means shutdown
    _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    log.info("shutdown_signal")
    if server is not None:
        server.should_exit = True
    for task in pending:
        if task.get_name() == "shutdown-signal":
            task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    await service.stop()
    return EXIT_OK


def main() -> int:
    log = configure_logging("auralink")
    try:
        settings = load_settings()
        configure_logging("auralink", settings.log_level)
        service = AuraLinkService(settings)
    except (ConfigurationError, ValueError) as e:
        log.error("configuration_invalid", error=str(e))
        return EXIT_STARTUP_FAILURE
    return asyncio.run(serve(settings, service))


if __name__ == "__main__":
    sys.exit(main())
