"""Enrichment fan-out with isolated failure domains and fallback publication."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Protocol

from broker.errors import TransportError
from config import Settings, configure_logging
from enrichment.base import InvalidResponseError, Mailbox, TextGenerator
from processor.classification import classify_environment
from processor.schemas import (
    EMAIL_DISABLED,
    EMAIL_ERROR,
    EMAIL_NONE,
    QUOTE_ERROR,
    QUOTE_FALLBACK,
    FallbackReason,
    MailMessage,
    Outcome,
    PipelineResult,
    Priority,
    email_unsummarized,
)


class Publisher(Protocol):
    async def publish(self, topic: str, message: Any, *, qos: int = 0, retain: bool = False) -> None: ...


@dataclass(frozen=True)
class DisplayTopics:
    quote: str = "auralink/display/quote"
    email: str = "auralink/display/email"
    priority: str = "auralink/display/priority"

    @classmethod
    def from_settings(cls, settings: Settings) -> "DisplayTopics":
        return cls(quote=settings.topic_quote, email=settings.topic_email, priority=settings.topic_priority)


@dataclass
class PipelineStats:
    runs: int = 0
    failed_runs: int = 0
    coalesced_triggers: int = 0
    publish_failures: int = 0
    fallbacks: Counter = field(default_factory=Counter)


def _reason(error: Exception) -> FallbackReason:
    # ValueError covers provider answers that are not a valid Priority
    if isinstance(error, (InvalidResponseError, ValueError)):
        return FallbackReason.INVALID_RESPONSE
    return FallbackReason.COLLABORATOR_ERROR


class PipelineOrchestrator:
    """
    Runs one enrichment pass per trigger and always leaves every display
    topic with either a real value or a fixed fallback.

    The quote is published first and on its own; the mailbox branch is a
    separate failure domain whose errors never reach the quote. Triggers
    are single-flight: one arriving mid-run is coalesced into a single
    follow-up run with the freshest snapshot.
    """

    def __init__(
        self,
        publisher: Publisher,
        text: TextGenerator,
        mailbox: Mailbox,
        topics: DisplayTopics | None = None,
        quote_max_chars: int = 120,
        email_fetch_count: int = 5,
        publish_qos: int = 0,
        log_level: str | None = None,
    ):
        self._publisher = publisher
        self._text = text
        self._mailbox = mailbox
        self.topics = topics or DisplayTopics()
        self.quote_max_chars = quote_max_chars
        self.email_fetch_count = email_fetch_count
        self.publish_qos = publish_qos
        self.stats = PipelineStats()
        self.log = configure_logging("pipeline", log_level)
        self._running = False
        self._pending: dict[str, float] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def trigger(self, snapshot: dict[str, float]):
        """Run the pipeline for `snapshot`, or queue it behind the current run."""
        self._pending = dict(snapshot)
        if self._running:
            self.stats.coalesced_triggers += 1
            self.log.info("pipeline_trigger_coalesced")
            return
        self._running = True
        try:
            while self._pending is not None:
                current, self._pending = self._pending, None
                await self.run(current)
        finally:
            self._running = False

    async def run(self, snapshot: dict[str, float]) -> PipelineResult | None:
        """One enrichment pass. Never raises."""
        self.stats.runs += 1
        self.log.info("pipeline_run_started", snapshot=snapshot)
        try:
            condition = classify_environment(snapshot)
            self.log.info("environment_classified", condition=condition)

            quote = await self._quote_step(snapshot)
            email_summary, priority = await self._mailbox_step(snapshot)

            await self._publish(self.topics.email, email_summary.value)
            await self._publish(self.topics.priority, priority.value.value)
        except Exception as e:
            self.stats.failed_runs += 1
            self.stats.fallbacks[FallbackReason.PIPELINE_ERROR] += 1
            self.log.error("pipeline_run_failed", error=str(e), exc_info=True)
            try:
                await self._publisher.publish(self.topics.quote, QUOTE_ERROR, qos=self.publish_qos)
            except Exception as publish_error:
                self.log.error("pipeline_error_publish_failed", error=str(publish_error))
            return None

        result = PipelineResult(quote=quote, email_summary=email_summary, priority=priority)
        for outcome in (result.quote, result.email_summary, result.priority):
            if outcome.is_fallback:
                self.stats.fallbacks[outcome.fallback] += 1
        self.log.info(
            "pipeline_run_completed",
            quote_fallback=quote.fallback,
            email_fallback=email_summary.fallback,
            priority=priority.value.value,
            priority_fallback=priority.fallback,
        )
        return result

    async def _publish(self, topic: str, message: str) -> bool:
        try:
            await self._publisher.publish(topic, message, qos=self.publish_qos)
            return True
        except TransportError as e:
            self.stats.publish_failures += 1
            self.log.error("display_publish_failed", topic=topic, error=str(e))
            return False

    # ─── Quote ──────────────────────────────────────────────────────

    async def _quote_step(self, snapshot: dict[str, float]) -> Outcome[str]:
        try:
            text = (await self._text.generate_quote(snapshot)).strip()
            if not text:
                raise InvalidResponseError("empty quote")
            outcome = Outcome(self._fit(text))
        except Exception as e:
            self.log.warning("quote_fallback", error=str(e), error_type=type(e).__name__)
            outcome = Outcome(QUOTE_FALLBACK, _reason(e))
        await self._publish(self.topics.quote, outcome.value)
        return outcome

    def _fit(self, text: str) -> str:
        if len(text) <= self.quote_max_chars:
            return text
        return text[: self.quote_max_chars - 1].rstrip() + "…"

    # ─── Mailbox domain ─────────────────────────────────────────────

    async def _mailbox_step(self, snapshot: dict[str, float]) -> tuple[Outcome[str], Outcome[Priority]]:
        try:
            enabled = self._mailbox.is_enabled()
        except Exception as e:
            self.log.error("mailbox_state_unknown", error=str(e))
            return (
                Outcome(EMAIL_ERROR, FallbackReason.FETCH_ERROR),
                Outcome(Priority.NORMAL, FallbackReason.COLLABORATOR_ERROR),
            )
        if not enabled:
            self.log.info("mailbox_disabled")
            return (
                Outcome(EMAIL_DISABLED, FallbackReason.DISABLED),
                Outcome(Priority.NORMAL, FallbackReason.DISABLED),
            )

        messages: list[MailMessage] = []
        try:
            messages = list(await self._mailbox.fetch_unread(self.email_fetch_count))
        except Exception as e:
            self.log.warning("mailbox_fetch_fallback", error=str(e), error_type=type(e).__name__)
            summary = Outcome(EMAIL_ERROR, FallbackReason.FETCH_ERROR)
        else:
            summary = await self._summary(messages)

        priority = await self._priority(snapshot, messages)
        return summary, priority

    async def _summary(self, messages: list[MailMessage]) -> Outcome[str]:
        if not messages:
            return Outcome(EMAIL_NONE, FallbackReason.NO_MESSAGES)
        try:
            summary = (await self._text.summarize_messages(messages)).strip()
            if not summary:
                raise InvalidResponseError("empty summary")
            return Outcome(summary)
        except Exception as e:
            self.log.warning("summary_fallback", error=str(e), messages=len(messages))
            return Outcome(email_unsummarized(len(messages)), _reason(e))

    async def _priority(self, snapshot: dict[str, float], messages: list[MailMessage]) -> Outcome[Priority]:
        try:
            return Outcome(Priority(await self._text.classify_priority(snapshot, messages)))
        except Exception as e:
            self.log.warning("priority_fallback", error=str(e))
            return Outcome(Priority.NORMAL, _reason(e))
