"""Tests for the enrichment pipeline: fallbacks, isolation and coalescing."""

import asyncio

import pytest

from enrichment.base import CollaboratorError, InvalidResponseError
from processor.orchestrator import DisplayTopics, PipelineOrchestrator
from processor.schemas import (
    EMAIL_DISABLED,
    EMAIL_ERROR,
    EMAIL_NONE,
    QUOTE_ERROR,
    QUOTE_FALLBACK,
    FallbackReason,
    MailMessage,
    Priority,
)

TOPICS = DisplayTopics()
SNAPSHOT = {"temperature": 22.5, "humidity": 45.2}
INBOX = [MailMessage(id="m1", subject="Invoice", snippet="Payment due Friday")]


@pytest.fixture
def orchestrator(publisher, text, mailbox):
    return PipelineOrchestrator(publisher, text, mailbox, topics=TOPICS)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_publishes_all_three_topics(self, orchestrator, publisher, text, mailbox):
        mailbox.messages = list(INBOX)
        text.priority = Priority.WARNING
        result = await orchestrator.run(SNAPSHOT)

        assert publisher.on(TOPICS.quote) == ["Calm air, clear mind."]
        assert publisher.on(TOPICS.email) == ["Invoice due Friday."]
        assert publisher.on(TOPICS.priority) == ["warning"]
        assert not result.quote.is_fallback
        assert not result.email_summary.is_fallback
        assert result.priority.value is Priority.WARNING

    @pytest.mark.asyncio
    async def test_quote_published_first(self, orchestrator, publisher, mailbox):
        mailbox.messages = list(INBOX)
        await orchestrator.run(SNAPSHOT)
        assert publisher.published[0][0] == TOPICS.quote

    @pytest.mark.asyncio
    async def test_long_quote_truncated(self, orchestrator, publisher, text):
        text.quote = "x" * 300
        result = await orchestrator.run(SNAPSHOT)
        assert len(result.quote.value) <= 120
        assert result.quote.value.endswith("…")
        assert len(publisher.on(TOPICS.quote)[0]) <= 120


class TestQuoteFallback:
    @pytest.mark.asyncio
    async def test_provider_error_uses_fallback_quote(self, orchestrator, publisher, text):
        text.quote = CollaboratorError("timeout")
        result = await orchestrator.run(SNAPSHOT)
        assert publisher.on(TOPICS.quote) == [QUOTE_FALLBACK]
        assert result.quote.fallback is FallbackReason.COLLABORATOR_ERROR

    @pytest.mark.asyncio
    async def test_empty_quote_is_invalid_response(self, orchestrator, text):
        text.quote = "   "
        result = await orchestrator.run(SNAPSHOT)
        assert result.quote.value == QUOTE_FALLBACK
        assert result.quote.fallback is FallbackReason.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_unexpected_exception_type_still_falls_back(self, orchestrator, text):
        text.quote = RuntimeError("boom")
        result = await orchestrator.run(SNAPSHOT)
        assert result.quote.value == QUOTE_FALLBACK


class TestMailboxDomain:
    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_quote(self, orchestrator, publisher, mailbox):
        mailbox.error = CollaboratorError("gmail down")
        result = await orchestrator.run(SNAPSHOT)

        assert publisher.on(TOPICS.quote) == ["Calm air, clear mind."]
        assert publisher.on(TOPICS.email) == [EMAIL_ERROR]
        assert result.email_summary.fallback is FallbackReason.FETCH_ERROR

    @pytest.mark.asyncio
    async def test_fetch_failure_still_classifies_priority(self, orchestrator, publisher, text, mailbox):
        mailbox.error = CollaboratorError("gmail down")
        text.priority = Priority.URGENT
        await orchestrator.run({"temperature": 40.0, "humidity": 90.0})
        assert "priority" in text.calls
        assert publisher.on(TOPICS.priority) == ["urgent"]

    @pytest.mark.asyncio
    async def test_disabled_mailbox_skips_fetch(self, orchestrator, publisher, text, mailbox):
        mailbox.enabled = False
        result = await orchestrator.run(SNAPSHOT)

        assert mailbox.fetches == 0
        assert publisher.on(TOPICS.email) == [EMAIL_DISABLED]
        assert publisher.on(TOPICS.priority) == ["normal"]
        assert result.priority.fallback is FallbackReason.DISABLED
        assert text.calls == ["quote"]

    @pytest.mark.asyncio
    async def test_empty_inbox(self, orchestrator, publisher, text, mailbox):
        result = await orchestrator.run(SNAPSHOT)
        assert publisher.on(TOPICS.email) == [EMAIL_NONE]
        assert result.email_summary.fallback is FallbackReason.NO_MESSAGES
        assert "summary" not in text.calls

    @pytest.mark.asyncio
    async def test_summary_failure_reports_count(self, orchestrator, publisher, text, mailbox):
        mailbox.messages = list(INBOX) * 3
        text.summary = CollaboratorError("rate limited")
        await orchestrator.run(SNAPSHOT)
        assert publisher.on(TOPICS.email) == ["3 new email(s). Unable to summarize."]

    @pytest.mark.asyncio
    async def test_invalid_priority_falls_back_to_normal(self, orchestrator, publisher, text, mailbox):
        mailbox.messages = list(INBOX)
        text.priority = InvalidResponseError("maybe?")
        result = await orchestrator.run(SNAPSHOT)
        assert publisher.on(TOPICS.priority) == ["normal"]
        assert result.priority.fallback is FallbackReason.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_mailbox_state_error(self, orchestrator, publisher, mailbox):
        def broken():
            raise RuntimeError("token store unreadable")

        mailbox.is_enabled = broken
        await orchestrator.run(SNAPSHOT)
        assert publisher.on(TOPICS.email) == [EMAIL_ERROR]
        assert publisher.on(TOPICS.priority) == ["normal"]


class TestPublishing:
    @pytest.mark.asyncio
    async def test_publish_failure_does_not_stop_other_topics(self, orchestrator, publisher):
        publisher.failing.add(TOPICS.quote)
        await orchestrator.run(SNAPSHOT)
        assert publisher.on(TOPICS.email) == [EMAIL_NONE]
        assert publisher.on(TOPICS.priority) == ["normal"]
        assert orchestrator.stats.publish_failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_pipeline_error_publishes_error_quote(self, publisher, text, mailbox):
        orchestrator = PipelineOrchestrator(publisher, text, mailbox, topics=TOPICS)

        async def explode(snapshot):
            raise RuntimeError("bug")

        orchestrator._mailbox_step = explode
        result = await orchestrator.run(SNAPSHOT)

        assert result is None
        assert publisher.on(TOPICS.quote)[-1] == QUOTE_ERROR
        assert orchestrator.stats.failed_runs == 1
        assert orchestrator.stats.fallbacks[FallbackReason.PIPELINE_ERROR] == 1

    @pytest.mark.asyncio
    async def test_fallbacks_counted_by_reason(self, orchestrator, mailbox):
        mailbox.enabled = False
        await orchestrator.run(SNAPSHOT)
        assert orchestrator.stats.fallbacks[FallbackReason.DISABLED] == 2


class SlowText:
    """Blocks each quote until released, recording the snapshots it was asked about."""

    def __init__(self):
        self.release = asyncio.Event()
        self.seen: list[dict] = []

    async def generate_quote(self, values):
        self.seen.append(values)
        await self.release.wait()
        return "quote"

    async def summarize_messages(self, messages):
        return "summary"

    async def classify_priority(self, values, messages):
        return "normal"


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_mid_run_triggers_coalesce_into_one_follow_up(self, publisher, mailbox):
        text = SlowText()
        orchestrator = PipelineOrchestrator(publisher, text, mailbox, topics=TOPICS)

        first = asyncio.create_task(orchestrator.trigger({"temperature": 20.0, "humidity": 40.0}))
        await asyncio.sleep(0)
        assert orchestrator.running

        await orchestrator.trigger({"temperature": 21.0, "humidity": 41.0})
        await orchestrator.trigger({"temperature": 22.0, "humidity": 42.0})
        assert orchestrator.stats.coalesced_triggers == 2

        text.release.set()
        await first

        assert orchestrator.stats.runs == 2
        assert text.seen[-1] == {"temperature": 22.0, "humidity": 42.0}
        assert not orchestrator.running

    @pytest.mark.asyncio
    async def test_sequential_triggers_each_run(self, orchestrator):
        await orchestrator.trigger(SNAPSHOT)
        await orchestrator.trigger(SNAPSHOT)
        assert orchestrator.stats.runs == 2
        assert orchestrator.stats.coalesced_triggers == 0


class TestOverBroker:
    @pytest.mark.asyncio
    async def test_rejected_quote_topic_does_not_block_other_topics(self, text, mailbox, make_connection):
        connection, clients = make_connection()
        await connection.connect()
        topics = DisplayTopics(quote="auralink/display/#")
        orchestrator = PipelineOrchestrator(connection, text, mailbox, topics=topics)

        result = await orchestrator.run(SNAPSHOT)

        published = dict(clients[0].published)
        assert result is not None
        assert published[topics.email] == EMAIL_NONE
        assert published[topics.priority] == "normal"
        assert orchestrator.stats.publish_failures == 1
        assert orchestrator.stats.failed_runs == 0
        await connection.disconnect()
