#!/usr/bin/env python3
"""
Unit and integration tests for the admission pipeline

Tests cover:
- Rule order and short-circuiting
- Rate limit, repeat and spam cooldown notices
- Human handoff, return to bot, operator freeze
- Generator retries and error replies
- Queue ordering, eviction and duplicate submissions
- End-to-end conversation with the real response generator
"""

import asyncio
import itertools
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from supportbot.common import messages
from supportbot.config.models import AdmissionConfig, GeneratorConfig, KnowledgeConfig
from supportbot.services.admission import AdmissionPipeline, Disposition, InboundEvent, MediaType, SenderStateStore
from supportbot.services.generator import GeneratorError, GeneratorTimeout, KnowledgeBase, ResponseGenerator
from supportbot.services.supervisor.health import HealthRecord

logging.disable(logging.CRITICAL)

SENDER = "5215550001@c.us"
GENERATED = "respuesta generada"

_ids = itertools.count()


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_event(body, sender=SENDER, message_id=None, has_media=False, media_type=None):
    return InboundEvent(
        message_id=message_id or f"msg-{next(_ids)}",
        sender_id=sender,
        body=body,
        reply=AsyncMock(),
        has_media=has_media,
        media_type=media_type,
    )


def build_pipeline(clock, responder=None, **overrides):
    config = AdmissionConfig(**overrides)
    if responder is None:
        responder = MagicMock()
        responder.generate_reply = AsyncMock(return_value=GENERATED)
    return AdmissionPipeline(
        SenderStateStore(config, clock=clock),
        responder,
        HealthRecord(),
        config,
        AsyncMock(),
        generator_timeout=60.0,
        max_retries=3,
    )


async def send(pipeline, body, **kwargs):
    event = make_event(body, **kwargs)
    disposition = await pipeline.process(event)
    return disposition, event


def replied_with(event):
    assert event.reply.await_count == 1
    return event.reply.await_args.args[0]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def pipeline(clock):
    pipeline = build_pipeline(clock)
    yield pipeline
    await pipeline.close()


class TestPolicyOrder:
    """Per-event rules, first match wins"""

    @pytest.mark.asyncio
    async def test_generated_reply(self, pipeline):
        disposition, event = await send(pipeline, "quiero una laptop para diseño")

        assert disposition is Disposition.REPLIED
        event.reply.assert_awaited_once_with(GENERATED)
        pipeline.responder.generate_reply.assert_awaited_once_with(
            "quiero una laptop para diseño", SENDER, timeout=60.0
        )

    @pytest.mark.asyncio
    async def test_shortcut_bypasses_generator(self, pipeline):
        _, event = await send(pipeline, "Hola")

        event.reply.assert_awaited_once_with(messages.WELCOME)
        pipeline.responder.generate_reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_every_event_touches_health(self, pipeline):
        pipeline.health.last_event_processed_at = 0.0
        pipeline.freeze(SENDER)

        disposition, event = await send(pipeline, "hola")

        assert disposition is Disposition.SILENT
        assert pipeline.health.last_event_processed_at > 0.0

    @pytest.mark.asyncio
    async def test_rate_limit(self, clock):
        pipeline = build_pipeline(clock, rate_max_messages=2)
        replies = []
        for body in ("uno", "dos", "tres", "cuatro"):
            _, event = await send(pipeline, body)
            replies.append(replied_with(event))

        assert replies == [GENERATED, GENERATED, messages.RATE_LIMIT, messages.RATE_LIMIT]
        assert pipeline.responder.generate_reply.await_count == 2

        clock.advance(61)
        _, event = await send(pipeline, "cinco")
        assert replied_with(event) == GENERATED
        assert pipeline.store.rate_counters[SENDER].count == 1
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_repeated_messages(self, pipeline):
        replies = []
        for _ in range(4):
            _, event = await send(pipeline, "Info laptops")
            replies.append(replied_with(event))

        assert replies == [
            GENERATED,
            messages.REPEATED_MESSAGE,
            messages.REPEATED_MESSAGE,
            messages.SPAM_WARNING,
        ]
        assert pipeline.store.repeat_trackers[SENDER].occurrences == 0
        assert pipeline.store.cooldown_active(SENDER)

        disposition, event = await send(pipeline, "otra pregunta")
        assert disposition is Disposition.SILENT
        event.reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_spam_content_starts_cooldown(self, pipeline, clock):
        _, event = await send(pipeline, "gana dinero facil")
        event.reply.assert_awaited_once_with(messages.SPAM_WARNING)
        assert not pipeline.store.is_paused(SENDER)

        clock.advance(179)
        assert pipeline.store.cooldown_active(SENDER)
        clock.advance(2)
        assert not pipeline.store.cooldown_active(SENDER)

    @pytest.mark.asyncio
    async def test_cooldown_silences_everything(self, pipeline, clock):
        await send(pipeline, "gana dinero facil")

        outcomes = []
        for body in ["hola", "hola", "agente", "volver al bot", "horario"] + ["x"] * 10:
            outcomes.append(await send(pipeline, body))
        outcomes.append(await send(pipeline, "", has_media=True, media_type=MediaType.IMAGE))

        for disposition, event in outcomes:
            assert disposition is Disposition.SILENT
            event.reply.assert_not_awaited()
        assert not pipeline.store.is_paused(SENDER)
        pipeline.responder.generate_reply.assert_not_awaited()

        clock.advance(181)
        _, event = await send(pipeline, "horario")
        event.reply.assert_awaited_once_with(messages.SCHEDULE)


class TestPauseAndHandoff:
    """Human handoff, return to bot and operator freeze"""

    @pytest.mark.asyncio
    async def test_handoff_and_return(self, pipeline):
        _, event = await send(pipeline, "quiero hablar con un agente")
        event.reply.assert_awaited_once_with(messages.HUMAN_REQUEST)
        assert pipeline.store.is_paused(SENDER)
        assert pipeline.store.is_handoff(SENDER)

        disposition, event = await send(pipeline, "precio de la laptop")
        assert disposition is Disposition.SILENT
        event.reply.assert_not_awaited()

        _, event = await send(pipeline, "volver al bot")
        event.reply.assert_awaited_once_with(messages.WELCOME_BACK)
        assert not pipeline.store.is_paused(SENDER)
        assert not pipeline.store.is_handoff(SENDER)

    @pytest.mark.asyncio
    async def test_return_keyword_without_handoff(self, pipeline):
        _, event = await send(pipeline, "volver al bot")

        event.reply.assert_awaited_once_with(GENERATED)
        pipeline.responder.generate_reply.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_media_pauses_with_handoff(self, pipeline):
        _, event = await send(pipeline, "", has_media=True, media_type=MediaType.IMAGE)

        reply = replied_with(event)
        assert reply.startswith(messages.MEDIA_RECEIVED)
        assert messages.MEDIA_SUFFIXES["image"] in reply
        assert pipeline.store.is_handoff(SENDER)

        _, event = await send(pipeline, "volver al bot")
        event.reply.assert_awaited_once_with(messages.WELCOME_BACK)

    @pytest.mark.asyncio
    async def test_repeated_media_is_not_flagged(self, pipeline):
        for _ in range(4):
            await send(pipeline, "", has_media=True, media_type=MediaType.DOCUMENT)
        assert not pipeline.store.cooldown_active(SENDER)

    @pytest.mark.asyncio
    async def test_freeze_ignores_return_keyword(self, pipeline):
        pipeline.freeze(SENDER)

        disposition, event = await send(pipeline, "volver al bot")
        assert disposition is Disposition.SILENT
        assert pipeline.store.is_paused(SENDER)

        assert pipeline.resume(SENDER) is True
        _, event = await send(pipeline, "hola")
        event.reply.assert_awaited_once_with(messages.WELCOME)

    @pytest.mark.asyncio
    async def test_pause_expiry_sends_notice(self, clock):
        pipeline = build_pipeline(clock, pause_duration=0.01)
        await send(pipeline, "agente")

        await asyncio.sleep(0.05)

        assert not pipeline.store.is_paused(SENDER)
        pipeline.send_message.assert_awaited_once_with(SENDER, messages.BOT_AVAILABLE)
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_stale_expiry_after_return(self, clock):
        pipeline = build_pipeline(clock, pause_duration=0.05)
        await send(pipeline, "agente")
        await send(pipeline, "volver al bot")

        await asyncio.sleep(0.1)

        assert not pipeline.store.is_paused(SENDER)
        pipeline.send_message.assert_not_awaited()
        await pipeline.close()


class TestGeneration:
    """Fallback to the response generator"""

    @pytest.mark.asyncio
    async def test_timeout_retries_then_notice(self, pipeline):
        pipeline.responder.generate_reply = AsyncMock(side_effect=GeneratorTimeout("slow"))

        _, event = await send(pipeline, "tienen laptops gamer")

        event.reply.assert_awaited_once_with(messages.TIMEOUT)
        assert pipeline.responder.generate_reply.await_count == 4

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, pipeline):
        pipeline.responder.generate_reply = AsyncMock(side_effect=[GeneratorTimeout("slow"), GENERATED])

        _, event = await send(pipeline, "tienen laptops gamer")

        event.reply.assert_awaited_once_with(GENERATED)
        assert pipeline.responder.generate_reply.await_count == 2

    @pytest.mark.asyncio
    async def test_generator_error_is_not_retried(self, pipeline):
        pipeline.responder.generate_reply = AsyncMock(side_effect=GeneratorError("bad request"))

        _, event = await send(pipeline, "tienen laptops gamer")

        event.reply.assert_awaited_once_with(messages.ERROR)
        assert pipeline.responder.generate_reply.await_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_error_reply(self, pipeline):
        pipeline.responder.generate_reply = AsyncMock(side_effect=RuntimeError("boom"))

        disposition, event = await send(pipeline, "tienen laptops gamer")

        assert disposition is Disposition.FAILED
        event.reply.assert_awaited_once_with(messages.ERROR)
        assert pipeline.stats["failed"] == 1

    @pytest.mark.asyncio
    async def test_failed_delivery_never_raises(self, pipeline):
        event = make_event("hola")
        event.reply.side_effect = ConnectionError("gateway down")

        assert await pipeline.process(event) is Disposition.FAILED


class TestQueue:
    """Single worker FIFO queue"""

    @pytest.mark.asyncio
    async def test_fifo_one_at_a_time(self, pipeline):
        active = 0
        peak = 0
        order = []

        async def slow_reply(body, sender_id, timeout=None):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            order.append(body)
            active -= 1
            return f"re: {body}"

        pipeline.responder.generate_reply = AsyncMock(side_effect=slow_reply)
        events = [make_event(body) for body in ("uno", "dos", "tres")]

        results = await asyncio.gather(*[pipeline.submit(e) for e in events])

        assert results == [Disposition.REPLIED] * 3
        assert peak == 1
        assert order == ["uno", "dos", "tres"]
        assert pipeline.stats["processed"] == 3

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self, clock):
        pipeline = build_pipeline(clock, queue_capacity=2)
        first, second, third = (make_event(body) for body in ("uno", "dos", "tres"))

        f1 = pipeline.submit(first)
        f2 = pipeline.submit(second)
        f3 = pipeline.submit(third)

        assert f1.done() and f1.result() is Disposition.DROPPED
        assert await f2 is Disposition.REPLIED
        assert await f3 is Disposition.REPLIED
        first.reply.assert_not_awaited()
        assert pipeline.stats["dropped"] == 1
        assert [c.args[0] for c in pipeline.responder.generate_reply.await_args_list] == ["dos", "tres"]
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_duplicate_submission(self, pipeline):
        event = make_event("uno")

        future = pipeline.submit(event)
        assert pipeline.submit(event).result() is Disposition.DUPLICATE
        assert await future is Disposition.REPLIED
        assert await pipeline.submit(event) is Disposition.DUPLICATE

        assert pipeline.responder.generate_reply.await_count == 1
        assert pipeline.store.rate_counters[SENDER].count == 1
        assert pipeline.stats["duplicates"] == 2

    @pytest.mark.asyncio
    async def test_evicted_event_retry_counts_once(self, clock):
        pipeline = build_pipeline(clock, queue_capacity=2)
        first, second, third = (make_event(body) for body in ("uno", "dos", "tres"))

        pipeline.submit(first)
        f2 = pipeline.submit(second)
        f3 = pipeline.submit(third)
        await asyncio.gather(f2, f3)

        assert await pipeline.submit(first) is Disposition.REPLIED
        assert await pipeline.submit(first) is Disposition.DUPLICATE

        assert pipeline.store.rate_counters[SENDER].count == 3
        first.reply.assert_awaited_once_with(GENERATED)
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_old_ids_are_forgotten(self, clock):
        pipeline = build_pipeline(clock, dedupe_capacity=2)
        events = [make_event(body) for body in ("uno", "dos", "tres")]
        await asyncio.gather(*[pipeline.submit(e) for e in events])

        assert await pipeline.submit(events[0]) is Disposition.REPLIED
        assert await pipeline.submit(events[2]) is Disposition.DUPLICATE
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_close_drops_pending(self, pipeline):
        never = asyncio.Event()

        async def stuck(body, sender_id, timeout=None):
            await never.wait()

        pipeline.responder.generate_reply = AsyncMock(side_effect=stuck)
        f1 = pipeline.submit(make_event("uno"))
        f2 = pipeline.submit(make_event("dos"))
        await asyncio.sleep(0.01)

        await pipeline.close()

        assert f1.result() is Disposition.DROPPED
        assert f2.result() is Disposition.DROPPED
        assert not pipeline.processing


    @pytest.mark.asyncio
    async def test_oldest_wait(self, pipeline):
        never = asyncio.Event()

        async def stuck(body, sender_id, timeout=None):
            await never.wait()

        pipeline.responder.generate_reply = AsyncMock(side_effect=stuck)
        assert pipeline.oldest_wait == 0.0

        pipeline.submit(make_event("uno"))
        pipeline.submit(make_event("dos"))
        await asyncio.sleep(0.05)

        assert pipeline.queue_depth == 1
        assert pipeline.oldest_wait >= 0.04

        await pipeline.close()
        assert pipeline.oldest_wait == 0.0


class TestConversation:
    """Full conversation through the queue and the real response generator"""

    @pytest.mark.asyncio
    async def test_handoff_round_trip(self, clock, tmp_path):
        (tmp_path / "Laptops1.txt").write_text("Laptop X - $500", encoding="utf-8")
        knowledge_config = KnowledgeConfig(directory=str(tmp_path))

        client = MagicMock()
        client.generate = AsyncMock(side_effect=["Laptops1.txt", "La laptop X cuesta $500."])
        generator = ResponseGenerator(client, KnowledgeBase(knowledge_config), GeneratorConfig(), knowledge_config)
        pipeline = build_pipeline(clock, responder=generator)

        async def say(body):
            event = make_event(body)
            disposition = await pipeline.submit(event)
            return disposition, event

        _, event = await say("hola")
        event.reply.assert_awaited_once_with(messages.WELCOME)
        client.generate.assert_not_awaited()

        _, event = await say("agente")
        event.reply.assert_awaited_once_with(messages.HUMAN_REQUEST)
        assert pipeline.store.is_paused(SENDER)
        assert pipeline.store.is_handoff(SENDER)
        assert SENDER in pipeline.store._pause_timers

        disposition, event = await say("precio de la laptop X")
        assert disposition is Disposition.SILENT
        event.reply.assert_not_awaited()

        _, event = await say("volver al bot")
        event.reply.assert_awaited_once_with(messages.WELCOME_BACK)
        assert not pipeline.store.is_paused(SENDER)
        assert not pipeline.store.is_handoff(SENDER)

        _, event = await say("precio de la laptop X")
        reply = replied_with(event)
        assert reply.startswith("La laptop X cuesta $500.")
        assert reply.endswith(messages.PURCHASE_FOOTER)
        assert client.generate.await_count == 2
        assert "Laptop X - $500" in client.generate.await_args_list[1].args[0]

        await pipeline.close()
