#!/usr/bin/env python3
"""
Message Admission Pipeline

Single-consumer FIFO queue in front of response generation. Inbound
events are processed strictly one at a time; each one runs through the
policy checks below and the first matching rule wins:

 1. rate limit             -> rate-limit notice
 2. repeated message       -> repeated notice / spam warning + cooldown
 3. spam cooldown          -> silence
 4. spam content           -> spam warning + cooldown
 5. human handoff keyword  -> handoff notice, pause + handoff
 6. return-to-bot keyword  -> welcome back (only while in handoff)
 7. paused                 -> silence
 8. media                  -> media notice, pause + handoff
 9. direct query shortcut  -> canned answer
10. fallback               -> response generator

While a cooldown is active, steps 1 and 2 still count the message but
never reply, so a cooling-down sender gets no answer at all.
"""

import asyncio
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional, Set

from supportbot.config.models import AdmissionConfig
from supportbot.common import messages
from supportbot.common.logging import setup_logging
from supportbot.services.generator.client import GeneratorError, GeneratorTimeout
from supportbot.services.supervisor.health import HealthRecord
from . import policy
from .events import Disposition, InboundEvent
from .state import RepeatVerdict, SenderStateStore

SendFn = Callable[[str, str], Awaitable[None]]


@dataclass
class PendingEntry:
    event: InboundEvent
    future: asyncio.Future
    enqueued_at: float

    def waited_ms(self, now: float) -> int:
        return int((now - self.enqueued_at) * 1000)


class AdmissionPipeline:
    """Serializes inbound events and applies admission policy before generation."""

    def __init__(
        self,
        store: SenderStateStore,
        responder,
        health: HealthRecord,
        config: AdmissionConfig,
        send_message: SendFn,
        generator_timeout: float = 60.0,
        max_retries: int = 3,
    ):
        self.store = store
        self.responder = responder
        self.health = health
        self.config = config
        self.send_message = send_message
        self.generator_timeout = generator_timeout
        self.max_retries = max_retries
        self.logger = setup_logging("admission")

        self._queue: Deque[PendingEntry] = deque()
        self._processing = False
        self._worker: Optional[asyncio.Task] = None

        # Ids waiting in the queue, and ids already taken for processing
        self._pending_ids: Set[str] = set()
        self._seen_ids: "OrderedDict[str, None]" = OrderedDict()

        self.stats = {"processed": 0, "dropped": 0, "duplicates": 0, "failed": 0}

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    @property
    def oldest_wait(self) -> float:
        """Seconds the head of the queue has been waiting, 0 when empty."""
        if not self._queue:
            return 0.0
        return max(0.0, time.time() - self._queue[0].enqueued_at)

    @property
    def processing(self) -> bool:
        return self._processing

    # --- Queue ---

    def submit(self, event: InboundEvent) -> asyncio.Future:
        """Enqueue event; the returned future resolves to its Disposition."""
        future = asyncio.get_running_loop().create_future()

        if event.message_id in self._pending_ids or event.message_id in self._seen_ids:
            self.stats["duplicates"] += 1
            self.logger.debug(
                f"Duplicate message {event.message_id} from {event.sender_id}",
                extra={"sender": event.sender_id, "message_id": event.message_id},
            )
            future.set_result(Disposition.DUPLICATE)
            return future

        if len(self._queue) >= self.config.queue_capacity:
            evicted = self._queue.popleft()
            # Forget the id so a retry of the evicted event is admitted and counted once
            self._pending_ids.discard(evicted.event.message_id)
            self.stats["dropped"] += 1
            self.logger.warning(
                f"Queue full ({self.config.queue_capacity}), dropped oldest message "
                f"{evicted.event.message_id} from {evicted.event.sender_id}",
                extra={
                    "sender": evicted.event.sender_id,
                    "message_id": evicted.event.message_id,
                    "duration_ms": evicted.waited_ms(time.time()),
                },
            )
            if not evicted.future.done():
                evicted.future.set_result(Disposition.DROPPED)

        self._queue.append(PendingEntry(event=event, future=future, enqueued_at=time.time()))
        self._pending_ids.add(event.message_id)
        self._kick()
        return future

    def _kick(self):
        if self._processing or not self._queue:
            return
        self._processing = True
        self._worker = asyncio.create_task(self._drain())

    async def _drain(self):
        try:
            while self._queue:
                entry = self._queue.popleft()
                self._pending_ids.discard(entry.event.message_id)
                self._remember(entry.event.message_id)
                self.logger.debug(
                    f"Processing {entry.event.message_id} from {entry.event.sender_id}",
                    extra={
                        "sender": entry.event.sender_id,
                        "message_id": entry.event.message_id,
                        "duration_ms": entry.waited_ms(time.time()),
                    },
                )

                try:
                    disposition = await self.process(entry.event)
                except asyncio.CancelledError:
                    if not entry.future.done():
                        entry.future.set_result(Disposition.DROPPED)
                    raise
                self.stats["processed"] += 1
                if not entry.future.done():
                    entry.future.set_result(disposition)
        finally:
            self._processing = False

    def _remember(self, message_id: str):
        self._seen_ids[message_id] = None
        self._seen_ids.move_to_end(message_id)
        while len(self._seen_ids) > self.config.dedupe_capacity:
            self._seen_ids.popitem(last=False)

    # --- Policy ---

    async def process(self, event: InboundEvent) -> Disposition:
        """Run one event through the admission policy. Never raises."""
        self.health.touch_event()

        try:
            return await self._apply_policy(event)
        except Exception as e:
            self.stats["failed"] += 1
            self.logger.error(
                f"Error processing message from {event.sender_id}: {e}",
                exc_info=True,
                extra={"sender": event.sender_id, "message_id": event.message_id},
            )
            try:
                await event.reply(messages.ERROR)
            except Exception as reply_error:
                self.logger.error(f"Could not deliver error notice to {event.sender_id}: {reply_error}")
            return Disposition.FAILED

    async def _apply_policy(self, event: InboundEvent) -> Disposition:
        sender = event.sender_id
        text = event.normalized_text
        cooling = self.store.cooldown_active(sender)

        if self.store.hit_rate_limit(sender):
            if cooling:
                return Disposition.SILENT
            return await self._reply(event, messages.RATE_LIMIT)

        if text:
            verdict = self.store.track_repeat(sender, text)
            if verdict is RepeatVerdict.TRIGGERED:
                if cooling:
                    return Disposition.SILENT
                await self._reply(event, messages.SPAM_WARNING)
                self.store.start_cooldown(sender, self.config.repeat_cooldown)
                return Disposition.REPLIED
            if verdict is RepeatVerdict.REPEATED:
                if cooling:
                    return Disposition.SILENT
                return await self._reply(event, messages.REPEATED_MESSAGE)

        if cooling:
            return Disposition.SILENT

        if text and policy.is_spam(text):
            await self._reply(event, messages.SPAM_WARNING)
            self.store.start_cooldown(sender, self.config.spam_cooldown)
            return Disposition.REPLIED

        if policy.wants_human(text):
            await self._reply(event, messages.HUMAN_REQUEST)
            self.store.pause(sender, handoff=True, on_expire=self._notify_available)
            return Disposition.REPLIED

        if policy.wants_bot(text) and self.store.is_handoff(sender):
            self.store.resume(sender)
            return await self._reply(event, messages.WELCOME_BACK)

        if self.store.is_paused(sender):
            self.logger.debug(f"{sender} is paused, not replying", extra={"sender": sender})
            return Disposition.SILENT

        if event.has_media:
            await self._reply(event, policy.media_reply(event.media_type))
            self.store.pause(sender, handoff=True, on_expire=self._notify_available)
            return Disposition.REPLIED

        canned = policy.shortcut_reply(text)
        if canned is not None:
            return await self._reply(event, canned)

        return await self._reply(event, await self._generate(event))

    async def _generate(self, event: InboundEvent) -> str:
        """Call the generator, retrying on timeout only."""
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            started = time.time()
            try:
                return await self.responder.generate_reply(
                    event.body, event.sender_id, timeout=self.generator_timeout
                )
            except GeneratorTimeout:
                self.logger.warning(
                    f"Generation timed out for {event.sender_id} "
                    f"(attempt {attempt}/{attempts}, {time.time() - started:.1f}s)",
                    extra={
                        "sender": event.sender_id,
                        "attempt": attempt,
                        "duration_ms": int((time.time() - started) * 1000),
                    },
                )
            except GeneratorError as e:
                self.logger.error(
                    f"Generation failed for {event.sender_id}: {e}",
                    extra={"sender": event.sender_id, "attempt": attempt},
                )
                return messages.ERROR
        return messages.TIMEOUT

    async def _reply(self, event: InboundEvent, text: str) -> Disposition:
        await event.reply(text)
        return Disposition.REPLIED

    async def _notify_available(self, sender_id: str):
        await self.send_message(sender_id, messages.BOT_AVAILABLE)

    # --- Operator controls ---

    def freeze(self, sender_id: str, duration: Optional[float] = None):
        """Pause a sender on behalf of an operator; no handoff, so "volver al bot" does not apply."""
        self.store.pause(sender_id, handoff=False, on_expire=self._notify_available, duration=duration)

    def resume(self, sender_id: str) -> bool:
        return self.store.resume(sender_id)

    async def close(self):
        """Drop whatever is still queued and stop the worker."""
        while self._queue:
            entry = self._queue.popleft()
            if not entry.future.done():
                entry.future.set_result(Disposition.DROPPED)
        self._pending_ids.clear()

        if self._worker and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self.store.close()
