#!/usr/bin/env python3
"""
Per-sender admission state.

One store owns every per-sender map the pipeline needs:
- Rate counters (rolling window per sender)
- Repeat trackers (last normalized text and how often it was sent)
- Spam cooldowns (silent-drop deadline)
- Pause state and the human-handoff flag, with cancellable auto-resume timers

Handoff always implies pause: the only way to set the flag is
pause(sender, handoff=True) and the only way to clear a pause clears the
flag too.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set

from supportbot.config.models import AdmissionConfig
from supportbot.common.logging import setup_logging


class RepeatVerdict(Enum):
    """Result of comparing a message with the sender's previous one"""
    FIRST = "first"
    REPEATED = "repeated"
    TRIGGERED = "triggered"


@dataclass
class RateCounter:
    count: int
    window_start: float


@dataclass
class RepeatTracker:
    last_text: str
    occurrences: int
    last_seen: float


ExpiryCallback = Callable[[str], Awaitable[None]]


class SenderStateStore:
    """In-memory per-sender state, lost on restart."""

    def __init__(self, config: AdmissionConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self.clock = clock
        self.logger = setup_logging("admission")

        self.rate_counters: Dict[str, RateCounter] = {}
        self.repeat_trackers: Dict[str, RepeatTracker] = {}
        self.cooldowns: Dict[str, float] = {}
        self.paused: Set[str] = set()
        self.handoff: Set[str] = set()
        self._pause_timers: Dict[str, asyncio.Task] = {}

    # --- Rate limiting ---

    def hit_rate_limit(self, sender_id: str) -> bool:
        """Count one message for sender_id; True if it exceeds the window budget."""
        now = self.clock()
        counter = self.rate_counters.get(sender_id)
        if counter is None or now - counter.window_start > self.config.rate_window:
            counter = RateCounter(count=1, window_start=now)
            self.rate_counters[sender_id] = counter
        else:
            counter.count += 1
        return counter.count > self.config.rate_max_messages

    # --- Repeated messages ---

    def track_repeat(self, sender_id: str, normalized_text: str) -> RepeatVerdict:
        """Record normalized_text and classify it against the sender's last message."""
        now = self.clock()
        tracker = self.repeat_trackers.get(sender_id)
        if tracker is None or tracker.last_text != normalized_text:
            self.repeat_trackers[sender_id] = RepeatTracker(
                last_text=normalized_text, occurrences=1, last_seen=now
            )
            return RepeatVerdict.FIRST

        tracker.occurrences += 1
        tracker.last_seen = now
        if tracker.occurrences >= self.config.repeat_threshold:
            # Post-trigger reset is 0, not 1: the next identical message starts a fresh run
            tracker.occurrences = 0
            return RepeatVerdict.TRIGGERED
        if tracker.occurrences <= 1:
            return RepeatVerdict.FIRST
        return RepeatVerdict.REPEATED

    # --- Spam cooldown ---

    def start_cooldown(self, sender_id: str, seconds: float):
        self.cooldowns[sender_id] = self.clock() + seconds
        self.logger.info(f"Spam cooldown for {sender_id}: {seconds:.0f}s")

    def cooldown_active(self, sender_id: str) -> bool:
        expiry = self.cooldowns.get(sender_id)
        if expiry is None:
            return False
        if self.clock() < expiry:
            return True
        del self.cooldowns[sender_id]
        return False

    # --- Pause / human handoff ---

    def is_paused(self, sender_id: str) -> bool:
        return sender_id in self.paused

    def is_handoff(self, sender_id: str) -> bool:
        return sender_id in self.handoff

    def pause(
        self,
        sender_id: str,
        handoff: bool,
        on_expire: Optional[ExpiryCallback] = None,
        duration: Optional[float] = None,
    ):
        """Pause automated replies for sender_id and (re)arm its auto-resume timer.

        Any timer armed by an earlier pause is cancelled first, so at most one
        timer per sender is ever live.
        """
        self._cancel_timer(sender_id)
        self.paused.add(sender_id)
        if handoff:
            self.handoff.add(sender_id)
        else:
            self.handoff.discard(sender_id)

        seconds = self.config.pause_duration if duration is None else duration
        timer = asyncio.create_task(self._expire_after(sender_id, seconds, on_expire))
        self._pause_timers[sender_id] = timer
        self.logger.info(f"Paused {sender_id} (handoff={handoff}) for {seconds:.0f}s")

    def resume(self, sender_id: str) -> bool:
        """Clear pause and handoff for sender_id. Returns False if it was not paused."""
        self._cancel_timer(sender_id)
        was_paused = sender_id in self.paused
        self.paused.discard(sender_id)
        self.handoff.discard(sender_id)
        if was_paused:
            self.logger.info(f"Resumed {sender_id}")
        return was_paused

    def _cancel_timer(self, sender_id: str):
        timer = self._pause_timers.pop(sender_id, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _expire_after(self, sender_id: str, seconds: float, on_expire: Optional[ExpiryCallback]):
        await asyncio.sleep(seconds)

        # Stale timer: superseded by a newer pause or by an explicit resume
        if self._pause_timers.get(sender_id) is not asyncio.current_task():
            return
        if sender_id not in self.paused:
            return

        self._pause_timers.pop(sender_id, None)
        self.paused.discard(sender_id)
        self.handoff.discard(sender_id)
        self.logger.info(f"Pause expired for {sender_id}")

        if on_expire is not None:
            try:
                await on_expire(sender_id)
            except Exception as e:
                self.logger.error(f"Auto-resume notice failed for {sender_id}: {e}", exc_info=True)

    # --- Housekeeping ---

    def sweep(self, now: Optional[float] = None) -> Dict[str, int]:
        """Drop stale counters, trackers and expired cooldowns."""
        now = self.clock() if now is None else now
        window = self.config.rate_window

        stale_rates = [s for s, c in self.rate_counters.items() if now - c.window_start > window * 2]
        for sender_id in stale_rates:
            del self.rate_counters[sender_id]

        stale_repeats = [s for s, t in self.repeat_trackers.items() if now - t.last_seen > window]
        for sender_id in stale_repeats:
            del self.repeat_trackers[sender_id]

        expired = [s for s, expiry in self.cooldowns.items() if now > expiry]
        for sender_id in expired:
            del self.cooldowns[sender_id]

        return {
            "rate_counters": len(stale_rates),
            "repeat_trackers": len(stale_repeats),
            "cooldowns": len(expired),
        }

    def stats(self) -> Dict[str, int]:
        return {
            "rate_counters": len(self.rate_counters),
            "repeat_trackers": len(self.repeat_trackers),
            "cooldowns": len(self.cooldowns),
            "paused": len(self.paused),
            "handoff": len(self.handoff),
        }

    def close(self):
        """Cancel every pending auto-resume timer."""
        for timer in self._pause_timers.values():
            timer.cancel()
        self._pause_timers.clear()
