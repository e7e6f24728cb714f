"""Periodic sweep of stale per-sender state."""

import asyncio
from typing import Dict, Optional

from supportbot.common.logging import setup_logging
from .state import SenderStateStore


class Janitor:
    """Sweeps the admission store and, when given one, the generator's chat histories."""

    def __init__(self, store: SenderStateStore, interval: Optional[float] = None, generator=None):
        self.store = store
        self.generator = generator
        self.interval = interval if interval else store.config.rate_window
        self.logger = setup_logging("janitor")
        self._running = False

    def sweep(self) -> Dict[str, int]:
        removed = self.store.sweep()
        if self.generator is not None:
            removed["histories"] = self.generator.sweep()
        if any(removed.values()):
            self.logger.debug(f"Swept stale per-sender state: {removed}")
        return removed

    async def run(self):
        self._running = True
        self.logger.info(f"Starting janitor (every {self.interval:.0f}s)...")

        while self._running:
            try:
                await asyncio.sleep(self.interval)
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in janitor: {e}", exc_info=True)

        self.logger.info("Janitor stopped")

    def stop(self):
        self._running = False
