#!/usr/bin/env python3
"""
Connection Supervisor

Owns the messaging session lifecycle:
- initialize / destroy / clear persisted credentials
- react to ready, disconnected and auth_failure events
- reconnect with exponential backoff plus jitter, bounded by an attempt cap
- full restart on request from the health monitor or keep-alive prober

Only two things are fatal: exceeding the reconnection cap and a failed
restart. Both exit the process so the external process manager can start
a fresh one.
"""

import asyncio
import logging
import os
import random
import time
from typing import Any, Callable, Dict, Optional

from supportbot.config.models import SupervisorConfig
from supportbot.common import topics
from supportbot.common.logging import setup_logging
from .health import ConnectionState, DeploymentState, HealthRecord

INITIAL_FAILURE = "INITIAL_FAILURE"
AUTH_FAILURE = "AUTH_FAILURE"


def exit_process(code: int):
    """Terminate immediately; the process manager restarts us."""
    logging.shutdown()
    os._exit(code)


class ConnectionSupervisor:
    """Keeps the messaging session alive"""

    def __init__(
        self,
        session,
        record: HealthRecord,
        config: SupervisorConfig,
        exit_fn: Callable[[int], Any] = exit_process,
        sleep: Callable[[float], Any] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.session = session
        self.record = record
        self.config = config
        self.logger = setup_logging("supervisor")
        self._exit = exit_fn
        self._sleep = sleep
        self._rng = rng

        self._reconnecting = False
        self._restarting = False
        self._terminated = False

        session.on(topics.EVENT_READY)(self.on_ready)
        session.on(topics.EVENT_DISCONNECTED)(self.on_disconnected)
        session.on(topics.EVENT_AUTH_FAILURE)(self.on_auth_failure)

    @property
    def busy(self) -> bool:
        """True while a reconnection, restart or first connection is underway"""
        return (
            self._reconnecting
            or self._restarting
            or self.record.connection_state is ConnectionState.CONNECTING
        )

    @property
    def reconnecting(self) -> bool:
        return self._reconnecting

    @property
    def restarting(self) -> bool:
        return self._restarting

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnection attempt number `attempt` (1-based)."""
        cfg = self.config
        delay = cfg.reconnect_base_delay * (cfg.reconnect_growth ** (attempt - 1))
        delay += self._rng() * cfg.reconnect_jitter
        return min(delay, cfg.reconnect_max_delay)

    # --- Session events ---

    def _mark_ready(self):
        self.record.reconnect_attempts = 0
        self.record.connection_state = ConnectionState.CONNECTED
        self.record.is_healthy = True
        if self.record.deployment_state is DeploymentState.FAILED:
            self.record.deployment_state = DeploymentState.STABLE

    async def on_ready(self, data: Optional[Dict[str, Any]] = None):
        self.logger.info("Messaging session ready")
        self._mark_ready()

    async def on_disconnected(self, data: Optional[Dict[str, Any]] = None):
        reason = str((data or {}).get("reason") or "UNKNOWN")
        self.logger.warning(f"Messaging session disconnected: {reason}")
        self.record.connection_state = ConnectionState.DISCONNECTED
        self.record.is_healthy = False
        self.record.record_error("session", f"disconnected: {reason}")

        if self._restarting:
            return
        if reason.upper() in topics.INTENTIONAL_DISCONNECT_REASONS:
            # Logged out on purpose; the stored login is useless now
            await self._clear_credentials()
        await self.handle_reconnection(reason)

    async def on_auth_failure(self, data: Optional[Dict[str, Any]] = None):
        reason = str((data or {}).get("reason") or "authentication failed")
        self.logger.error(f"Authentication failure: {reason}")
        self.record.connection_state = ConnectionState.AUTH_FAILED
        self.record.is_healthy = False
        self.record.record_error("session", f"auth failure: {reason}")

        if self._restarting:
            return
        if self._reconnecting:
            # The running loop keeps its own reason, so it will not clear for us
            await self._clear_credentials()
        await self.handle_reconnection(AUTH_FAILURE)

    # --- Lifecycle ---

    async def initialize(self):
        """Start the session; a failure enters the reconnection loop."""
        self.record.connection_state = ConnectionState.CONNECTING
        try:
            await self.session.initialize()
        except Exception as e:
            self.logger.error(f"Initial connection failed: {e}")
            self.record.record_error("session", f"initialize: {e}")
            self.record.connection_state = ConnectionState.DISCONNECTED
            await self.handle_reconnection(INITIAL_FAILURE)
            return
        self._mark_ready()

    async def handle_reconnection(self, reason: str):
        """Reconnect with exponential backoff until it works or the cap is hit."""
        if self._reconnecting:
            self.logger.info(f"Reconnection already in progress, ignoring {reason}")
            return

        self._reconnecting = True
        try:
            while True:
                attempts = self.record.reconnect_attempts
                if attempts >= self.config.max_reconnect_attempts:
                    self.logger.critical(
                        f"Reached maximum reconnection attempts ({self.config.max_reconnect_attempts})",
                        extra={"reason": reason, "attempt": attempts},
                    )
                    await self._terminate(f"reconnection cap reached ({reason})")
                    return

                attempts += 1
                self.record.reconnect_attempts = attempts
                self.record.metrics.total_reconnects += 1
                self.record.connection_state = ConnectionState.RECONNECTING

                if reason == AUTH_FAILURE or attempts > self.config.clear_credentials_after:
                    # Stored session presumed corrupt
                    await self._clear_credentials()

                delay = self.backoff_delay(attempts)
                self.logger.info(
                    f"Reconnection attempt {attempts}/{self.config.max_reconnect_attempts} "
                    f"in {delay:.1f}s (reason: {reason})",
                    extra={"reason": reason, "attempt": attempts, "duration_ms": int(delay * 1000)},
                )
                await self._sleep(delay)

                try:
                    await self.session.initialize()
                except Exception as e:
                    self.logger.error(
                        f"Reconnection attempt {attempts} failed: {e}",
                        extra={"reason": reason, "attempt": attempts},
                    )
                    self.record.record_error("session", f"reconnect {attempts}: {e}")
                    continue

                self.logger.info(f"Reconnected after {attempts} attempt(s)", extra={"reason": reason, "attempt": attempts})
                self._mark_ready()
                return
        finally:
            self._reconnecting = False

    async def restart_services(self, reason: str = "requested"):
        """Tear the session down completely and start it again."""
        if self._restarting or self._reconnecting:
            self.logger.info(
                f"Restart requested ({reason}) while another recovery is running, skipping",
                extra={"reason": reason},
            )
            return

        self._restarting = True
        self.logger.warning(f"Restarting services ({reason})...", extra={"reason": reason})
        self.record.metrics.last_restart_at = time.time()
        self.record.is_healthy = False
        try:
            await self.session.destroy()
            await self.session.clear_credentials()
            await self._sleep(self.config.restart_pause)

            self.record.connection_state = ConnectionState.CONNECTING
            await self.session.initialize()
        except Exception as e:
            self.logger.critical(f"Restart failed: {e}", exc_info=True)
            self.record.record_error("supervisor", f"restart failed: {e}")
            await self._terminate(f"restart failed ({reason})")
            return
        finally:
            self._restarting = False

        self._mark_ready()
        self.logger.info("Services restarted successfully")

    async def shutdown(self):
        """Graceful stop: destroy the session, keep stored credentials."""
        self.logger.info("Stopping messaging session...")
        try:
            await self.session.destroy()
        except Exception as e:
            self.logger.error(f"Error destroying session: {e}")
        self.record.connection_state = ConnectionState.DISCONNECTED

    # --- Internals ---

    async def _clear_credentials(self):
        try:
            await self.session.clear_credentials()
        except Exception as e:
            self.logger.error(f"Error clearing session credentials: {e}")
            self.record.record_error("session", f"clear credentials: {e}")

    async def _terminate(self, why: str):
        if self._terminated:
            return
        self._terminated = True
        self.record.is_healthy = False
        self.record.connection_state = ConnectionState.FAILED
        self.record.record_error("supervisor", f"fatal: {why}")
        self.logger.critical(f"Fatal: {why}. Exiting so the process manager restarts us.")
        try:
            await asyncio.wait_for(self.session.destroy(), timeout=10.0)
        except Exception as e:
            self.logger.error(f"Cleanup before exit failed: {e}")
        self._exit(1)
