#!/usr/bin/env python3
"""
Keep-Alive Prober

Periodically GETs the configured public URL so the hosting platform keeps
the process warm and so we notice when it stops being reachable.

- Any status in [200, 500) counts as reachable.
- The deployment status (502 by default) means the platform is swapping
  instances. The first one flips deployment_state to in_progress and arms
  a deadline; a later success flips it back to stable. If the deadline
  passes first, the deployment is marked failed and services restart.
- Anything else is a failure, retried with exponential backoff. Past
  max_failures consecutive failures, services restart.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Optional

import aiohttp

from supportbot.config.models import ProbeConfig
from supportbot.common.logging import setup_logging
from .health import DeploymentState, HealthRecord


class ProbeOutcome(Enum):
    REACHABLE = "reachable"
    DEPLOYING = "deploying"
    FAILED = "failed"


class KeepAliveProber:
    def __init__(
        self,
        record: HealthRecord,
        supervisor,
        config: ProbeConfig,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.record = record
        self.supervisor = supervisor
        self.config = config
        self.logger = setup_logging("keepalive")
        self._sleep = sleep

        self.http_session: Optional[aiohttp.ClientSession] = None
        self.failures = 0
        self._deployment_timer: Optional[asyncio.Task] = None
        self._running = False

    async def start(self):
        if self.http_session is None or self.http_session.closed:
            self.http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            )

    async def probe(self) -> Optional[int]:
        """GET the probe URL. Returns the status code, or None on a network error."""
        await self.start()
        try:
            async with self.http_session.get(self.config.url, allow_redirects=True) as response:
                return response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Ping error for {self.config.url}: {type(e).__name__}: {e}")
            return None

    async def check(self) -> ProbeOutcome:
        """Probe once and apply the outcome to the health record."""
        status = await self.probe()

        if status == self.config.deployment_status:
            self._on_deploying()
            return ProbeOutcome.DEPLOYING

        if status is not None and 200 <= status < 500:
            self._on_reachable(status)
            return ProbeOutcome.REACHABLE

        self.failures += 1
        self.record.record_error("keepalive", f"ping failed (status={status}, failures={self.failures})")
        return ProbeOutcome.FAILED

    def _on_reachable(self, status: int):
        self.record.touch_probe()
        self.failures = 0
        if self.record.deployment_state is not DeploymentState.STABLE:
            self.logger.info("Deployment finished, probe target reachable again")
            self.record.deployment_state = DeploymentState.STABLE
            self._cancel_deployment_timer()
        self.logger.debug(f"Ping OK: {status}")

    def _on_deploying(self):
        if self.record.deployment_state is DeploymentState.IN_PROGRESS:
            return
        self.logger.warning(
            f"Deployment in progress (status {self.config.deployment_status}), "
            f"waiting up to {self.config.deployment_timeout:.0f}s"
        )
        self.record.deployment_state = DeploymentState.IN_PROGRESS
        self._cancel_deployment_timer()
        self._deployment_timer = asyncio.create_task(self._deployment_deadline())

    def _cancel_deployment_timer(self):
        timer, self._deployment_timer = self._deployment_timer, None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _deployment_deadline(self):
        await asyncio.sleep(self.config.deployment_timeout)
        if self.record.deployment_state is not DeploymentState.IN_PROGRESS:
            return
        self._deployment_timer = None
        self.logger.error("Deployment did not finish in time, restarting services", extra={"reason": "deployment_timeout"})
        self.record.deployment_state = DeploymentState.FAILED
        self.record.record_error("keepalive", "deployment timeout")
        await self.supervisor.restart_services(reason="deployment_timeout")

    def backoff_delay(self) -> float:
        delay = self.config.backoff_base * (2 ** max(self.failures - 1, 0))
        return min(delay, self.config.backoff_max)

    async def ping_with_retry(self) -> ProbeOutcome:
        """Probe until reachable/deploying, or escalate after too many failures."""
        while True:
            outcome = await self.check()
            if outcome is not ProbeOutcome.FAILED:
                return outcome

            if self.failures > self.config.max_failures:
                self.logger.error(
                    f"{self.failures} consecutive ping failures, restarting services",
                    extra={"reason": "keepalive", "attempt": self.failures},
                )
                self.failures = 0
                await self.supervisor.restart_services(reason="keepalive")
                return outcome

            delay = self.backoff_delay()
            self.logger.info(
                f"Retrying ping in {delay:.0f}s (failure {self.failures}/{self.config.max_failures})",
                extra={"attempt": self.failures, "duration_ms": int(delay * 1000)},
            )
            await self._sleep(delay)

    async def run(self):
        """Keep-alive loop"""
        self._running = True
        self.logger.info(f"Keep-alive started ({self.config.url} every {self.config.interval:.0f}s)")

        while self._running:
            try:
                await self.ping_with_retry()
                await asyncio.sleep(self.config.interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in keep-alive loop: {e}", exc_info=True)
                self.record.record_error("keepalive", str(e))
                await asyncio.sleep(self.config.interval)

        self.logger.info("Keep-alive stopped")

    async def stop(self):
        self._running = False
        self._cancel_deployment_timer()
        if self.http_session and not self.http_session.closed:
            await self.http_session.close()
