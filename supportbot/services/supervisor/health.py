#!/usr/bin/env python3
"""
Process-wide health record and the periodic health monitor.

The record is the single mutable status shared by the supervisor, the
keep-alive prober, the monitor and the admission pipeline. The monitor
derives healthy/unhealthy from it on a fixed interval and asks the
supervisor for a restart when the process looks wedged.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, Optional

from supportbot.config.models import SupervisorConfig
from supportbot.common.logging import setup_logging


class ConnectionState(Enum):
    """Lifecycle of the messaging gateway session"""
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    AUTH_FAILED = "auth_failed"
    FAILED = "failed"


class DeploymentState(Enum):
    """Whether the probe target is being redeployed"""
    STABLE = "stable"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class HealthMetrics:
    total_reconnects: int = 0
    error_log: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=50))
    last_restart_at: Optional[float] = None


@dataclass
class HealthRecord:
    """Shared health/state record, created once at startup"""
    last_probe_success_at: float = field(default_factory=time.time)
    last_event_processed_at: float = field(default_factory=time.time)
    is_healthy: bool = True
    connection_state: ConnectionState = ConnectionState.UNINITIALIZED
    deployment_state: DeploymentState = DeploymentState.STABLE
    reconnect_attempts: int = 0
    metrics: HealthMetrics = field(default_factory=HealthMetrics)

    @classmethod
    def create(cls, error_log_size: int = 50) -> "HealthRecord":
        record = cls()
        record.metrics.error_log = deque(maxlen=error_log_size)
        return record

    def touch_event(self, now: Optional[float] = None):
        self.last_event_processed_at = time.time() if now is None else now

    def touch_probe(self, now: Optional[float] = None):
        self.last_probe_success_at = time.time() if now is None else now

    def record_error(self, source: str, message: str, now: Optional[float] = None):
        self.metrics.error_log.append({
            "timestamp": _iso(time.time() if now is None else now),
            "source": source,
            "message": message,
        })

    def evaluate(self, max_silence: float, now: Optional[float] = None) -> bool:
        """Recompute is_healthy.

        Healthy iff the most recent sign of life (probe or processed event) is
        younger than max_silence, the session is connected and no deployment
        is pending.
        """
        now = time.time() if now is None else now
        silence = min(now - self.last_probe_success_at, now - self.last_event_processed_at)
        self.is_healthy = (
            silence < max_silence
            and self.connection_state is ConnectionState.CONNECTED
            and self.deployment_state is DeploymentState.STABLE
        )
        return self.is_healthy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "healthy" if self.is_healthy else "unhealthy",
            "lastPing": _iso(self.last_probe_success_at),
            "lastMessage": _iso(self.last_event_processed_at),
            "connectionState": self.connection_state.value,
            "deploymentState": self.deployment_state.value,
            "reconnectAttempts": self.reconnect_attempts,
            "totalReconnects": self.metrics.total_reconnects,
            "lastRestartAt": _iso(self.metrics.last_restart_at),
            "errorLog": list(self.metrics.error_log),
        }


class HealthMonitor:
    """Periodically evaluates the health record and escalates to a restart."""

    def __init__(self, record: HealthRecord, supervisor, config: SupervisorConfig):
        self.record = record
        self.supervisor = supervisor
        self.config = config
        self.logger = setup_logging("health")
        self._running = False

    async def check(self, now: Optional[float] = None) -> bool:
        healthy = self.record.evaluate(self.config.max_silence, now=now)
        if healthy:
            return True

        if self.supervisor.busy:
            self.logger.info("Unhealthy but reconnection/restart already in progress")
            return False
        if self.record.deployment_state is DeploymentState.IN_PROGRESS:
            # The deployment timer owns escalation while a redeploy is pending
            self.logger.info("Unhealthy during deployment, waiting for deployment timeout")
            return False

        self.logger.warning(
            f"System possibly inactive (connection={self.record.connection_state.value}, "
            f"deployment={self.record.deployment_state.value}), restarting services..."
        )
        await self.supervisor.restart_services(reason="health_check")
        return False

    async def run(self):
        """Health check loop"""
        self._running = True
        self.logger.info(f"Starting health monitor (every {self.config.health_interval:.0f}s)...")

        while self._running:
            try:
                await asyncio.sleep(self.config.health_interval)
                await self.check()

            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in health monitor: {e}", exc_info=True)
                self.record.record_error("health", str(e))

        self.logger.info("Health monitor stopped")

    def stop(self):
        self._running = False
