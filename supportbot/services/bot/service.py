#!/usr/bin/env python3
"""
Support Bot Service - wires the admission pipeline to the messaging gateway
and keeps the gateway session alive.

Listens to supportbot/gateway/status and supportbot/gateway/message,
answers through supportbot/gateway/send, and serves the health API.
"""

import asyncio
import gc
from typing import Any, Dict, Optional

from supportbot.config import SupportBotConfig, get_config, require_api_key
from supportbot.common.service_base import SupportService
from supportbot.common.topics import GATEWAY_MESSAGE, GATEWAY_STATUS
from supportbot.services.admission import AdmissionPipeline, Janitor, SenderStateStore
from supportbot.services.gateway import GatewaySession
from supportbot.services.generator import GeminiClient, KnowledgeBase, ResponseGenerator
from supportbot.services.supervisor import (
    ConnectionSupervisor,
    DeploymentState,
    HealthMonitor,
    HealthRecord,
    KeepAliveProber,
)
from supportbot.services.supervisor.api import setup_routes


class SupportBotService(SupportService):
    """Customer-support bot: admission, generation and session supervision"""

    def __init__(self, config: Optional[SupportBotConfig] = None, exit_fn=None):
        config = config or get_config()
        super().__init__(name="bot", http_port=config.http.port, config=config)

        self.record = HealthRecord.create(config.supervisor.error_log_size)
        self.store = SenderStateStore(config.admission)
        self.session = GatewaySession(config.gateway, self.mqtt_publish)

        self.client = GeminiClient(config.generator)
        self.knowledge = KnowledgeBase(config.knowledge)
        self.generator = ResponseGenerator(self.client, self.knowledge, config.generator, config.knowledge)

        self.pipeline = AdmissionPipeline(
            self.store,
            self.generator,
            self.record,
            config.admission,
            self.session.send_message,
            generator_timeout=config.generator.timeout,
            max_retries=config.generator.max_retries,
        )

        supervisor_kwargs = {"exit_fn": exit_fn} if exit_fn else {}
        self.supervisor = ConnectionSupervisor(self.session, self.record, config.supervisor, **supervisor_kwargs)
        self.monitor = HealthMonitor(self.record, self.supervisor, config.supervisor)
        self.prober = KeepAliveProber(self.record, self.supervisor, config.probe)
        self.janitor = Janitor(self.store, config.admission.janitor_interval, generator=self.generator)

        self.session.on_message(self.pipeline.submit)
        self.on_mqtt(GATEWAY_STATUS)(self._on_gateway_status)
        self.on_mqtt(GATEWAY_MESSAGE)(self._on_gateway_message)

    async def setup(self):
        """Service-specific initialization"""
        require_api_key(self.config)

        setup_routes(self.get_app(), self.record, self.pipeline, self.session)
        asyncio.get_running_loop().set_exception_handler(self._on_loop_exception)

        await self.prober.start()

        self.spawn(self._connect())
        self.spawn(self.prober.run())
        self.spawn(self.monitor.run())
        self.spawn(self.janitor.run())
        self.spawn(self._gc_loop())

        self.logger.info(f"✓ Health API on port {self.http_port}")

    async def teardown(self):
        """Service-specific cleanup"""
        self.monitor.stop()
        self.janitor.stop()
        await self.prober.stop()
        await self.pipeline.close()
        await self.client.close()
        await self.session.close()
        self.logger.info("Support bot shutdown complete")

    async def shutdown(self):
        # Stop the session while MQTT is still up; stored credentials are kept
        if self._running:
            self._running = False
            await self.supervisor.shutdown()
        await super().shutdown()

    async def _connect(self):
        """Wait for the broker, then bring the messaging session up."""
        timeout = self.config.gateway.ready_timeout
        try:
            await self.wait_mqtt_connected(timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"MQTT not connected after {timeout:.0f}s, starting session anyway")
        await self.supervisor.initialize()

    async def _on_gateway_status(self, topic: str, payload: bytes):
        await self.session.handle_status(payload)

    async def _on_gateway_message(self, topic: str, payload: bytes):
        await self.session.handle_message(payload)

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]):
        """Last-resort handler for errors nothing else caught."""
        error = context.get("exception")
        message = context.get("message", "Unhandled error")
        self.logger.error(f"Uncaught error: {message}: {error!r}", exc_info=error)
        self.record.record_error("loop", f"{message}: {error!r}" if error else message)

        if not self._running:
            return
        if self.supervisor.busy or self.record.deployment_state is DeploymentState.IN_PROGRESS:
            return
        self.spawn(self.supervisor.restart_services(reason="uncaught_error"))

    async def _gc_loop(self):
        """Periodic garbage collection"""
        interval = self.config.supervisor.gc_interval
        while self._running:
            try:
                await asyncio.sleep(interval)
                collected = gc.collect()
                self.logger.debug(f"GC collected {collected} objects")
            except asyncio.CancelledError:
                break
