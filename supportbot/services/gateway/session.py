#!/usr/bin/env python3
"""
Messaging gateway session.

The browser-automation messaging client runs as a sidecar process that
talks to us over MQTT. This class is our handle on that session:
- start/stop it via the control topic and wait for it to report ready
- turn status events into registered handler calls
- turn inbound message payloads into InboundEvents
- send replies
- wipe the persisted login so the next start asks for a fresh QR pairing
"""

import asyncio
import json
import shutil
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from supportbot.config.models import GatewayConfig
from supportbot.common import topics
from supportbot.common.logging import setup_logging
from supportbot.services.admission.events import InboundEvent, MediaType

PublishFn = Callable[[str, Any], Awaitable[None]]
StatusHandler = Callable[[Dict[str, Any]], Awaitable[None]]
MessageHandler = Callable[[InboundEvent], Any]


class SessionError(Exception):
    """Raised when the gateway session cannot be started"""
    pass


def _decode(payload: Union[bytes, str, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("Gateway payload must be a JSON object")
    return data


class GatewaySession:
    """Handle on the messaging client sidecar"""

    def __init__(self, config: GatewayConfig, publish: PublishFn):
        self.config = config
        self.publish = publish
        self.logger = setup_logging("gateway")

        self._handlers: Dict[str, List[StatusHandler]] = {}
        self._message_handler: Optional[MessageHandler] = None
        self._handler_tasks: Set[asyncio.Task] = set()

        self._settled = asyncio.Event()
        self._auth_error: Optional[str] = None
        self.ready = False
        self.last_qr: Optional[str] = None
        self.last_status_at: Optional[float] = None

    # --- Handler registration ---

    def on(self, event: str):
        """Decorator to register a handler for a gateway status event."""
        def decorator(func: StatusHandler):
            self._handlers.setdefault(event, []).append(func)
            return func
        return decorator

    def on_message(self, handler: MessageHandler):
        self._message_handler = handler
        return handler

    def _emit(self, event: str, data: Dict[str, Any]):
        # A handler may sleep through a whole reconnection cycle, so none is awaited inline
        for handler in self._handlers.get(event, []):
            task = asyncio.create_task(self._run_handler(event, handler, data))
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_tasks.discard)

    async def _run_handler(self, event: str, handler: StatusHandler, data: Dict[str, Any]):
        try:
            await handler(data)
        except Exception as e:
            self.logger.error(f"Handler error for gateway event {event}: {e}", exc_info=True)

    # --- Inbound ---

    async def handle_status(self, payload: Union[bytes, str, Dict[str, Any]]):
        """Process a status event published by the sidecar."""
        try:
            data = _decode(payload)
        except (ValueError, UnicodeDecodeError) as e:
            self.logger.error(f"Invalid gateway status payload: {e}")
            return

        event = data.get("event", "")
        self.last_status_at = time.time()

        if event == topics.EVENT_READY:
            self.logger.info("Messaging client ready")
            self.ready = True
            self._auth_error = None
            self._settled.set()
        elif event == topics.EVENT_AUTH_FAILURE:
            self._auth_error = str(data.get("reason") or "authentication failed")
            self.logger.error(f"Authentication failure: {self._auth_error}")
            self.ready = False
            self._settled.set()
        elif event == topics.EVENT_DISCONNECTED:
            self.logger.warning(f"Messaging client disconnected: {data.get('reason')}")
            self.ready = False
        elif event == topics.EVENT_QR:
            self.last_qr = data.get("qr")
            self.logger.info("New pairing QR code received")
        elif event == topics.EVENT_LOADING:
            self.logger.info(f"Loading: {data.get('percent')}% {data.get('message', '')}")
        else:
            self.logger.debug(f"Ignoring gateway event {event!r}")
            return

        self._emit(event, data)

    async def handle_message(self, payload: Union[bytes, str, Dict[str, Any]]) -> Optional[InboundEvent]:
        """Convert an inbound message payload and pass it to the message handler."""
        try:
            data = _decode(payload)
            sender_id = str(data["from"])
            message_id = str(data.get("id") or f"{sender_id}:{data.get('timestamp', time.time())}")
        except (ValueError, KeyError, UnicodeDecodeError) as e:
            self.logger.error(f"Invalid gateway message payload: {e}")
            return None

        async def reply(text: str):
            await self.reply(event, text)

        event = InboundEvent(
            message_id=message_id,
            sender_id=sender_id,
            body=str(data.get("body") or ""),
            reply=reply,
            has_media=bool(data.get("has_media", False)),
            media_type=MediaType.parse(data.get("type")),
        )

        if self._message_handler is None:
            self.logger.warning(f"No message handler registered, ignoring {message_id}")
            return event

        result = self._message_handler(event)
        if asyncio.iscoroutine(result):
            await result
        return event

    # --- Lifecycle ---

    async def initialize(self):
        """Start the messaging client and wait until it reports ready.

        Raises:
            SessionError: on authentication failure or if ready never arrives
        """
        self.ready = False
        self._auth_error = None
        self._settled.clear()

        self.logger.info(f"Starting messaging client {self.config.client_id}...")
        await self.publish(topics.GATEWAY_CONTROL, {
            "command": "start",
            "client_id": self.config.client_id,
            "timestamp": time.time(),
        })

        try:
            await asyncio.wait_for(self._settled.wait(), timeout=self.config.ready_timeout)
        except asyncio.TimeoutError:
            raise SessionError(f"Messaging client not ready after {self.config.ready_timeout:.0f}s")

        if self._auth_error is not None:
            raise SessionError(f"Authentication failed: {self._auth_error}")

    async def destroy(self):
        """Stop the messaging client; persisted login is left untouched."""
        self.ready = False
        self._settled.clear()
        await asyncio.wait_for(
            self.publish(topics.GATEWAY_CONTROL, {
                "command": "stop",
                "client_id": self.config.client_id,
                "timestamp": time.time(),
            }),
            timeout=self.config.destroy_timeout,
        )
        self.logger.info("Messaging client stopped")

    async def clear_credentials(self):
        """Delete the persisted login directory."""
        path = Path(self.config.auth_dir)
        await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)
        self.logger.info(f"Session credentials removed ({path})")

    # --- Outbound ---

    async def send_message(self, to: str, text: str, quoted_id: Optional[str] = None):
        payload = {"to": to, "text": text, "timestamp": time.time()}
        if quoted_id:
            payload["quoted_id"] = quoted_id
        await self.publish(topics.GATEWAY_SEND, payload)

    async def reply(self, event: InboundEvent, text: str):
        """Answer event, quoting the original message."""
        await self.send_message(event.sender_id, text, quoted_id=event.message_id)

    async def close(self):
        for task in list(self._handler_tasks):
            task.cancel()
        await asyncio.gather(*self._handler_tasks, return_exceptions=True)
