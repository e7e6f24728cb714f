"""Messaging gateway session over MQTT."""

from .session import GatewaySession, SessionError

__all__ = ["GatewaySession", "SessionError"]
