"""Support bot service: gateway wiring, supervision and health API."""

from .service import SupportBotService

__all__ = ["SupportBotService"]
