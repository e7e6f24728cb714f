"""Inbound event and processing outcome types for the admission pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional
import time


class MediaType(Enum):
    """Non-text payload carried by an inbound message"""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    VOICE = "ptt"
    DOCUMENT = "document"
    STICKER = "sticker"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["MediaType"]:
        if not value or value == "chat":
            return None
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class Disposition(Enum):
    """How the pipeline settled a submitted event"""
    REPLIED = "replied"
    SILENT = "silent"
    DROPPED = "dropped"
    DUPLICATE = "duplicate"
    FAILED = "failed"


ReplyFn = Callable[[str], Awaitable[None]]


@dataclass
class InboundEvent:
    """A message received from the messaging gateway"""
    message_id: str
    sender_id: str
    body: str
    reply: ReplyFn
    has_media: bool = False
    media_type: Optional[MediaType] = None
    received_at: float = field(default_factory=time.time)

    @property
    def normalized_text(self) -> str:
        return (self.body or "").lower().strip()
