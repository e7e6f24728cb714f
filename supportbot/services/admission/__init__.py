"""Message admission - queueing, rate limiting, spam and pause policy."""

from .events import InboundEvent, MediaType, Disposition
from .state import SenderStateStore, RepeatVerdict, RateCounter, RepeatTracker
from .pipeline import AdmissionPipeline
from .janitor import Janitor

__all__ = [
    "InboundEvent",
    "MediaType",
    "Disposition",
    "SenderStateStore",
    "RepeatVerdict",
    "RateCounter",
    "RepeatTracker",
    "AdmissionPipeline",
    "Janitor",
]
