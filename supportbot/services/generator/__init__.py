"""Response generation - Generative Language client, datasets and persona prompt."""

from .client import GeminiClient, GeneratorError, GeneratorTimeout
from .engine import ChatHistory, ResponseGenerator
from .knowledge import KnowledgeBase

__all__ = [
    "GeminiClient",
    "GeneratorError",
    "GeneratorTimeout",
    "ResponseGenerator",
    "ChatHistory",
    "KnowledgeBase",
]
