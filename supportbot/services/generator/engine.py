#!/usr/bin/env python3
"""
Response generation for the support bot.

Composes the persona prompt from the most relevant dataset and the
sender's recent history, calls the model once, and appends the purchase
options when the customer shows buying intent. Retrying on timeout is
the caller's decision; this module raises GeneratorTimeout unchanged.

One generate_reply() call shares a single deadline between the dataset
selection and the answer, so `timeout` bounds the whole attempt.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from supportbot.config.models import GeneratorConfig, KnowledgeConfig
from supportbot.common import messages
from supportbot.common.logging import setup_logging
from .client import GeminiClient, GeneratorError, GeneratorTimeout
from .knowledge import KnowledgeBase

logger = setup_logging("generator")

SELECTION_PROMPT = """Tengo los siguientes datasets de información para responder preguntas de clientes.
{datasets}

¿Según la siguiente consulta de usuario, cuál dataset es el más relevante para responder?
Consulta: "{message}"

Responde solo el nombre del archivo más relevante, sin explicación extra."""

PERSONA_PROMPT = """Eres un asistente virtual llamado Electra amigable y profesional de {company}. Tu objetivo es proporcionar la mejor atención posible siguiendo estas pautas:

CONTEXTO RELEVANTE:
{dataset}

Historial del usuario: {history}

RESPONDE A: "{message}"

FORMATO DE RESPUESTA:
- Mantén las respuestas concisas (máximo 4-5 líneas)
- Usa viñetas para listas largas
- Incluye emojis relevantes ocasionalmente"""


def is_purchase_intent(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in messages.PURCHASE_KEYWORDS)


@dataclass
class ChatHistory:
    text: str
    last_seen: float


class ResponseGenerator:
    def __init__(
        self,
        client: GeminiClient,
        knowledge: KnowledgeBase,
        config: GeneratorConfig,
        knowledge_config: KnowledgeConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.knowledge = knowledge
        self.config = config
        self.clock = clock
        self.datasets = {
            knowledge_config.catalogue_file:
                f"Listado de laptops, componentes, accesorios y servicios disponibles en {messages.COMPANY}.",
            knowledge_config.company_file:
                "Información sobre la empresa, misión, visión, políticas, horarios y contacto.",
        }
        self.fallback_dataset = knowledge_config.company_file
        self.histories: Dict[str, ChatHistory] = {}

    async def _call(self, prompt: str, deadline: float) -> str:
        """Run one model call with whatever is left until deadline (loop time)."""
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise GeneratorTimeout("No time left for generation")
        try:
            return await asyncio.wait_for(self.client.generate(prompt, timeout=remaining), remaining)
        except asyncio.TimeoutError:
            raise GeneratorTimeout(f"Generation timed out after {remaining:.1f}s")

    async def select_dataset(self, user_message: str, deadline: float) -> str:
        """Ask the model which dataset answers user_message best.

        Falls back to the company dataset on any error except a timeout,
        which means the attempt's budget is spent.
        """
        listing = "\n".join(f"- {name}: {desc}" for name, desc in self.datasets.items())
        prompt = SELECTION_PROMPT.format(datasets=listing, message=user_message)
        try:
            answer = (await self._call(prompt, deadline)).lower()
        except GeneratorTimeout:
            raise
        except GeneratorError as e:
            logger.warning(f"Dataset selection failed, using {self.fallback_dataset}: {e}")
            return self.fallback_dataset

        for name in self.datasets:
            if name.rsplit(".", 1)[0].lower() in answer:
                return name
        return self.fallback_dataset

    async def generate_reply(self, user_message: str, sender_id: str, timeout: Optional[float] = None) -> str:
        """Generate an answer for sender_id within timeout seconds.

        Raises:
            GeneratorTimeout: the model did not answer in time
            GeneratorError: any other generation failure
        """
        timeout = self.config.timeout if timeout is None else timeout
        deadline = asyncio.get_running_loop().time() + timeout
        entry = self.histories.get(sender_id)
        history = entry.text if entry else ""

        dataset_name = await self.select_dataset(user_message, deadline)
        dataset = self.knowledge.load(dataset_name)

        prompt = PERSONA_PROMPT.format(
            company=messages.COMPANY,
            dataset=dataset,
            history=history,
            message=user_message,
        )
        text = await self._call(prompt, deadline)

        if is_purchase_intent(user_message):
            text += messages.PURCHASE_FOOTER

        keep = self.config.history_chars
        self.histories[sender_id] = ChatHistory(
            text=f"{history[-keep:]}\nUsuario: {user_message}\nBot: {text}".strip(),
            last_seen=self.clock(),
        )
        return text

    def forget(self, sender_id: str):
        self.histories.pop(sender_id, None)

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop histories idle longer than the retention window; returns how many."""
        now = self.clock() if now is None else now
        stale = [
            sender_id for sender_id, entry in self.histories.items()
            if now - entry.last_seen > self.config.history_retention
        ]
        for sender_id in stale:
            del self.histories[sender_id]
        return len(stale)
