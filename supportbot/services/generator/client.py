"""Async client for the Generative Language REST API."""

import asyncio
from typing import Optional

import aiohttp

from supportbot.config.models import GeneratorConfig
from supportbot.common.logging import setup_logging

logger = setup_logging("generator")


class GeneratorError(Exception):
    """Base exception for response generation"""
    pass


class GeneratorTimeout(GeneratorError):
    """Raised when the model did not answer within the allotted time"""
    pass


class GeminiClient:
    """Thin wrapper around models/{model}:generateContent"""

    def __init__(self, config: GeneratorConfig):
        self.config = config
        self.host = config.host.rstrip('/')
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=10, limit_per_host=5)
            )
        return self._session

    async def generate(self, prompt: str, timeout: Optional[float] = None) -> str:
        """Generate a completion for prompt.

        Raises:
            GeneratorTimeout: the request did not finish within timeout seconds
            GeneratorError: any other failure (HTTP error, empty/blocked answer)
        """
        timeout = self.config.timeout if timeout is None else timeout
        session = await self._get_session()

        url = f"{self.host}/v1beta/models/{self.config.model}:generateContent"
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        headers = {"x-goog-api-key": self.config.api_key}

        try:
            async with session.post(
                url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout)
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise GeneratorError(f"Generative API error {response.status}: {text[:200]}")
                data = await response.json()

        except asyncio.TimeoutError:
            raise GeneratorTimeout(f"Generation timed out after {timeout}s")
        except aiohttp.ClientError as e:
            raise GeneratorError(f"HTTP request failed: {e}")

        return self._extract_text(data)

    @staticmethod
    def _extract_text(data: dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback", {})
            raise GeneratorError(f"No candidates returned (feedback={feedback})")
        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts).strip()
        if not text:
            raise GeneratorError("Empty response from model")
        return text

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Generator HTTP session closed")
