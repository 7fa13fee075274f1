"""Text generation through the Gemini generateContent API."""
import logging
from typing import Optional, Protocol

import httpx

from chat_gateway.sessions.errors import DependencyError

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


def compose_prompt(prompt: str, user_text: str) -> str:
    return f"{prompt}\n\nUser message: {user_text}"


class TextGenerator(Protocol):
    async def generate(self, prompt: str, user_text: str) -> str:
        ...


class GeminiTextGenerator:
    """Calls ``models/<model>:generateContent`` and returns the first candidate text."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        timeout: float = 30.0,
        base_url: str = GEMINI_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ValueError("Gemini API key required")
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/{model}:generateContent"
        self._timeout = timeout
        self._transport = transport

    async def generate(self, prompt: str, user_text: str) -> str:
        body = {"contents": [{"parts": [{"text": compose_prompt(prompt, user_text)}]}]}
        headers = {"x-goog-api-key": self._api_key}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise DependencyError(f"Text generator unreachable: {e}") from e
        if response.status_code >= 400:
            raise DependencyError(
                f"Text generator returned {response.status_code}: {response.text[:200]}"
            )
        try:
            text = response.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise DependencyError("Text generator returned no text") from e
        text = (text or "").strip()
        if not text:
            raise DependencyError("Text generator returned no text")
        logger.debug("Generated %d characters", len(text))
        return text
