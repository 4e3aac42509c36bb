"""
Chat-completions client used for sentiment analysis and business-field
extraction. Always requests a JSON object reply.
"""

import logging
from typing import Optional

import httpx

from app.core.config import settings
from app.utils.http import default_timeout, request_with_retry

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """The completion could not be obtained."""


class LLMClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def complete_json(
        self,
        system: str,
        user: str,
        model: str,
        temperature: float = 0.1,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Return the raw message text of a JSON-mode chat completion."""
        if not self.api_key:
            raise LLMError("OpenAI API key not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        async with httpx.AsyncClient(timeout=default_timeout(), transport=self._transport) as client:
            try:
                response = await request_with_retry(
                    client, "POST", f"{self.base_url}/chat/completions", headers=headers, json=payload
                )
            except httpx.HTTPError as e:
                raise LLMError(f"OpenAI request failed: {e}") from e

        if response.status_code != 200:
            raise LLMError(f"OpenAI API error: {response.status_code} - {response.text[:200]}")

        try:
            return response.json()["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise LLMError("Unexpected completion response shape") from e
