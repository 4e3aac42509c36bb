"""
Voice-assistant platform (Vapi) client.

Only two operations are used by the pipelines: uploading a knowledge file
to the platform's file store, and pointing an assistant's knowledge base
at a set of uploaded files.
"""

import logging
from typing import Optional

import httpx

from app.core.config import settings
from app.utils.http import default_timeout, request_with_retry

logger = logging.getLogger(__name__)


class VapiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.VAPI_API_KEY
        self.base_url = (base_url or settings.VAPI_BASE_URL).rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=default_timeout(),
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    async def upload_file(self, content: str, file_name: str) -> Optional[str]:
        """Upload a text file and return its platform file ID, or None on failure."""
        if not self.api_key:
            logger.error("VAPI_API_KEY not configured, cannot upload %s", file_name)
            return None

        data = content.encode("utf-8")
        logger.info("Uploading knowledge base file: %s (%d bytes)", file_name, len(data))

        try:
            async with self._client() as client:
                response = await request_with_retry(
                    client,
                    "POST",
                    f"{self.base_url}/file",
                    files={"file": (file_name, data, "text/plain")},
                    data={"name": file_name.removesuffix(".txt")},
                )
        except httpx.HTTPError as e:
            logger.error("Error uploading %s to Vapi: %s", file_name, e)
            return None

        if response.status_code >= 400:
            logger.error("Failed to upload %s to Vapi: %s - %s", file_name, response.status_code, response.text[:200])
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.error("Invalid JSON in Vapi upload response for %s", file_name)
            return None

        file_id = payload.get("id") if isinstance(payload, dict) else None
        if not file_id:
            logger.error("Vapi upload response for %s has no file id", file_name)
            return None

        logger.info("File uploaded successfully: %s", file_id)
        return file_id

    async def attach_knowledge_files(self, assistant_id: str, file_ids: list[str]) -> bool:
        """Replace the assistant's knowledge base with the given files."""
        if not self.api_key:
            logger.error("VAPI_API_KEY not configured, cannot update assistant %s", assistant_id)
            return False

        url = f"{self.base_url}/assistant/{assistant_id}"
        try:
            async with self._client() as client:
                current = await request_with_retry(client, "GET", url)
                if current.status_code >= 400:
                    logger.error("Failed to fetch assistant %s: %s", assistant_id, current.status_code)
                    return False

                assistant = current.json()
                if not isinstance(assistant, dict):
                    logger.error("Unexpected assistant payload for %s", assistant_id)
                    return False
                model = assistant.get("model")
                model = dict(model) if isinstance(model, dict) else {}
                model["knowledgeBase"] = {"provider": "canonical", "fileIds": list(file_ids)}

                updated = await request_with_retry(client, "PATCH", url, json={"model": model})
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error updating assistant %s knowledge base: %s", assistant_id, e)
            return False

        if updated.status_code >= 400:
            logger.error("Failed to update assistant %s: %s - %s", assistant_id, updated.status_code, updated.text[:200])
            return False

        logger.info("Updated assistant %s with %d knowledge base files", assistant_id, len(file_ids))
        return True
