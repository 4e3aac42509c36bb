"""Outbound HTTP helpers: explicit timeouts plus bounded retries.

Every provider call (voice platform, LLM, calendar, hosted crawler) goes
through request_with_retry so a hung or flapping provider cannot stall a
whole background batch.
"""

import logging

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def default_timeout(seconds: float | None = None) -> httpx.Timeout:
    return httpx.Timeout(seconds or settings.HTTP_TIMEOUT_SECONDS)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return False


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int | None = None,
    **kwargs,
) -> httpx.Response:
    """Send a request, retrying transport errors and 429/5xx responses.

    Non-retryable responses (e.g. 400, 401, 404) are returned as-is for the
    caller to inspect. After the last attempt the final error is re-raised.
    """
    attempts = max_attempts or settings.HTTP_MAX_ATTEMPTS
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning("Retrying %s %s (attempt %d/%d)", method, url, attempt.retry_state.attempt_number, attempts)
            response = await client.request(method, url, **kwargs)
            if response.status_code in RETRYABLE_STATUS_CODES:
                response.raise_for_status()
    return response
