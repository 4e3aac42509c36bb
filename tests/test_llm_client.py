"""Tests for the JSON-mode chat completions client."""

import json

import httpx
import pytest

from app.services.llm import LLMClient, LLMError


def _client(handler) -> LLMClient:
    return LLMClient(api_key="sk-test", base_url="https://llm.test/v1/", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_complete_json_returns_message_content():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": ' {"sentiment_score": 80} '}}]})

    reply = await _client(handler).complete_json("system", "user", model="gpt-4o-mini", temperature=0.3, max_tokens=200)

    assert reply == '{"sentiment_score": 80}'
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert seen["body"]["max_tokens"] == 200
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_unconfigured_client_raises():
    client = LLMClient(api_key="")
    assert client.configured is False
    with pytest.raises(LLMError):
        await client.complete_json("system", "user", model="gpt-4o-mini")


@pytest.mark.asyncio
async def test_error_status_raises():
    client = _client(lambda request: httpx.Response(401, json={"error": {"message": "bad key"}}))
    with pytest.raises(LLMError, match="401"):
        await client.complete_json("system", "user", model="gpt-4o-mini")


@pytest.mark.asyncio
async def test_unexpected_shape_raises():
    client = _client(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(LLMError):
        await client.complete_json("system", "user", model="gpt-4o-mini")
