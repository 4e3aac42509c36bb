"""Tests for the voice platform upload client."""

import json

import httpx
import pytest

from app.services.vapi import VapiClient


def _client(handler) -> VapiClient:
    return VapiClient(api_key="vapi-key", base_url="https://vapi.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_upload_file_returns_file_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        request.read()
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = request.content
        return httpx.Response(201, json={"id": "file-123", "url": "https://storage/file-123"})

    file_id = await _client(handler).upload_file("Knowledge text é", "Acme_KB_Part_1.txt")

    assert file_id == "file-123"
    assert seen["method"] == "POST"
    assert seen["url"] == "https://vapi.test/file"
    assert seen["auth"] == "Bearer vapi-key"
    assert b'filename="Acme_KB_Part_1.txt"' in seen["body"]
    assert "Knowledge text é".encode("utf-8") in seen["body"]
    assert b'name="name"\r\n\r\nAcme_KB_Part_1\r\n' in seen["body"]


@pytest.mark.asyncio
async def test_upload_file_returns_none_on_client_error():
    client = _client(lambda request: httpx.Response(401, text="<!DOCTYPE html><html>Unauthorized</html>"))
    assert await client.upload_file("content", "Acme_KB_Part_1.txt") is None


@pytest.mark.asyncio
async def test_upload_file_retries_transient_errors():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"id": "file-after-retry"})

    assert await _client(handler).upload_file("content", "Acme_KB_Part_1.txt") == "file-after-retry"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_upload_file_gives_up_after_bounded_attempts():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    assert await client.upload_file("content", "Acme_KB_Part_1.txt") is None
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_upload_file_without_api_key():
    client = VapiClient(api_key="", base_url="https://vapi.test")
    assert await client.upload_file("content", "Acme_KB_Part_1.txt") is None


@pytest.mark.asyncio
async def test_attach_knowledge_files_patches_model():
    patches = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"id": "asst-1", "model": {"provider": "openai", "model": "gpt-4o"}})
        patches.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "asst-1"})

    ok = await _client(handler).attach_knowledge_files("asst-1", ["file-1", "file-2"])

    assert ok is True
    assert patches == [{
        "model": {
            "provider": "openai",
            "model": "gpt-4o",
            "knowledgeBase": {"provider": "canonical", "fileIds": ["file-1", "file-2"]},
        }
    }]


@pytest.mark.asyncio
async def test_attach_knowledge_files_unknown_assistant():
    client = _client(lambda request: httpx.Response(404, json={"message": "Not Found"}))
    assert await client.attach_knowledge_files("missing", ["file-1"]) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[{"id": "file-1"}], "file-1", None, {"url": "https://storage/x"}])
async def test_upload_file_without_id_object_returns_none(body):
    client = _client(lambda request: httpx.Response(200, json=body))
    assert await client.upload_file("content", "Acme_KB_Part_1.txt") is None


@pytest.mark.asyncio
async def test_attach_knowledge_files_unexpected_assistant_payload():
    patches = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=["asst-1"])
        patches.append(request)
        return httpx.Response(200, json={"id": "asst-1"})

    assert await _client(handler).attach_knowledge_files("asst-1", ["file-1"]) is False
    assert patches == []
