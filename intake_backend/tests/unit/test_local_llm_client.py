import json

import httpx
import pytest

from intake_backend.services import local_llm_client
from intake_backend.services.local_llm_client import LocalLLMClient, extract_json_from_text


def test_extract_json_from_text_handles_think_prefix():
    payload = "<think>reasoning...</think>\n{\"big_five\": {}}"
    parsed = extract_json_from_text(payload)
    assert parsed == {"big_five": {}}


def test_extract_json_from_text_handles_trailing_non_json_text():
    payload = "{\"needs_follow_up\": true}\nextra trailing notes"
    parsed = extract_json_from_text(payload)
    assert parsed["needs_follow_up"] is True


def test_extract_json_from_text_raises_on_missing_json():
    with pytest.raises(Exception):
        extract_json_from_text("<think>only reasoning without payload</think>")


def _patch_transport(monkeypatch, handler):
    real_client = httpx.AsyncClient
    transport = httpx.MockTransport(handler)
    monkeypatch.setattr(
        local_llm_client.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=transport, **kwargs),
    )


@pytest.mark.asyncio
async def test_chat_retries_without_response_format(monkeypatch):
    monkeypatch.setattr(local_llm_client, "_JSON_OBJECT_UNSUPPORTED_BASE_URLS", set())
    payloads = []

    def handler(request):
        body = json.loads(request.content)
        payloads.append(body)
        if "response_format" in body:
            return httpx.Response(400, text="response_format is not supported")
        return httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})

    _patch_transport(monkeypatch, handler)
    client = LocalLLMClient("http://llm.local:1234/")

    response = await client.chat("qwen", [{"role": "user", "content": "hi"}])

    assert response["choices"][0]["message"]["content"] == "{}"
    assert payloads[0]["response_format"] == {"type": "json_object"}
    assert "response_format" not in payloads[1]
    assert "http://llm.local:1234" in local_llm_client._JSON_OBJECT_UNSUPPORTED_BASE_URLS


@pytest.mark.asyncio
async def test_chat_without_json_raises_status_errors(monkeypatch):
    monkeypatch.setattr(local_llm_client, "_JSON_OBJECT_UNSUPPORTED_BASE_URLS", set())
    _patch_transport(monkeypatch, lambda request: httpx.Response(500, text="server error"))
    client = LocalLLMClient("http://llm.local:1234")

    with pytest.raises(httpx.HTTPStatusError):
        await client.chat("qwen", [], json_response=False)
