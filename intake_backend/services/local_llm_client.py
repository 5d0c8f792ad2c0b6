"""
Client for a locally hosted, OpenAI-compatible chat endpoint (LM Studio,
llama.cpp server, vLLM). Used when the llm_config mode is "local".
"""

import json
import logging
import os
import re
from typing import Any, Dict, Iterator, Optional, Tuple

import httpx

from intake_backend.services.llm_config import get_env_llm_defaults

logger = logging.getLogger("intake_backend")

_CLIENT_CACHE: Dict[Tuple[str, float, bool], "LocalLLMClient"] = {}
# Servers that answered 4xx/5xx to response_format={"type": "json_object"}
_JSON_OBJECT_UNSUPPORTED_BASE_URLS: set[str] = set()

TRACE_API_CALLS = os.getenv("TRACE_API_CALLS", "true").strip().lower() in {"1", "true", "yes", "on"}
API_LOG_PREVIEW_CHARS = int(os.getenv("API_LOG_PREVIEW_CHARS", "280"))

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)


def _preview_text(value: Any, limit: int = API_LOG_PREVIEW_CHARS) -> str:
    text = str(value or "")
    if len(text) <= limit:
        return text
    return f"{text[:limit]}...<truncated {len(text) - limit} chars>"


def _json_candidates(normalized: str) -> Iterator[str]:
    yield normalized
    for match in _FENCED_BLOCK.finditer(normalized):
        yield match.group(1).strip()


def extract_json_from_text(text: str) -> Any:
    """Pull the first JSON value out of a model response.

    Accepts bare JSON, fenced ```json blocks, and JSON embedded in prose.
    Reasoning wrappers (<think>...</think>) are discarded first. Raises
    json.JSONDecodeError when nothing decodes.
    """
    if text is None:
        raise ValueError("LLM response text is empty")

    normalized = _THINK_BLOCK.sub("", str(text)).strip()
    if not normalized:
        raise json.JSONDecodeError("No JSON object found", str(text), 0)

    for candidate in _json_candidates(normalized):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    # Prose around the payload: decode from the first brace/bracket that parses.
    decoder = json.JSONDecoder()
    for index, char in enumerate(normalized):
        if char in "{[":
            try:
                return decoder.raw_decode(normalized, index)[0]
            except json.JSONDecodeError:
                continue

    raise json.JSONDecodeError("No JSON object found", normalized, 0)


def get_local_client(config: Optional[Dict[str, Any]] = None) -> "LocalLLMClient":
    """One client per (base_url, timeout, json_mode)."""
    resolved = config or get_env_llm_defaults()
    key = (
        str(resolved.get("base_url", "")).rstrip("/"),
        float(resolved.get("timeout_seconds", 120)),
        bool(resolved.get("json_mode", True)),
    )
    client = _CLIENT_CACHE.get(key)
    if client is None:
        base_url, timeout, json_mode = key
        client = _CLIENT_CACHE[key] = LocalLLMClient(base_url, timeout_seconds=timeout, json_mode=json_mode)
    return client


class LocalLLMClient:
    """Client for an OpenAI-compatible /v1/chat/completions endpoint."""

    def __init__(self, base_url: str, timeout_seconds: float = 120, json_mode: bool = True) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.json_mode = json_mode

    @property
    def chat_url(self) -> str:
        return f"{self.base_url}/v1/chat/completions"

    def _response_format(self, requested: Optional[Dict[str, Any]], json_response: bool) -> Optional[Dict[str, Any]]:
        if requested:
            return requested
        if json_response and self.json_mode and self.base_url not in _JSON_OBJECT_UNSUPPORTED_BASE_URLS:
            return {"type": "json_object"}
        return None

    async def _post(self, client: httpx.AsyncClient, payload: Dict[str, Any], label: str) -> Dict[str, Any]:
        response = await client.post(self.chat_url, json=payload)
        response.raise_for_status()
        if TRACE_API_CALLS:
            logger.info(
                "[LLM API] %s %s=%s preview=%s",
                self.chat_url, label, response.status_code, _preview_text(response.text),
            )
        return response.json()

    async def chat(
        self,
        model: str,
        messages: list,
        temperature: float = 0.3,
        max_tokens: int = 2048,
        response_format: Optional[Dict[str, Any]] = None,
        json_response: bool = True,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        fmt = self._response_format(response_format, json_response)
        if fmt:
            payload["response_format"] = fmt

        if TRACE_API_CALLS:
            logger.info(
                "[LLM API] POST %s model=%s messages=%d json_mode=%s",
                self.chat_url, model, len(messages or []), (fmt or {}).get("type", "none"),
            )

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            try:
                return await self._post(client, payload, "status")
            except httpx.HTTPStatusError as exc:
                if fmt is None:
                    raise
                logger.warning(
                    "[LLM API] %s rejected response_format (%s); retrying without it",
                    self.base_url, _preview_text(exc.response.text),
                )
                _JSON_OBJECT_UNSUPPORTED_BASE_URLS.add(self.base_url)
                payload.pop("response_format")
                return await self._post(client, payload, "retry_status")


async def local_chat_text(
    config: Dict[str, Any],
    messages: list,
    temperature: float = 0.3,
    max_tokens: int = 2048,
    json_response: bool = True,
) -> str:
    """Assistant text of one chat completion against the configured local server."""
    response = await get_local_client(config).chat(
        model=config.get("chat_model", "qwen2.5-14b-instruct"),
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens,
        json_response=json_response,
    )
    return response["choices"][0]["message"]["content"] or ""
