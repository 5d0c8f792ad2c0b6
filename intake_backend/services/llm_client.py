"""
Language model facade used by the interviewer and the turn extractor.

`complete(system_prompt, user_prompt)` returns raw text. The call is bounded by
a timeout; every failure (transport, API, timeout, empty output) is raised as
LLMCallError so callers can degrade in one place.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import anthropic
import httpx

from intake_backend.config import ANTHROPIC_API_KEY, REPLY_TIMEOUT_SECONDS
from intake_backend.services.errors import LLMCallError
from intake_backend.services.llm_config import get_env_llm_defaults
from intake_backend.services.local_llm_client import local_chat_text, _preview_text, TRACE_API_CALLS

logger = logging.getLogger(__name__)


class LLMClient:
    def __init__(self, config: Optional[Dict[str, Any]] = None, api_key: Optional[str] = None):
        self.config = config or get_env_llm_defaults()
        self.api_key = api_key or ANTHROPIC_API_KEY
        self._anthropic = None

    @property
    def mode(self) -> str:
        return self.config.get("mode", "online")

    def _anthropic_client(self) -> "anthropic.AsyncAnthropic":
        if self._anthropic is None:
            if not self.api_key:
                raise LLMCallError("ANTHROPIC_API_KEY not found in environment")
            self._anthropic = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._anthropic

    async def _complete_online(self, system_prompt: str, user_prompt: str,
                               max_tokens: int, temperature: float, json_response: bool) -> str:
        message = await self._anthropic_client().messages.create(
            model=self.config.get("online_model"),
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return "".join(
            getattr(block, "text", "") for block in message.content
        )

    async def _complete_local(self, system_prompt: str, user_prompt: str,
                              max_tokens: int, temperature: float, json_response: bool) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return await local_chat_text(
            self.config,
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            json_response=json_response,
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        timeout_seconds: float = REPLY_TIMEOUT_SECONDS,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        json_response: bool = False,
    ) -> str:
        call = self._complete_local if self.mode == "local" else self._complete_online
        try:
            text = await asyncio.wait_for(
                call(system_prompt, user_prompt, max_tokens, temperature, json_response),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("[LLM API] %s call timed out after %ss", self.mode, timeout_seconds)
            raise LLMCallError(f"LLM call timed out after {timeout_seconds}s") from exc
        except (anthropic.APIError, httpx.HTTPError, KeyError, IndexError, ValueError) as exc:
            logger.warning("[LLM API] %s call failed: %s", self.mode, exc)
            raise LLMCallError(str(exc)) from exc

        if not text or not text.strip():
            raise LLMCallError("LLM returned an empty response")
        if TRACE_API_CALLS:
            logger.info("[LLM API] %s completion preview=%s", self.mode, _preview_text(text))
        return text
