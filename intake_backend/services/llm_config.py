"""
LLM settings: environment defaults, optionally overridden by the `llm_config`
row of app_settings.

    mode            "online" (Anthropic) | "local" (OpenAI-compatible server)
    online_model    Anthropic model id
    base_url        local server root, without trailing slash
    chat_model      local model id
    json_mode       ask the local server for response_format=json_object
    timeout_seconds local HTTP timeout
"""

import os
from typing import Any, Dict, Optional

from intake_backend.config import ANTHROPIC_MODEL

LLM_CONFIG_KEY = "llm_config"
LOCAL_LLM_BASE_URL = "http://localhost:1234"
LLM_MODES = {"local", "online"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def get_env_llm_defaults() -> Dict[str, Any]:
    return {
        "mode": os.getenv("DEFAULT_LLM_MODE", "online"),
        "online_model": os.getenv("ANTHROPIC_MODEL", ANTHROPIC_MODEL),
        "base_url": os.getenv("LOCAL_LLM_BASE_URL", LOCAL_LLM_BASE_URL),
        "chat_model": os.getenv("LOCAL_LLM_CHAT_MODEL", "qwen2.5-14b-instruct"),
        "json_mode": _to_bool(os.getenv("LOCAL_LLM_JSON_MODE", "true")),
        "timeout_seconds": float(os.getenv("LOCAL_LLM_TIMEOUT_SECONDS", "120")),
    }


def _sanitize(key: str, value: Any, defaults: Dict[str, Any]) -> Optional[Any]:
    """Cleaned override value, or None to keep the default."""
    if key == "json_mode":
        return _to_bool(value)
    if key == "mode":
        normalized = str(value).strip().lower()
        return normalized if normalized in LLM_MODES else defaults["mode"]
    if key == "timeout_seconds":
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            return None
        return seconds if seconds > 0 else None
    return value


def merge_llm_config(overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    config = get_env_llm_defaults()
    if not overrides:
        return config

    for key, value in overrides.items():
        cleaned = _sanitize(key, value, config)
        if cleaned is not None:
            config[key] = cleaned

    config["base_url"] = str(config.get("base_url", "")).strip().rstrip("/")
    return config


async def load_llm_config(store) -> Dict[str, Any]:
    """Environment defaults merged with the stored `llm_config` setting."""
    overrides = await store.get_setting(LLM_CONFIG_KEY)
    return merge_llm_config(overrides if isinstance(overrides, dict) else None)
