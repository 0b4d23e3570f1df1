"""
Relay settings loaded from environment variables.

`app.main` loads backend/.env before this module is imported, so values
from the .env file are visible here.
"""
import os
from typing import Optional

from app.models.chat import ChatConfig


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"Environment variable {key} must be a number: {raw!r}") from e


class Settings:
    """Environment-derived configuration for the relay and the consumer."""

    def __init__(self) -> None:
        self.cors_origin = os.getenv("CORS_ORIGIN", "*")
        self.upstream_connect_timeout = _float_env("UPSTREAM_CONNECT_TIMEOUT", 30.0)
        self.upstream_read_timeout = _float_env("UPSTREAM_READ_TIMEOUT", 300.0)
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.chat_relay_url = os.getenv("CHAT_RELAY_URL", "http://localhost:8000/chat")


def get_settings() -> Settings:
    """Read settings at call time so tests can adjust the environment."""
    return Settings()


def load_llm_settings() -> Optional[ChatConfig]:
    """
    Resolve the user's LLM settings (base URL, API key, model name).

    Returns None when nothing is configured. Partially filled settings are
    returned as-is; the consumer reports them as not configured.
    """
    base_url = os.getenv("LLM_BASE_URL", "").strip()
    api_key = os.getenv("LLM_API_KEY", "").strip()
    model_name = os.getenv("LLM_MODEL_NAME", "").strip()
    if not (base_url or api_key or model_name):
        return None
    return ChatConfig(
        base_url=base_url,
        api_key=api_key,
        model_name=model_name,
        system_prompt=os.getenv("LLM_SYSTEM_PROMPT") or None,
    )
