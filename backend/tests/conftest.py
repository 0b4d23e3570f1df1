"""
Shared fixtures for the test suite.

Key design decisions:
- Uses respx to mock the upstream LLM API (no real HTTP). Any request to a
  URL without a mocked route fails the test.
- Resets the shared relay client between tests.
- Imports the app up front so its .env load happens before the env
  fixtures pin the settings the assertions rely on.
"""
import json
from typing import List, Optional

import pytest
import respx
import httpx
from fastapi.testclient import TestClient

from app.main import app as relay_app

UPSTREAM_BASE = "https://llm.test/v1"
UPSTREAM_URL = f"{UPSTREAM_BASE}/chat/completions"
RELAY_URL = "http://relay.test/chat"


# ── Payload builders ──


def sse_frame(content: Optional[str]) -> str:
    """One `data:` line carrying a chat-completion delta."""
    delta = {} if content is None else {"content": content}
    return "data: " + json.dumps({"choices": [{"index": 0, "delta": delta}]}, ensure_ascii=False) + "\n"


def sse_body(contents: List[str], done: bool = True) -> bytes:
    text = "".join(sse_frame(c) + "\n" for c in contents)
    if done:
        text += "data: [DONE]\n\n"
    return text.encode("utf-8")


def completion(content: str = "Hello there!", model: str = "test-model") -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def relay_payload(**overrides) -> dict:
    payload = {
        "messages": [{"role": "user", "content": "What is a monad?"}],
        "baseUrl": UPSTREAM_BASE,
        "apiKey": "sk-test",
        "modelName": "test-model",
        "stream": False,
    }
    payload.update(overrides)
    return payload


# ── respx mock setup ──


@pytest.fixture(autouse=True)
def upstream():
    """Intercept every outbound httpx call; routes are added per test."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def completions_route(upstream):
    """The upstream /chat/completions route, unconfigured."""
    return upstream.post(UPSTREAM_URL)


# ── Relay state ──


@pytest.fixture(autouse=True)
def reset_relay():
    """Give each test a fresh shared relay client."""
    import app.services.relay as relay_mod

    relay_mod._relay = None
    yield
    relay_mod._relay = None


@pytest.fixture(autouse=True)
def pin_env(monkeypatch):
    """Fixed relay settings, whatever a local .env holds."""
    monkeypatch.setenv("CORS_ORIGIN", "*")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.delenv("UPSTREAM_CONNECT_TIMEOUT", raising=False)
    monkeypatch.delenv("UPSTREAM_READ_TIMEOUT", raising=False)
    monkeypatch.delenv("CHAT_RELAY_URL", raising=False)


@pytest.fixture
def client():
    return TestClient(relay_app)
