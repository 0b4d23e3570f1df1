"""
Chat relay: forwards a conversation to a user-supplied OpenAI-compatible API.

The relay keeps no per-request state. It validates the required settings,
prepends the optional system prompt, makes exactly one upstream POST and
hands back either the still-open upstream stream or the buffered JSON body.
"""
import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

import httpx

from app.config import get_settings
from app.models.chat import ChatMessage, ChatRequest, ConnectionTestRequest, ConnectionTestResult
from app.models.errors import (
    MissingConfiguration,
    NetworkFailure,
    RequestTimeout,
    UpstreamError,
)

log = logging.getLogger("relay")

COMPLETIONS_PATH = "/chat/completions"

# ── Relay results ──


@dataclass
class StreamedReply:
    """Upstream response whose body has not been read yet."""
    response: httpx.Response


@dataclass
class BufferedReply:
    """Fully read upstream body, already checked to be JSON."""
    body: bytes


RelayResult = Union[StreamedReply, BufferedReply]


# ── Request shaping ──


def normalize_endpoint(base_url: str) -> str:
    """Strip one trailing slash and append the completions path."""
    if base_url.endswith("/"):
        base_url = base_url[:-1]
    return f"{base_url}{COMPLETIONS_PATH}"


def build_messages(messages: List[ChatMessage], system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
    """Message list sent upstream, with the system prompt first when given."""
    full = [{"role": m.role, "content": m.content} for m in messages]
    if system_prompt:
        full.insert(0, {"role": "system", "content": system_prompt})
    return full


def _require_settings(base_url: Optional[str], api_key: Optional[str], model_name: Optional[str]) -> None:
    if not base_url or not api_key or not model_name:
        raise MissingConfiguration()


def _connection_error_message(status_code: int) -> str:
    if status_code == 401:
        return "API key is invalid or has expired"
    if status_code == 404:
        return "Endpoint URL is wrong or the model does not exist"
    if status_code == 429:
        return "Too many requests, try again later"
    return f"API returned an error ({status_code})"


class ChatRelay:
    """Async relay to OpenAI-compatible chat completion endpoints."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        settings = get_settings()
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.upstream_read_timeout,
                connect=settings.upstream_connect_timeout,
            ),
            follow_redirects=True,
        )

    async def close(self):
        await self.client.aclose()

    async def relay(self, request: ChatRequest) -> RelayResult:
        """Forward one chat request upstream. Never retries."""
        log.info(
            "Chat request - model=%s messages=%d stream=%s",
            request.model_name, len(request.messages), request.stream,
        )
        _require_settings(request.base_url, request.api_key, request.model_name)

        endpoint = normalize_endpoint(request.base_url)
        payload = {
            "model": request.model_name,
            "messages": build_messages(request.messages, request.system_prompt),
            "stream": request.stream,
        }
        upstream_request = self.client.build_request(
            "POST",
            endpoint,
            json=payload,
            headers={"Authorization": f"Bearer {request.api_key}"},
        )

        log.info("Calling LLM API: %s", endpoint)
        try:
            response = await self.client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            log.error("LLM API timed out: %s", e)
            raise RequestTimeout(f"LLM API timed out: {endpoint}") from e
        except httpx.RequestError as e:
            log.error("LLM API unreachable: %s", e)
            raise NetworkFailure(f"Could not reach LLM API: {endpoint}", details=str(e)) from e

        if not response.is_success:
            try:
                await response.aread()
            finally:
                await response.aclose()
            log.error("LLM API error: %d - %s", response.status_code, response.text)
            raise UpstreamError(
                f"LLM API error: {response.status_code}",
                status_code=response.status_code,
                details=response.text,
            )

        if request.stream:
            return StreamedReply(response=response)

        try:
            body = await response.aread()
        except httpx.TimeoutException as e:
            raise RequestTimeout(f"LLM API timed out: {endpoint}") from e
        except httpx.RequestError as e:
            raise NetworkFailure(f"LLM API connection dropped: {endpoint}", details=str(e)) from e
        finally:
            await response.aclose()

        try:
            json.loads(body)
        except ValueError as e:
            raise UpstreamError(
                "LLM API returned invalid JSON",
                details=body.decode("utf-8", errors="replace"),
            ) from e
        return BufferedReply(body=body)

    async def test_connection(self, request: ConnectionTestRequest) -> ConnectionTestResult:
        """
        Send a minimal completion request to check base URL, key and model.

        Missing fields raise MissingConfiguration; every other outcome is
        reported in the result rather than raised.
        """
        log.info("Testing connection - base_url=%s model=%s", request.base_url, request.model_name)
        _require_settings(request.base_url, request.api_key, request.model_name)

        endpoint = normalize_endpoint(request.base_url)
        try:
            response = await self.client.post(
                endpoint,
                json={
                    "model": request.model_name,
                    "messages": [{"role": "user", "content": "Hi"}],
                    "max_tokens": 5,
                },
                headers={"Authorization": f"Bearer {request.api_key}"},
            )
        except httpx.RequestError as e:
            log.error("Connection test error: %s", e)
            return ConnectionTestResult(
                success=False,
                error="Could not reach the server, check the base URL",
                details=str(e),
            )

        if not response.is_success:
            log.error("Connection test failed: %d - %s", response.status_code, response.text)
            return ConnectionTestResult(
                success=False,
                error=_connection_error_message(response.status_code),
                details=response.text,
            )

        try:
            data = response.json()
        except ValueError:
            return ConnectionTestResult(
                success=False,
                error="API returned a response that is not JSON",
                details=response.text,
            )

        model = data.get("model") if isinstance(data, dict) else None
        log.info("Connection test successful: %s", response.text[:200])
        return ConnectionTestResult(
            success=True,
            message="Connection successful!",
            model=model or request.model_name,
        )


# Global relay instance (lazy initialization)
_relay: Optional[ChatRelay] = None


def get_relay() -> ChatRelay:
    global _relay
    if _relay is None:
        _relay = ChatRelay()
    return _relay


async def close_relay() -> None:
    global _relay
    if _relay is not None:
        await _relay.close()
        _relay = None
