"""
Streaming consumer for the chat relay.

Sends one conversation turn to the relay, decodes the Server-Sent-Events
stream into text deltas as bytes arrive, and returns the accumulated reply.

Decoding rules:
- bytes are decoded incrementally, so a multi-byte character split across
  two network chunks survives;
- only complete `\\n`-terminated lines are processed, the trailing fragment
  waits for the next chunk and is dropped at end of stream;
- `data: [DONE]` and non-`data: ` lines are ignored;
- frames that are not valid JSON are skipped without raising.
"""
import asyncio
import codecs
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import httpx

from app.config import get_settings, load_llm_settings
from app.models.chat import ChatConfig, ChatMessage
from app.models.errors import (
    NetworkFailure,
    NotConfigured,
    RequestCancelled,
    RequestTimeout,
    UpstreamError,
    error_from_body,
)

log = logging.getLogger("consumer")

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

DeltaCallback = Callable[[str], Union[None, Awaitable[None]]]
MessageLike = Union[ChatMessage, Dict[str, Any]]


# ── SSE decoding ──


def _delta_content(frame: Any) -> Optional[str]:
    """choices[0].delta.content, or None when the frame has another shape."""
    if not isinstance(frame, dict):
        return None
    choices = frame.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def parse_sse_line(line: str) -> Optional[str]:
    """Return the text delta carried by one complete SSE line, if any."""
    if not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX):].strip()
    if data == DONE_SENTINEL:
        return None
    try:
        frame = json.loads(data)
    except ValueError:
        log.debug("Skipping malformed SSE frame: %r", data[:200])
        return None
    return _delta_content(frame) or None


class SSEDeltaDecoder:
    """Incremental bytes -> text deltas decoder for one response stream."""

    def __init__(self) -> None:
        # invalid bytes become U+FFFD so one bad frame cannot end the turn
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        deltas = []
        for line in lines:
            delta = parse_sse_line(line)
            if delta:
                deltas.append(delta)
        return deltas

    @property
    def pending(self) -> str:
        """Unterminated trailing fragment held for the next chunk."""
        return self._buffer


# ── Buffered fallback ──


def _buffered_content(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamError("Relay returned a response that is not JSON", details=response.text) from e

    if isinstance(data, dict) and data.get("error"):
        error = data["error"]
        if isinstance(error, dict):
            error = error.get("message") or json.dumps(error)
        raise UpstreamError(str(error))

    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content or ""


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _wire_message(message: MessageLike) -> Dict[str, str]:
    if isinstance(message, ChatMessage):
        return {"role": message.role, "content": message.content}
    return {"role": message["role"], "content": message["content"]}


# ── Consumer ──


class ChatStreamConsumer:
    """
    Client side of the chat relay.

    One instance may serve many conversations; each `send_message` call is
    independent and keeps its accumulated text to itself.
    """

    def __init__(
        self,
        relay_url: Optional[str] = None,
        on_delta: Optional[DeltaCallback] = None,
        timeout: Optional[httpx.Timeout] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.relay_url = relay_url or settings.chat_relay_url
        self.on_delta = on_delta
        self.timeout = timeout or httpx.Timeout(
            settings.upstream_read_timeout,
            connect=settings.upstream_connect_timeout,
        )
        self._client = client

    @staticmethod
    def is_configured(config: Optional[ChatConfig]) -> bool:
        return config is not None and config.is_complete

    async def send_message(
        self,
        messages: Sequence[MessageLike],
        config: Optional[ChatConfig],
        on_delta: Optional[DeltaCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Send the conversation and return the assistant's full reply.

        Deltas are passed to `on_delta` (then to the consumer-level callback)
        in arrival order. Setting `cancel` aborts the in-flight request and
        raises RequestCancelled. On any failure no partial text is returned.
        """
        if not self.is_configured(config):
            raise NotConfigured()

        body: Dict[str, Any] = {
            "messages": [_wire_message(m) for m in messages],
            "baseUrl": config.base_url,
            "apiKey": config.api_key,
            "modelName": config.model_name,
            "stream": True,
        }
        if config.system_prompt:
            body["systemPrompt"] = config.system_prompt

        callbacks = [cb for cb in (on_delta, self.on_delta) if cb is not None]
        turn = self._send(body, callbacks)
        try:
            if cancel is None:
                return await turn
            return await self._run_cancellable(turn, cancel)
        except Exception as e:
            log.warning("Chat turn failed: %s", e)
            raise

    async def _run_cancellable(self, turn: Awaitable[str], cancel: asyncio.Event) -> str:
        task = asyncio.ensure_future(turn)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if task.cancelled():
            raise RequestCancelled()
        return task.result()

    async def _send(self, body: Dict[str, Any], callbacks: List[DeltaCallback]) -> str:
        if self._client is not None:
            return await self._exchange(self._client, body, callbacks)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._exchange(client, body, callbacks)

    async def _exchange(
        self,
        client: httpx.AsyncClient,
        body: Dict[str, Any],
        callbacks: List[DeltaCallback],
    ) -> str:
        try:
            async with client.stream("POST", self.relay_url, json=body) as response:
                if not response.is_success:
                    await response.aread()
                    raise error_from_body(response.status_code, _error_body(response))

                content_type = response.headers.get("content-type", "")
                if not content_type.startswith("text/event-stream"):
                    await response.aread()
                    return _buffered_content(response)

                return await self._read_stream(response, callbacks)
        except httpx.TimeoutException as e:
            raise RequestTimeout(f"Chat relay timed out: {self.relay_url}") from e
        except httpx.RequestError as e:
            raise NetworkFailure(f"Could not reach chat relay: {self.relay_url}", details=str(e)) from e

    async def _read_stream(self, response: httpx.Response, callbacks: List[DeltaCallback]) -> str:
        decoder = SSEDeltaDecoder()
        full_content = ""
        async for chunk in response.aiter_bytes():
            for delta in decoder.feed(chunk):
                full_content += delta
                for callback in callbacks:
                    result = callback(delta)
                    if inspect.isawaitable(result):
                        await result
        if decoder.pending:
            log.debug("Dropping unterminated trailing fragment: %r", decoder.pending[:200])
        return full_content


async def chat_with_local_settings(
    messages: Sequence[MessageLike],
    on_delta: Optional[DeltaCallback] = None,
    consumer: Optional[ChatStreamConsumer] = None,
    cancel: Optional[asyncio.Event] = None,
) -> str:
    """Run one turn with the LLM settings saved in the environment."""
    consumer = consumer or ChatStreamConsumer()
    return await consumer.send_message(messages, load_llm_settings(), on_delta=on_delta, cancel=cancel)
