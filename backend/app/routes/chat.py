"""
Chat relay routes — stateless passthrough to the user's LLM endpoint.
"""
import logging

import httpx
from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from app.models.chat import ChatRequest, ConnectionTestRequest, ConnectionTestResult
from app.models.errors import MissingConfiguration, RelayError
from app.services.relay import StreamedReply, get_relay

log = logging.getLogger("relay")

router = APIRouter()


async def _passthrough(upstream: httpx.Response):
    """Forward upstream bytes as they arrive, closing the upstream afterwards."""
    try:
        async for chunk in upstream.aiter_bytes():
            yield chunk
    finally:
        await upstream.aclose()


@router.post("/chat")
async def chat_endpoint(request: ChatRequest):
    """Relay a chat completion; raw SSE passthrough or buffered JSON"""
    try:
        result = await get_relay().relay(request)
    except RelayError:
        raise
    except Exception as e:
        log.exception("Chat relay error")
        raise RelayError(str(e) or "Unknown error") from e

    if isinstance(result, StreamedReply):
        upstream = result.response
        return StreamingResponse(
            _passthrough(upstream),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
            # covers a client that disconnects before the body is iterated
            background=BackgroundTask(upstream.aclose),
        )

    return Response(content=result.body, media_type="application/json")


@router.post("/test-connection", response_model=ConnectionTestResult, response_model_exclude_none=True)
async def test_connection_endpoint(request: ConnectionTestRequest):
    """Check that a base URL / API key / model triple answers a tiny completion"""
    try:
        return await get_relay().test_connection(request)
    except MissingConfiguration as e:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Missing required fields", "kind": e.kind},
        )
    except Exception as e:
        log.exception("Connection test error")
        return ConnectionTestResult(success=False, error=str(e) or "Connection failed")
