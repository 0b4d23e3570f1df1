"""
FastAPI application entry point
"""
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables FIRST, before any other imports
# Explicitly look for .env in the backend directory (parent of app/)
backend_dir = Path(__file__).parent.parent
env_path = backend_dir / ".env"
load_dotenv(dotenv_path=env_path, override=True)

from app.config import get_settings

logging.basicConfig(level=get_settings().log_level)
logging.getLogger("relay").setLevel(logging.INFO)
logging.getLogger("consumer").setLevel(logging.INFO)

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from app.models.errors import InvalidRequest, RelayError
from app.routes import chat

CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"
CORS_ALLOW_METHODS = "POST, GET, OPTIONS"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle — close the shared upstream client on exit."""
    from app.services.relay import close_relay

    yield
    await close_relay()


app = FastAPI(
    title="Study Journal Chat Relay",
    description="Relays chat completions to a user-supplied OpenAI-compatible API",
    version="1.0.0",
    lifespan=lifespan,
)


def cors_headers() -> dict:
    return {
        "Access-Control-Allow-Origin": get_settings().cors_origin,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
    }


# Permissive CORS on every response, errors included; preflight answered here
@app.middleware("http")
async def add_cors_headers(request: Request, call_next):
    headers = cors_headers()
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=headers)
    response = await call_next(request)
    response.headers.update(headers)
    return response


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = InvalidRequest("Invalid request body", details=str(exc.errors()))
    return JSONResponse(status_code=error.status_code, content=error.to_body())


# Include routers
app.include_router(chat.router, tags=["chat"])


@app.get("/")
async def root():
    """Root endpoint - API information"""
    return {
        "service": "Study Journal Chat Relay",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "chat": "/chat (POST)",
            "test_connection": "/test-connection (POST)",
            "docs": "/docs",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": "chat-relay"}
