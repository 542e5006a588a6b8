from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, Union

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse, StreamingResponse
from pydantic import ValidationError

from .config import Settings, load_settings
from .gate import AccessGate
from .gemini_client import GeminiClient
from .health import collect_health
from .models import ChatRequest, LoginRequest
from .providers import (
    DEFAULT_MODEL_BY_PROVIDER,
    DEFAULT_PROVIDER_ID,
    PROVIDERS,
    STREAMING_PROVIDERS,
    ChatClient,
    LazyClient,
    ProviderRegistry,
    UnsupportedProvider,
)
from .session import SESSION_COOKIE_NAME, SESSION_MAX_AGE_SECONDS, SessionAuthenticator
from .streaming import relay
from .validation import is_chat_request

BASE_DIR = Path(__file__).resolve().parent
FRONTEND_DIR = (BASE_DIR / ".." / "frontend").resolve()

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("chat_proxy").setLevel(log_level)
logger = logging.getLogger("chat_proxy.api")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

INVALID_JSON = "Invalid JSON body"
INVALID_PAYLOAD = "Invalid chat request payload"
CHAT_FAILED = "LLM chat request failed."

router = APIRouter()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_authenticator(request: Request) -> SessionAuthenticator:
    return request.app.state.authenticator


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _reject_constant(name: str) -> float:
    raise ValueError(f"{name} is not valid JSON")


async def _read_json(request: Request) -> Any:
    # NaN and Infinity are accepted by json.loads but are not JSON.
    return json.loads(await request.body(), parse_constant=_reject_constant)


async def _read_chat_request(request: Request) -> Union[ChatRequest, JSONResponse]:
    """Decode and validate a chat body, or return the 400 response to send instead."""
    try:
        raw = await _read_json(request)
    except ValueError:
        return JSONResponse({"error": INVALID_JSON}, status_code=400)
    if not is_chat_request(raw):
        return JSONResponse({"error": INVALID_PAYLOAD}, status_code=400)
    try:
        return ChatRequest.model_validate(raw)
    except ValidationError:
        return JSONResponse({"error": INVALID_PAYLOAD}, status_code=400)


@router.get("/", include_in_schema=False)
def serve_root() -> RedirectResponse:
    return RedirectResponse("/chat", status_code=302)


@router.get("/chat", include_in_schema=False)
def serve_chat() -> FileResponse:
    return FileResponse(FRONTEND_DIR / "chat.html")


@router.get("/settings", include_in_schema=False)
def serve_settings() -> FileResponse:
    return FileResponse(FRONTEND_DIR / "settings.html")


@router.get("/login", include_in_schema=False)
def serve_login() -> FileResponse:
    return FileResponse(FRONTEND_DIR / "login.html")


@router.post("/api/login")
async def login(
    request: Request,
    settings: Settings = Depends(get_settings),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
) -> JSONResponse:
    """Purpose: Exchange the shared password for a signed session cookie.
    Inputs/Outputs: Input is JSON {password}; output is {ok} with 200 or 401.
    Side Effects / State: Sets the app_auth cookie on success; nothing is stored server-side.
    Dependencies: SessionAuthenticator.check_password and create_session.
    Failure Modes: Bad JSON or a wrong password both yield 401 with no cookie.
    If Removed: No one can obtain a session and every gated page redirects forever.
    Testing Notes: Log in, then request /chat with the returned cookie.
    """
    # A body that is not JSON is treated like an empty one.
    try:
        payload = LoginRequest.model_validate(await _read_json(request))
    except (ValueError, ValidationError):
        payload = None

    if payload is None or not authenticator.check_password(payload.password):
        logger.warning("login failed client=%s", request.client.host if request.client else "-")
        return JSONResponse({"ok": False, "message": "Invalid credentials"}, status_code=401)

    response = JSONResponse({"ok": True})
    response.set_cookie(
        SESSION_COOKIE_NAME,
        authenticator.create_session(),
        max_age=SESSION_MAX_AGE_SECONDS,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    logger.info("login succeeded")
    return response


@router.post("/api/logout")
def logout(settings: Settings = Depends(get_settings)) -> JSONResponse:
    response = JSONResponse({"ok": True})
    response.delete_cookie(
        SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return response


@router.post("/api/llm/chat")
async def chat(
    request: Request,
    registry: ProviderRegistry = Depends(get_registry),
) -> JSONResponse:
    """Purpose: Handle one non-streaming chat turn through the selected provider.
    Inputs/Outputs: Input is a ChatRequest body; output is ChatResponse JSON or an error body.
    Side Effects / State: Calls the upstream model; may build the shared client.
    Dependencies: is_chat_request, ProviderRegistry.lookup, ChatClient.chat.
    Failure Modes: 400 for bad bodies, 501 for unimplemented providers, 500 for upstream
        or configuration failures. Details stay in the server log.
    If Removed: The chat screen cannot get replies.
    Testing Notes: Stub the client and check status codes and camelCase output.
    """
    # Validate first; nothing below runs for malformed bodies.
    body = await _read_chat_request(request)
    if isinstance(body, JSONResponse):
        return body

    started = time.perf_counter()
    try:
        lookup = registry.lookup(body.provider)
        if isinstance(lookup, UnsupportedProvider):
            logger.warning(
                "llm-chat unsupported provider=%s duration_ms=%d",
                lookup.provider,
                _elapsed_ms(started),
            )
            return JSONResponse(
                {"error": "Selected provider is not supported yet.", "provider": lookup.provider},
                status_code=501,
            )
        result = await lookup.client.chat(body)
    except Exception as exc:
        logger.error(
            "llm-chat error provider=%s model=%s duration_ms=%d error=%s",
            body.provider,
            body.model,
            _elapsed_ms(started),
            exc,
        )
        return JSONResponse({"error": CHAT_FAILED}, status_code=500)

    logger.info(
        "llm-chat success provider=%s model=%s duration_ms=%d",
        body.provider,
        body.model,
        _elapsed_ms(started),
    )
    return JSONResponse(result.model_dump(by_alias=True, exclude_none=True))


async def _logged_stream(
    fragments: AsyncIterator[str], body: ChatRequest, started: float
) -> AsyncIterator[str]:
    try:
        async for fragment in relay(fragments):
            yield fragment
    except Exception as exc:
        logger.error(
            "llm-chat-stream error provider=%s model=%s duration_ms=%d error=%s",
            body.provider,
            body.model,
            _elapsed_ms(started),
            exc,
        )
        raise
    logger.info(
        "llm-chat-stream success provider=%s model=%s duration_ms=%d",
        body.provider,
        body.model,
        _elapsed_ms(started),
    )


@router.post("/api/llm/chat/stream", response_model=None)
async def chat_stream(
    request: Request,
    registry: ProviderRegistry = Depends(get_registry),
) -> Union[StreamingResponse, JSONResponse]:
    """Relay generated text to the browser as it arrives, as plain UTF-8 text.

    Errors found before the first byte get a JSON status; a failure after that
    aborts the response so the client does not mistake it for a full reply.
    """
    body = await _read_chat_request(request)
    if isinstance(body, JSONResponse):
        return body

    if body.provider not in STREAMING_PROVIDERS:
        logger.warning("llm-chat-stream unsupported provider=%s", body.provider)
        return JSONResponse(
            {"error": "Streaming is currently supported only for provider 'gemini'."},
            status_code=501,
        )

    started = time.perf_counter()
    try:
        fragments = registry.get_client(body.provider).stream_chat(body)
    except Exception as exc:
        logger.error(
            "llm-chat-stream error provider=%s model=%s duration_ms=%d error=%s",
            body.provider,
            body.model,
            _elapsed_ms(started),
            exc,
        )
        return JSONResponse({"error": CHAT_FAILED}, status_code=500)

    return StreamingResponse(
        _logged_stream(fragments, body, started),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache, no-transform"},
    )


@router.get("/api/llm/health")
async def health(
    settings: Settings = Depends(get_settings),
    registry: ProviderRegistry = Depends(get_registry),
) -> JSONResponse:
    report = await collect_health(settings, registry)
    return JSONResponse(report.model_dump(by_alias=True, exclude_none=True))


@router.get("/api/llm/providers")
def list_providers() -> dict:
    return {
        "providers": PROVIDERS,
        "defaultProvider": DEFAULT_PROVIDER_ID,
        "defaultModels": DEFAULT_MODEL_BY_PROVIDER,
    }


def create_app(
    settings: Optional[Settings] = None,
    gemini_factory: Optional[Callable[[], ChatClient]] = None,
) -> FastAPI:
    """Purpose: Assemble the FastAPI app with its gate, routes, and shared client.
    Inputs/Outputs: Optional Settings and gemini client factory; returns a FastAPI app.
    Side Effects / State: Stores settings, registry, and authenticator on app.state.
    Dependencies: AccessGate, ProviderRegistry, LazyClient, SessionAuthenticator.
    Failure Modes: None at construction; a missing API key only fails on first chat call.
    If Removed: Nothing serves HTTP.
    Testing Notes: Pass a stub factory to avoid network calls.
    """
    # Wire the lazily built client into the registry so routes receive it via app.state.
    settings = settings or load_settings()
    if gemini_factory is None:
        gemini_factory = lambda: GeminiClient(settings)  # noqa: E731

    authenticator = SessionAuthenticator(settings)
    application = FastAPI(title="Chat Proxy")
    application.state.settings = settings
    application.state.authenticator = authenticator
    application.state.registry = ProviderRegistry(gemini=LazyClient(gemini_factory))
    application.middleware("http")(AccessGate(authenticator))
    application.include_router(router)
    return application


app = create_app()
