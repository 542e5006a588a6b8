from __future__ import annotations

from dataclasses import replace
from typing import List

import pytest
from fastapi.testclient import TestClient

from chat_proxy.app import create_app
from chat_proxy.config import Settings
from chat_proxy.models import ChatMessage, ChatRequest, ChatResponse, ChatUsage, HealthProbe
from chat_proxy.session import SESSION_COOKIE_NAME, SessionAuthenticator


class EchoClient:
    """Stand-in provider client that echoes the last message."""

    def __init__(self) -> None:
        self.fragments: List[str] = ["Hel", "lo"]
        self.stream_error: Exception | None = None
        self.probe = HealthProbe(ok=True)
        self.chat_error: Exception | None = None
        self.requests: List[ChatRequest] = []

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self.chat_error is not None:
            raise self.chat_error
        last = request.messages[-1] if request.messages else None
        return ChatResponse(
            message=ChatMessage(role="assistant", content=f"echo: {last.content}" if last else ""),
            usage=ChatUsage(total_tokens=42),
        )

    def stream_chat(self, request: ChatRequest):
        self.requests.append(request)
        return self._stream()

    async def _stream(self):
        for fragment in self.fragments:
            yield fragment
        if self.stream_error is not None:
            raise self.stream_error

    async def check_health(self) -> HealthProbe:
        return self.probe


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_password="correct horse",
        session_secret="",
        gemini_api_key="test-gemini-key",
        openai_api_key="",
        anthropic_api_key="test-anthropic-key",
        gemini_health_model="gemini-2.5-flash",
        environment="development",
    )


@pytest.fixture
def settings_without_keys(settings: Settings) -> Settings:
    return replace(settings, gemini_api_key="", anthropic_api_key="")


@pytest.fixture
def echo_client() -> EchoClient:
    return EchoClient()


@pytest.fixture
def client(settings: Settings, echo_client: EchoClient):
    app = create_app(settings, gemini_factory=lambda: echo_client)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def authed_client(client: TestClient, settings: Settings) -> TestClient:
    client.cookies.set(SESSION_COOKIE_NAME, SessionAuthenticator(settings).create_session())
    return client
