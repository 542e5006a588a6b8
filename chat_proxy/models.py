from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

ChatProvider = Literal["openai", "gemini", "claude"]
ChatRole = Literal["system", "user", "assistant"]


class _CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatImage(_CamelModel):
    """Image returned by a multimodal model; url may be a data URL or a remote URI."""
    model_config = ConfigDict(frozen=True)

    url: str
    alt: Optional[str] = None


class ChatMessage(_CamelModel):
    """One conversation turn. Immutable once constructed."""
    model_config = ConfigDict(frozen=True)

    role: ChatRole
    content: str
    images: Optional[List[ChatImage]] = None


class ChatRequest(_CamelModel):
    """Request payload for the chat and streaming APIs."""
    provider: ChatProvider
    model: str
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class ChatUsage(_CamelModel):
    """Token usage reported by the provider."""
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class ChatResponse(_CamelModel):
    """Response payload returned by the chat API."""
    message: ChatMessage
    usage: Optional[ChatUsage] = None


class HealthProbe(BaseModel):
    """Result of a liveness call against one provider."""
    ok: bool
    error: Optional[str] = None


class ProviderHealth(_CamelModel):
    """Per-provider status shown on the settings screen."""
    has_api_key: bool
    ok: Optional[bool] = None
    error: Optional[str] = None
    implemented: Optional[bool] = None


class HealthReport(_CamelModel):
    providers: Dict[str, ProviderHealth]


class LoginRequest(BaseModel):
    password: str
