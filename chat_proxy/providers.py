from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Generic, List, Optional, Protocol, TypeVar, Union

from .errors import UnsupportedProviderError
from .models import ChatRequest, ChatResponse, HealthProbe

DEFAULT_PROVIDER_ID = "gemini"
STREAMING_PROVIDERS = frozenset({"gemini"})

# Catalog for the settings screen. Only gemini has a client today.
PROVIDERS: List[Dict[str, object]] = [
    {
        "id": "openai",
        "label": "OpenAI (not implemented)",
        "models": [
            {"id": "gpt-5.1", "label": "GPT-5.1"},
            {"id": "gpt-5-mini", "label": "GPT-5-mini"},
            {"id": "gpt-4.1", "label": "GPT-4.1 (previous generation)"},
        ],
    },
    {
        "id": "gemini",
        "label": "Gemini",
        "models": [
            {"id": "gemini-2.5-flash", "label": "Gemini 2.5 Flash (fast)"},
            {"id": "gemini-2.5-pro", "label": "Gemini 2.5 Pro"},
            {"id": "gemini-3-pro-preview", "label": "Gemini 3 Pro Preview (multimodal, preview)"},
            {"id": "gemini-3-pro-image-preview", "label": "Gemini 3 Pro Image Preview"},
            {"id": "gemini-2.5-flash-image", "label": "Gemini 2.5 Flash Image"},
        ],
    },
    {
        "id": "claude",
        "label": "Claude (not implemented)",
        "models": [
            {"id": "claude-sonnet-4-5", "label": "Claude Sonnet 4.5"},
            {"id": "claude-3-5-haiku-latest", "label": "Claude 3.5 Haiku Latest (fast)"},
        ],
    },
]

DEFAULT_MODEL_BY_PROVIDER: Dict[str, str] = {
    "openai": "gpt-5-mini",
    "gemini": "gemini-3-pro-preview",
    "claude": "claude-sonnet-4-5",
}


class ChatClient(Protocol):
    """Operations every provider client exposes to the HTTP layer."""

    async def chat(self, request: ChatRequest) -> ChatResponse:
        ...

    def stream_chat(self, request: ChatRequest) -> AsyncIterator[str]:
        ...

    async def check_health(self) -> HealthProbe:
        ...


T = TypeVar("T")


class LazyClient(Generic[T]):
    """Builds a client on first use and returns the same instance afterwards.

    A factory that raises leaves the holder empty, so the next call retries.
    """

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory
        self._instance: Optional[T] = None

    @property
    def is_built(self) -> bool:
        return self._instance is not None

    def get(self) -> T:
        if self._instance is None:
            self._instance = self._factory()
        return self._instance


@dataclass(frozen=True)
class ResolvedClient:
    client: ChatClient


@dataclass(frozen=True)
class UnsupportedProvider:
    provider: str


ClientLookup = Union[ResolvedClient, UnsupportedProvider]


class ProviderRegistry:
    """Closed provider-id to client dispatch; there is no fallback provider."""

    def __init__(self, gemini: LazyClient[ChatClient]) -> None:
        self._gemini = gemini

    def lookup(self, provider: str) -> ClientLookup:
        """Resolve provider to its client or to UnsupportedProvider.

        Building the gemini client may raise ConfigurationError.
        """
        if provider == "gemini":
            return ResolvedClient(self._gemini.get())
        return UnsupportedProvider(provider)

    def get_client(self, provider: str) -> ChatClient:
        """Raising form of lookup()."""
        result = self.lookup(provider)
        if isinstance(result, UnsupportedProvider):
            raise UnsupportedProviderError(result.provider)
        return result.client
