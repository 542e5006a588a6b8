from __future__ import annotations

from typing import Optional


class ConfigurationError(RuntimeError):
    """A secret or API key needed by the requested operation is not configured."""


class UnsupportedProviderError(Exception):
    """The requested provider is declared but has no client implementation."""

    def __init__(self, provider: str, message: Optional[str] = None) -> None:
        super().__init__(message or f'Provider "{provider}" is not implemented yet.')
        self.provider = provider


class StreamingNotSupportedError(UnsupportedProviderError):
    """The requested provider cannot stream responses."""

    def __init__(self, provider: str) -> None:
        super().__init__(provider, f'Streaming is not supported for provider "{provider}".')


class LLMRequestError(RuntimeError):
    """Upstream model call failed. The message never contains credentials."""
