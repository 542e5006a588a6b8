from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import google.generativeai as genai

from .config import Settings
from .errors import ConfigurationError, LLMRequestError, StreamingNotSupportedError
from .models import ChatImage, ChatMessage, ChatRequest, ChatResponse, ChatUsage, HealthProbe

PROVIDER_ID = "gemini"
GENERATED_IMAGE_ALT = "Generated image"
DEFAULT_IMAGE_MIME = "image/png"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class InlineDataPart:
    mime_type: str
    data: str


@dataclass(frozen=True)
class FileDataPart:
    uri: str


ResponsePart = Union[TextPart, InlineDataPart, FileDataPart]


class GeminiClient:
    """Thin wrapper around the Gemini SDK for chat, streaming, and health probes."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK API key and holds model instances.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ConfigurationError if GEMINI_API_KEY is missing.
        If Removed: The gemini provider has no client and chat requests fail.
        Testing Notes: Validate missing key raises and models are cached by name.
        """
        # Resolve the credential once; the instance is shared for the process lifetime.
        if not settings.gemini_api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY is not set. Please configure it in your environment."
            )
        self._api_key = settings.gemini_api_key
        self._health_model = settings.gemini_health_model
        genai.configure(api_key=self._api_key)
        self._models: Dict[str, genai.GenerativeModel] = {}

    def _model(self, name: str, system_instruction: Optional[str] = None) -> genai.GenerativeModel:
        # System instructions are bound at model construction, so only plain models are cached.
        model_name = _normalize_model_name(name)
        if system_instruction:
            return genai.GenerativeModel(model_name, system_instruction=system_instruction)
        if model_name not in self._models:
            self._models[model_name] = genai.GenerativeModel(model_name)
        return self._models[model_name]

    def _redact(self, message: str) -> str:
        return message.replace(self._api_key, "***") if self._api_key else message

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Purpose: Generate one complete assistant reply for a chat request.
        Inputs/Outputs: Input is ChatRequest; output is ChatResponse with text, images, usage.
        Side Effects / State: Network call to the Gemini API; may cache a model instance.
        Dependencies: Uses build_contents, build_system_instruction, and extract_reply.
        Failure Modes: Any upstream failure is raised as LLMRequestError with the key redacted.
        If Removed: The non-streaming chat endpoint has no backend.
        Testing Notes: Stub the SDK model and check text, image, and usage mapping.
        """
        # Build turns and instruction, then call the SDK once.
        if request.provider != PROVIDER_ID:
            raise ValueError(
                f'GeminiClient can only handle provider "gemini" (received: "{request.provider}")'
            )
        model = self._model(request.model, build_system_instruction(request.messages))
        try:
            response = await model.generate_content_async(
                build_contents(request.messages),
                generation_config=build_generation_config(request),
            )
        except Exception as exc:
            raise LLMRequestError(f"Gemini API request failed: {self._redact(str(exc))}") from exc

        text, images = extract_reply(response)
        return ChatResponse(
            message=ChatMessage(role="assistant", content=text, images=images or None),
            usage=extract_usage(response),
        )

    def stream_chat(self, request: ChatRequest) -> AsyncIterator[str]:
        """Return an async iterator of text fragments for the request.

        Provider mismatch is rejected here, before any network call. The
        returned iterator is single-use.
        """
        if request.provider != PROVIDER_ID:
            raise StreamingNotSupportedError(request.provider)
        return self._stream(request)

    async def _stream(self, request: ChatRequest) -> AsyncIterator[str]:
        model = self._model(request.model, build_system_instruction(request.messages))
        try:
            response = await model.generate_content_async(
                build_contents(request.messages),
                generation_config=build_generation_config(request),
                stream=True,
            )
            async for chunk in response:
                fragment = chunk_text(chunk)
                if fragment:
                    yield fragment
        except Exception as exc:
            raise LLMRequestError(
                f"Gemini streaming API request failed: {self._redact(str(exc))}"
            ) from exc

    async def check_health(self) -> HealthProbe:
        """Send a 1-token generation to confirm the key and API are usable."""
        try:
            response = await self._model(self._health_model).generate_content_async(
                [{"role": "user", "parts": [{"text": "ping"}]}],
                generation_config={"max_output_tokens": 1},
            )
        except Exception as exc:
            return HealthProbe(ok=False, error=self._redact(str(exc)) or "Unknown Gemini error")
        if not response:
            return HealthProbe(ok=False, error="Empty response from Gemini")
        return HealthProbe(ok=True)


def build_contents(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    """Map non-system messages to Gemini turns; assistant becomes model."""
    return [
        {
            "role": "model" if message.role == "assistant" else "user",
            "parts": [{"text": message.content}],
        }
        for message in messages
        if message.role != "system"
    ]


def build_system_instruction(messages: List[ChatMessage]) -> Optional[str]:
    """Join system messages with blank lines; None when nothing remains after trimming."""
    text = "\n\n".join(m.content for m in messages if m.role == "system").strip()
    return text or None


def build_generation_config(request: ChatRequest) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    if request.temperature is not None:
        config["temperature"] = request.temperature
    if request.max_tokens is not None:
        config["max_output_tokens"] = request.max_tokens
    return config


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _decode_part(part: Any) -> Optional[ResponsePart]:
    text = _field(part, "text")
    if isinstance(text, str) and text:
        return TextPart(text)

    inline = _field(part, "inline_data")
    data = _field(inline, "data")
    if isinstance(data, (bytes, bytearray)) and data:
        data = base64.b64encode(bytes(data)).decode("ascii")
    if isinstance(data, str) and data:
        mime_type = _field(inline, "mime_type")
        return InlineDataPart(
            mime_type=mime_type if isinstance(mime_type, str) and mime_type else DEFAULT_IMAGE_MIME,
            data=data,
        )

    uri = _field(_field(part, "file_data"), "file_uri")
    if isinstance(uri, str) and uri:
        return FileDataPart(uri)

    return None


def decode_parts(response: Any) -> List[ResponsePart]:
    """Decode every candidate part into a known variant, dropping anything unrecognized."""
    decoded: List[ResponsePart] = []
    for candidate in _field(response, "candidates") or []:
        for part in _field(_field(candidate, "content"), "parts") or []:
            variant = _decode_part(part)
            if variant is not None:
                decoded.append(variant)
    return decoded


def _quick_text(response: Any) -> str:
    # The SDK's .text accessor raises ValueError when the reply has no text part.
    try:
        text = _field(response, "text")
    except ValueError:
        return ""
    return text if isinstance(text, str) else ""


def extract_reply(response: Any) -> Tuple[str, List[ChatImage]]:
    """Return the reply text and any generated images, in part order."""
    text = _quick_text(response)
    images: List[ChatImage] = []
    for part in decode_parts(response):
        if isinstance(part, TextPart):
            if not text:
                text = part.text
        elif isinstance(part, InlineDataPart):
            images.append(
                ChatImage(url=f"data:{part.mime_type};base64,{part.data}", alt=GENERATED_IMAGE_ALT)
            )
        elif isinstance(part, FileDataPart):
            images.append(ChatImage(url=part.uri, alt=GENERATED_IMAGE_ALT))
    return text, images


def extract_usage(response: Any) -> Optional[ChatUsage]:
    metadata = _field(response, "usage_metadata")
    total = _field(metadata, "total_token_count")
    if not isinstance(total, int):
        return None
    prompt = _field(metadata, "prompt_token_count")
    completion = _field(metadata, "candidates_token_count")
    return ChatUsage(
        prompt_tokens=prompt if isinstance(prompt, int) else None,
        completion_tokens=completion if isinstance(completion, int) else None,
        total_tokens=total,
    )


def chunk_text(chunk: Any) -> str:
    """Text carried by one streamed chunk; empty when the chunk holds none."""
    text = _quick_text(chunk)
    if text:
        return text
    return "".join(part.text for part in decode_parts(chunk) if isinstance(part, TextPart))


def _normalize_model_name(name: Optional[str]) -> str:
    """Purpose: Normalize model names by stripping prefix and whitespace.
    Inputs/Outputs: Input is a model name string; output is normalized name.
    Side Effects / State: None.
    Dependencies: None; used by GeminiClient.
    Failure Modes: Returns empty string for falsy input.
    If Removed: Model caching may key the same model under two names.
    Testing Notes: Ensure "models/foo" becomes "foo" and whitespace is trimmed.
    """
    # Strip "models/" prefix and whitespace.
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
