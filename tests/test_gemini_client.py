import base64
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from chat_proxy.errors import ConfigurationError, LLMRequestError, StreamingNotSupportedError
from chat_proxy.gemini_client import (
    FileDataPart,
    GeminiClient,
    InlineDataPart,
    TextPart,
    _normalize_model_name,
    build_contents,
    build_generation_config,
    build_system_instruction,
    chunk_text,
    decode_parts,
    extract_reply,
    extract_usage,
)
from chat_proxy.models import ChatMessage, ChatRequest, HealthProbe


def _part(**fields):
    base = {"text": None, "inline_data": None, "file_data": None}
    base.update(fields)
    return SimpleNamespace(**base)


def _response(parts, text=None, usage=None):
    return SimpleNamespace(
        text=text,
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))],
        usage_metadata=usage,
    )


class _NoTextResponse:
    """Mimics the SDK accessor that raises when the reply has no text part."""

    def __init__(self, parts):
        self.candidates = [SimpleNamespace(content=SimpleNamespace(parts=parts))]
        self.usage_metadata = None

    @property
    def text(self):
        raise ValueError("The `response.text` quick accessor only works for text parts.")


class _FakeStream:
    def __init__(self, chunks, error=None):
        self._chunks = chunks
        self._error = error

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


def _request(messages=None, **overrides):
    data = {
        "provider": "gemini",
        "model": "gemini-2.5-flash",
        "messages": messages or [ChatMessage(role="user", content="Ping")],
    }
    data.update(overrides)
    return ChatRequest(**data)


@pytest.fixture
def genai_mock():
    with patch("chat_proxy.gemini_client.genai") as mocked:
        mocked.GenerativeModel.return_value.generate_content_async = AsyncMock()
        yield mocked


@pytest.fixture
def upstream(genai_mock):
    return genai_mock.GenerativeModel.return_value.generate_content_async


@pytest.fixture
def gemini(settings, genai_mock):
    return GeminiClient(settings)


class TestTurnBuilding:
    def test_roles_map_and_system_is_dropped(self):
        messages = [
            ChatMessage(role="system", content="Be brief."),
            ChatMessage(role="user", content="Hi"),
            ChatMessage(role="assistant", content="Hello"),
            ChatMessage(role="user", content="Again"),
        ]
        assert build_contents(messages) == [
            {"role": "user", "parts": [{"text": "Hi"}]},
            {"role": "model", "parts": [{"text": "Hello"}]},
            {"role": "user", "parts": [{"text": "Again"}]},
        ]

    def test_system_instruction_joined_and_trimmed(self):
        messages = [
            ChatMessage(role="system", content="  First."),
            ChatMessage(role="user", content="Hi"),
            ChatMessage(role="system", content="Second.  "),
        ]
        assert build_system_instruction(messages) == "First.\n\nSecond."

    def test_system_instruction_omitted_when_blank(self):
        assert build_system_instruction([ChatMessage(role="user", content="Hi")]) is None
        assert build_system_instruction([ChatMessage(role="system", content="   ")]) is None

    def test_generation_config_only_carries_supplied_values(self):
        assert build_generation_config(_request()) == {}
        assert build_generation_config(_request(temperature=0.3, max_tokens=64)) == {
            "temperature": 0.3,
            "max_output_tokens": 64,
        }

    def test_normalize_model_name(self):
        assert _normalize_model_name(" models/gemini-2.5-pro ") == "gemini-2.5-pro"
        assert _normalize_model_name(None) == ""


class TestResponseDecoding:
    def test_decode_known_parts_and_drop_unknown(self):
        response = _response(
            [
                _part(text="Hello"),
                _part(inline_data=SimpleNamespace(mime_type="image/jpeg", data=b"\x00\x01")),
                _part(file_data=SimpleNamespace(file_uri="gs://bucket/img.png")),
                _part(function_call=SimpleNamespace(name="noop")),
                _part(text=""),
            ]
        )
        assert decode_parts(response) == [
            TextPart("Hello"),
            InlineDataPart(mime_type="image/jpeg", data=base64.b64encode(b"\x00\x01").decode("ascii")),
            FileDataPart("gs://bucket/img.png"),
        ]

    def test_decode_accepts_dict_parts(self):
        response = {"candidates": [{"content": {"parts": [{"inline_data": {"data": "QUJD"}}]}}]}
        assert decode_parts(response) == [InlineDataPart(mime_type="image/png", data="QUJD")]

    def test_decode_tolerates_missing_structure(self):
        assert decode_parts(None) == []
        assert decode_parts(SimpleNamespace(candidates=None)) == []
        assert decode_parts(SimpleNamespace(candidates=[SimpleNamespace(content=None)])) == []

    def test_top_level_text_preferred(self):
        text, images = extract_reply(_response([_part(text="part text")], text="top text"))
        assert text == "top text"
        assert images == []

    def test_falls_back_to_first_text_part(self):
        response = _NoTextResponse(
            [
                _part(inline_data=SimpleNamespace(mime_type="image/png", data="QUJD")),
                _part(text="caption"),
                _part(text="later"),
            ]
        )
        text, images = extract_reply(response)
        assert text == "caption"
        assert [image.url for image in images] == ["data:image/png;base64,QUJD"]
        assert images[0].alt == "Generated image"

    def test_file_reference_passes_uri_through(self):
        _, images = extract_reply(_response([_part(file_data=SimpleNamespace(file_uri="https://x/y.png"))]))
        assert images[0].url == "https://x/y.png"

    def test_usage_mapping(self):
        usage = extract_usage(
            _response([], usage=SimpleNamespace(prompt_token_count=3, candidates_token_count=4, total_token_count=7))
        )
        assert usage.total_tokens == 7
        assert usage.prompt_tokens == 3
        assert usage.completion_tokens == 4

    def test_usage_absent(self):
        assert extract_usage(_response([])) is None

    def test_chunk_text(self):
        assert chunk_text(SimpleNamespace(text="abc")) == "abc"
        assert chunk_text(_NoTextResponse([_part(text="a"), _part(text="b")])) == "ab"
        assert chunk_text(_NoTextResponse([])) == ""


class TestGeminiClient:
    def test_missing_api_key_raises_configuration_error(self, settings, genai_mock):
        with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
            GeminiClient(replace(settings, gemini_api_key=""))
        genai_mock.configure.assert_not_called()

    def test_configures_sdk_with_key(self, settings, genai_mock):
        GeminiClient(settings)
        genai_mock.configure.assert_called_once_with(api_key="test-gemini-key")

    @pytest.mark.asyncio
    async def test_chat_maps_reply(self, gemini, upstream):
        upstream.return_value = _response(
            [_part(text="Pong"), _part(inline_data=SimpleNamespace(mime_type="image/png", data="QUJD"))],
            text="Pong",
            usage=SimpleNamespace(prompt_token_count=None, candidates_token_count=None, total_token_count=42),
        )
        result = await gemini.chat(_request(temperature=0.5, max_tokens=10))

        assert result.message.role == "assistant"
        assert result.message.content == "Pong"
        assert result.message.images[0].url == "data:image/png;base64,QUJD"
        assert result.usage.total_tokens == 42
        upstream.assert_awaited_once_with(
            [{"role": "user", "parts": [{"text": "Ping"}]}],
            generation_config={"temperature": 0.5, "max_output_tokens": 10},
        )

    @pytest.mark.asyncio
    async def test_chat_without_images_leaves_images_unset(self, gemini, upstream):
        upstream.return_value = _response([_part(text="Pong")], text="Pong")
        result = await gemini.chat(_request())
        assert result.message.images is None
        assert result.usage is None

    @pytest.mark.asyncio
    async def test_system_instruction_is_bound_to_model(self, gemini, genai_mock, upstream):
        upstream.return_value = _response([], text="ok")
        messages = [
            ChatMessage(role="system", content="Rule one."),
            ChatMessage(role="system", content="Rule two."),
            ChatMessage(role="user", content="Go"),
        ]
        await gemini.chat(_request(messages=messages))
        genai_mock.GenerativeModel.assert_called_with(
            "gemini-2.5-flash", system_instruction="Rule one.\n\nRule two."
        )

    @pytest.mark.asyncio
    async def test_plain_models_are_cached(self, gemini, genai_mock, upstream):
        upstream.return_value = _response([], text="ok")
        await gemini.chat(_request())
        await gemini.chat(_request())
        genai_mock.GenerativeModel.assert_called_once_with("gemini-2.5-flash")

    @pytest.mark.asyncio
    async def test_upstream_error_is_wrapped_and_redacted(self, gemini, upstream):
        upstream.side_effect = RuntimeError("API key test-gemini-key not valid")
        with pytest.raises(LLMRequestError) as excinfo:
            await gemini.chat(_request())
        message = str(excinfo.value)
        assert message.startswith("Gemini API request failed:")
        assert "test-gemini-key" not in message
        assert "***" in message

    @pytest.mark.asyncio
    async def test_chat_rejects_other_providers(self, gemini, upstream):
        with pytest.raises(ValueError):
            await gemini.chat(_request(provider="claude"))
        upstream.assert_not_called()


class TestGeminiStreaming:
    def test_other_provider_fails_before_network(self, gemini, genai_mock, upstream):
        genai_mock.GenerativeModel.reset_mock()
        with pytest.raises(StreamingNotSupportedError) as excinfo:
            gemini.stream_chat(_request(provider="openai"))
        assert excinfo.value.provider == "openai"
        genai_mock.GenerativeModel.assert_not_called()
        upstream.assert_not_called()

    @pytest.mark.asyncio
    async def test_yields_only_non_empty_fragments(self, gemini, upstream):
        upstream.return_value = _FakeStream(
            [SimpleNamespace(text="Hel"), SimpleNamespace(text=""), _NoTextResponse([]), SimpleNamespace(text="lo")]
        )
        fragments = [fragment async for fragment in gemini.stream_chat(_request())]
        assert fragments == ["Hel", "lo"]
        assert upstream.await_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_mid_stream_failure_is_wrapped(self, gemini, upstream):
        upstream.return_value = _FakeStream([SimpleNamespace(text="partial")], error=RuntimeError("reset"))
        received = []
        with pytest.raises(LLMRequestError, match="Gemini streaming API request failed: reset"):
            async for fragment in gemini.stream_chat(_request()):
                received.append(fragment)
        assert received == ["partial"]


class TestGeminiHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, gemini, genai_mock, upstream):
        upstream.return_value = _response([], text="p")
        probe = await gemini.check_health()
        assert probe.ok is True
        assert probe.error is None
        genai_mock.GenerativeModel.assert_called_with("gemini-2.5-flash")
        assert upstream.await_args.kwargs["generation_config"] == {"max_output_tokens": 1}

    @pytest.mark.asyncio
    async def test_failure_reported_without_key(self, gemini, upstream):
        upstream.side_effect = RuntimeError("403 key test-gemini-key revoked")
        probe = await gemini.check_health()
        assert probe.ok is False
        assert "test-gemini-key" not in probe.error

    @pytest.mark.asyncio
    async def test_empty_response(self, gemini, upstream):
        upstream.return_value = None
        probe = await gemini.check_health()
        assert probe == HealthProbe(ok=False, error="Empty response from Gemini")
