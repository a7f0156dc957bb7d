"""
Tests for the Gemini text-generation client.

The google-genai client is replaced by a stub on `_client`, so timeouts and
failure mapping are exercised without network access.
"""
import asyncio
from types import SimpleNamespace

import pytest

from core.exceptions import ExtractionDecodeError, TextGenerationError, TextGenerationTimeout
from services.llm_client import TextGenerationClient


class _StubModels:
    def __init__(self, text="{}", chunks=("hi",), delay=0.0, stall_after_chunks=False, error=None):
        self.text = text
        self.chunks = chunks
        self.delay = delay
        self.stall_after_chunks = stall_after_chunks
        self.error = error
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        await asyncio.sleep(self.delay)
        return SimpleNamespace(text=self.text)

    async def generate_content_stream(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        await asyncio.sleep(self.delay)
        return self._chunks()

    async def _chunks(self):
        for text in self.chunks:
            yield SimpleNamespace(text=text)
        if self.stall_after_chunks:
            await asyncio.sleep(5)


def _client(models, timeout_s=0.05):
    client = TextGenerationClient(api_key="test-key", timeout_s=timeout_s)
    client._client = SimpleNamespace(aio=SimpleNamespace(models=models))
    return client


async def _collect(client):
    return [chunk async for chunk in client.stream_reply("be kind", [("user", "hi")])]


class TestExtract:
    @pytest.mark.asyncio
    async def test_returns_raw_json_text(self):
        models = _StubModels(text=' {"confidence": 90} ')
        raw = await _client(models).extract("prompt", {"type": "OBJECT"}, temperature=0.2)

        assert raw == '{"confidence": 90}'
        config = models.calls[0]["config"]
        assert config.response_mime_type == "application/json"
        assert config.temperature == 0.2

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self):
        with pytest.raises(TextGenerationTimeout):
            await _client(_StubModels(delay=5)).extract("prompt", {"type": "OBJECT"})

    @pytest.mark.asyncio
    async def test_service_error_is_wrapped(self):
        client = _client(_StubModels(error=ConnectionError("reset")))
        with pytest.raises(TextGenerationError) as e:
            await client.extract("prompt", {"type": "OBJECT"})
        assert not isinstance(e.value, TextGenerationTimeout)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", None])
    async def test_empty_response_is_a_decode_error(self, text):
        with pytest.raises(ExtractionDecodeError):
            await _client(_StubModels(text=text)).extract("prompt", {"type": "OBJECT"})

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        client = TextGenerationClient(api_key="")
        with pytest.raises(TextGenerationError, match="GOOGLE_AI_API_KEY"):
            await client.extract("prompt", {"type": "OBJECT"})


class TestStreamReply:
    @pytest.mark.asyncio
    async def test_yields_non_empty_chunks(self):
        models = _StubModels(chunks=("Hello", "", None, " there"))
        assert await _collect(_client(models)) == ["Hello", " there"]
        assert models.calls[0]["config"].system_instruction == "be kind"

    @pytest.mark.asyncio
    async def test_slow_start_times_out(self):
        with pytest.raises(TextGenerationTimeout):
            await _collect(_client(_StubModels(delay=5)))

    @pytest.mark.asyncio
    async def test_each_chunk_wait_is_bounded(self):
        received = []
        with pytest.raises(TextGenerationTimeout):
            async for chunk in _client(_StubModels(chunks=("hi",), stall_after_chunks=True)).stream_reply(
                "be kind", [("user", "hi")]
            ):
                received.append(chunk)
        assert received == ["hi"]

    @pytest.mark.asyncio
    async def test_service_error_is_wrapped(self):
        with pytest.raises(TextGenerationError):
            await _collect(_client(_StubModels(error=RuntimeError("500 from upstream"))))

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        with pytest.raises(TextGenerationError):
            await _collect(TextGenerationClient(api_key=""))


def test_history_roles_map_to_gemini_roles():
    contents = TextGenerationClient._to_contents([
        ("user", "hi"),
        ("assistant", "Welcome back"),
        ("user", "feeling calm"),
    ])
    assert [c.role for c in contents] == ["user", "model", "user"]
    assert [c.parts[0].text for c in contents] == ["hi", "Welcome back", "feeling calm"]
