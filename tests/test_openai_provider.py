from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError
from tenacity import wait_none

import ai_fallback.providers.openai_provider as provider_module
from ai_fallback.llm.combined import combine_language_models
from ai_fallback.providers.openai_provider import (
    OpenAIChatModel,
    OpenAIEmbeddingModel,
    OpenAIImageModel,
    OpenAISpeechModel,
    OpenAITranscriptionModel,
    ProviderError,
    map_finish_reason,
)
from ai_fallback.schemas import (
    EmbedOptions,
    FinishReason,
    ImageOptions,
    SpeechOptions,
    StreamPartType,
    TextGenerationOptions,
    TranscriptionOptions,
)

OPTIONS = TextGenerationOptions(
    messages=[{"role": "user", "content": "hi"}],
    temperature=0.2,
    response_format="json",
)


def _completion(content: str | None, finish_reason: str = "stop"):
    return SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content=content),
                finish_reason=finish_reason,
            )
        ],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5),
    )


class FakeDelta:
    def __init__(self, content):
        self.content = content


class FakeChoice:
    def __init__(self, content, finish_reason=None):
        self.delta = FakeDelta(content)
        self.finish_reason = finish_reason


class FakeUsage:
    def __init__(self, prompt, completion):
        self.prompt_tokens = prompt
        self.completion_tokens = completion


class FakeChunk:
    def __init__(self, content=None, finish_reason=None, usage=None):
        self.choices = [FakeChoice(content, finish_reason)] if (content or finish_reason) else []
        self.usage = usage


async def _chunks(*chunks, error: Exception | None = None):
    for c in chunks:
        yield c
    if error is not None:
        raise error


class FakeSDKStream:
    def __init__(self, *chunks):
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)

    async def close(self):
        self.closed = True


def _chat_client(create) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = create
    return client


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(provider_module._call_with_retry.retry, "wait", wait_none())


class TestMapFinishReason:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("stop", FinishReason.STOP),
            ("length", FinishReason.LENGTH),
            ("content_filter", FinishReason.CONTENT_FILTER),
            ("tool_calls", FinishReason.TOOL_CALLS),
            ("something_new", FinishReason.OTHER),
            (None, FinishReason.UNKNOWN),
        ],
    )
    def test_mapping(self, raw, expected):
        assert map_finish_reason(raw) == expected


class TestClientResolution:
    def setup_method(self):
        provider_module._client_cache.clear()

    def teardown_method(self):
        provider_module._client_cache.clear()

    def test_missing_api_key_raises(self, monkeypatch):
        monkeypatch.delenv("TEST_MISSING_KEY", raising=False)
        model = OpenAIChatModel("gpt-4o", api_key_env="TEST_MISSING_KEY")
        with pytest.raises(ProviderError, match="TEST_MISSING_KEY"):
            _ = model.client

    async def test_missing_api_key_fails_before_request(self, monkeypatch):
        monkeypatch.delenv("TEST_MISSING_KEY", raising=False)
        model = OpenAIChatModel("gpt-4o", api_key_env="TEST_MISSING_KEY")

        with patch.object(provider_module, "_call_with_retry") as call_with_retry:
            with pytest.raises(ProviderError, match="TEST_MISSING_KEY") as exc_info:
                await model.do_generate(OPTIONS)

        assert exc_info.value.__cause__ is None
        call_with_retry.assert_not_called()

    def test_local_server_needs_no_key(self):
        with patch("ai_fallback.providers.openai_provider.AsyncOpenAI") as mock_openai:
            model = OpenAIChatModel(
                "llama3", base_url="http://localhost:11434/v1", api_key_env=""
            )
            _ = model.client

        mock_openai.assert_called_once_with(
            api_key="ollama",
            base_url="http://localhost:11434/v1",
            timeout=provider_module.PROVIDER_TIMEOUT,
        )

    def test_clients_shared_per_endpoint_and_key(self, monkeypatch):
        monkeypatch.setenv("TEST_SHARED_KEY", "k")
        with patch("ai_fallback.providers.openai_provider.AsyncOpenAI") as mock_openai:
            a = OpenAIChatModel("gpt-4o", api_key_env="TEST_SHARED_KEY")
            b = OpenAIEmbeddingModel("text-embedding-3-small", api_key_env="TEST_SHARED_KEY")
            assert a.client is b.client

        mock_openai.assert_called_once()


class TestChatGenerate:
    async def test_success(self):
        create = AsyncMock(return_value=_completion('{"a": 1}'))
        model = OpenAIChatModel("gpt-4o", client=_chat_client(create))

        result = await model.do_generate(OPTIONS)

        assert result.text == '{"a": 1}'
        assert result.finish_reason == FinishReason.STOP
        assert result.usage.prompt_tokens == 10
        assert result.model_id == "gpt-4o"
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0.2
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "max_tokens" not in kwargs

    async def test_error_wrapped_in_provider_error(self):
        create = AsyncMock(side_effect=ValueError("bad request"))
        model = OpenAIChatModel("gpt-4o", client=_chat_client(create))

        with pytest.raises(ProviderError) as exc_info:
            await model.do_generate(OPTIONS)

        assert isinstance(exc_info.value.__cause__, ValueError)
        create.assert_awaited_once()

    async def test_transient_error_retried(self, no_retry_wait):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        create = AsyncMock(
            side_effect=[APIConnectionError(request=request), _completion("ok")]
        )
        model = OpenAIChatModel("gpt-4o", client=_chat_client(create))

        result = await model.do_generate(OPTIONS)

        assert result.text == "ok"
        assert create.await_count == 2

    async def test_transient_error_exhausts_retries(self, no_retry_wait):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        create = AsyncMock(side_effect=APIConnectionError(request=request))
        model = OpenAIChatModel("gpt-4o", client=_chat_client(create))

        with pytest.raises(ProviderError):
            await model.do_generate(OPTIONS)

        assert create.await_count == provider_module.PROVIDER_MAX_ATTEMPTS


class TestChatStream:
    async def test_parts_and_finish(self):
        create = AsyncMock(
            return_value=_chunks(
                FakeChunk(content="Hel"),
                FakeChunk(content="lo"),
                FakeChunk(finish_reason="stop"),
                FakeChunk(usage=FakeUsage(7, 2)),
            )
        )
        model = OpenAIChatModel("gpt-4o", client=_chat_client(create))

        response = await model.do_stream(OPTIONS)
        parts = [p async for p in response.stream]

        assert create.await_args.kwargs["stream"] is True
        assert [p.type for p in parts] == [
            StreamPartType.TEXT_DELTA,
            StreamPartType.TEXT_DELTA,
            StreamPartType.FINISH,
        ]
        assert "".join(p.text_delta for p in parts) == "Hello"
        assert parts[-1].finish_reason == FinishReason.STOP
        assert parts[-1].usage.completion_tokens == 2

    async def test_mid_stream_exception_becomes_error_part(self):
        create = AsyncMock(
            return_value=_chunks(FakeChunk(content="x"), error=RuntimeError("reset"))
        )
        model = OpenAIChatModel("gpt-4o", client=_chat_client(create))

        response = await model.do_stream(OPTIONS)
        parts = [p async for p in response.stream]

        assert [p.type for p in parts] == [StreamPartType.TEXT_DELTA, StreamPartType.ERROR]
        assert isinstance(parts[-1].error, RuntimeError)

    async def test_sdk_stream_closed_when_exhausted(self):
        sdk_stream = FakeSDKStream(FakeChunk(content="a"), FakeChunk(finish_reason="stop"))
        model = OpenAIChatModel("gpt-4o", client=_chat_client(AsyncMock(return_value=sdk_stream)))

        response = await model.do_stream(OPTIONS)
        _ = [p async for p in response.stream]

        assert sdk_stream.closed

    async def test_sdk_stream_closed_when_abandoned(self):
        sdk_stream = FakeSDKStream(FakeChunk(content="a"), FakeChunk(content="b"))
        model = OpenAIChatModel("gpt-4o", client=_chat_client(AsyncMock(return_value=sdk_stream)))

        response = await model.do_stream(OPTIONS)
        first = await anext(response.stream)
        await response.stream.aclose()

        assert first.text_delta == "a"
        assert sdk_stream.closed

    async def test_immediate_stream_error_fails_over_in_combined_model(self):
        broken = OpenAIChatModel(
            "broken",
            client=_chat_client(AsyncMock(return_value=_chunks(error=RuntimeError("dead")))),
        )
        healthy = OpenAIChatModel(
            "healthy",
            client=_chat_client(AsyncMock(return_value=_chunks(FakeChunk(content="ok")))),
        )
        combined = combine_language_models([broken, healthy])

        response = await combined.do_stream(OPTIONS)
        parts = [p async for p in response.stream]

        assert response.model_id == "healthy"
        assert parts[0].text_delta == "ok"
        assert combined.scheduler.backends == [healthy, broken]


class TestEmbedding:
    async def test_success(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(
            return_value=SimpleNamespace(
                data=[SimpleNamespace(embedding=[0.1, 0.2]), SimpleNamespace(embedding=[0.3, 0.4])],
                usage=SimpleNamespace(prompt_tokens=4),
            )
        )
        model = OpenAIEmbeddingModel("text-embedding-3-small", client=client)

        result = await model.do_embed(EmbedOptions(values=["a", "b"]))

        assert result.embeddings == [[0.1, 0.2], [0.3, 0.4]]
        assert result.usage.prompt_tokens == 4
        client.embeddings.create.assert_awaited_once_with(
            model="text-embedding-3-small", input=["a", "b"]
        )

    async def test_empty_input_skips_api(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock()
        model = OpenAIEmbeddingModel("text-embedding-3-small", client=client)

        result = await model.do_embed(EmbedOptions(values=[]))

        assert result.embeddings == []
        client.embeddings.create.assert_not_awaited()

    async def test_too_many_values_rejected(self):
        model = OpenAIEmbeddingModel("text-embedding-3-small", client=MagicMock())
        values = ["x"] * (model.max_embeddings_per_call + 1)

        with pytest.raises(ProviderError):
            await model.do_embed(EmbedOptions(values=values))


class TestTranscription:
    async def test_passes_file_and_language(self):
        client = MagicMock()
        client.audio.transcriptions.create = AsyncMock(return_value=SimpleNamespace(text="hello"))
        model = OpenAITranscriptionModel("whisper-1", client=client)

        result = await model.do_generate(
            TranscriptionOptions(audio=b"RIFF", filename="a.wav", language="en")
        )

        assert result.text == "hello"
        assert result.language == "en"
        kwargs = client.audio.transcriptions.create.await_args.kwargs
        assert kwargs["file"] == ("a.wav", b"RIFF")
        assert kwargs["language"] == "en"


class TestImage:
    def test_max_images_per_call(self):
        assert OpenAIImageModel("dall-e-3", client=MagicMock()).max_images_per_call == 1
        assert OpenAIImageModel("gpt-image-1", client=MagicMock()).max_images_per_call == 10

    async def test_dalle_requests_b64(self):
        client = MagicMock()
        client.images.generate = AsyncMock(
            return_value=SimpleNamespace(data=[SimpleNamespace(b64_json="aGk=")])
        )
        model = OpenAIImageModel("dall-e-2", client=client)

        result = await model.do_generate(ImageOptions(prompt="a cat", n=1, size="256x256"))

        assert result.images == ["aGk="]
        kwargs = client.images.generate.await_args.kwargs
        assert kwargs["response_format"] == "b64_json"
        assert kwargs["size"] == "256x256"

    async def test_too_many_images_rejected(self):
        model = OpenAIImageModel("dall-e-3", client=MagicMock())
        with pytest.raises(ProviderError):
            await model.do_generate(ImageOptions(prompt="a cat", n=2))

    async def test_empty_response_is_failure(self):
        client = MagicMock()
        client.images.generate = AsyncMock(return_value=SimpleNamespace(data=[]))
        model = OpenAIImageModel("gpt-image-1", client=client)

        with pytest.raises(ProviderError):
            await model.do_generate(ImageOptions(prompt="a cat"))


class TestSpeech:
    async def test_success(self):
        client = MagicMock()
        client.audio.speech.create = AsyncMock(return_value=SimpleNamespace(content=b"OggS"))
        model = OpenAISpeechModel("tts-1", client=client)

        result = await model.do_generate(
            SpeechOptions(text="hello", voice="nova", speed=1.25, output_format="opus")
        )

        assert result.audio == b"OggS"
        assert result.content_type == "audio/opus"
        kwargs = client.audio.speech.create.await_args.kwargs
        assert kwargs["voice"] == "nova"
        assert kwargs["speed"] == 1.25
        assert kwargs["response_format"] == "opus"
