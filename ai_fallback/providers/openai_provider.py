"""OpenAI-compatible backends for every capability.

Any endpoint that speaks the OpenAI REST API (OpenAI, DeepSeek, Ollama,
vLLM, ...) can be used by pointing ``base_url`` at it. Transient transport
errors are retried here; anything that survives the retries is raised as
ProviderError so the failover scheduler can move on to the next backend.
"""

import logging
import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

import httpx
from dotenv import load_dotenv
from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from ai_fallback.constants import (
    DEFAULT_OPENAI_BASE_URL,
    OPENAI_MAX_EMBEDDINGS_PER_CALL,
    OPENAI_MAX_IMAGES_PER_CALL,
    PROVIDER_MAX_ATTEMPTS,
    PROVIDER_RETRY_MAX_WAIT_SECONDS,
)
from ai_fallback.schemas import (
    EmbedOptions,
    EmbedResult,
    FinishReason,
    GenerateResult,
    ImageOptions,
    ImageResult,
    SpeechOptions,
    SpeechResult,
    StreamPart,
    StreamPartType,
    StreamResult,
    TextGenerationOptions,
    TranscriptionOptions,
    TranscriptionResult,
    Usage,
)
from ai_fallback.utils.stream import close_stream

load_dotenv()

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROVIDER_TIMEOUT = httpx.Timeout(connect=30.0, read=120.0, write=60.0, pool=30.0)

TRANSIENT_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    RateLimitError,
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
)

_FINISH_REASON_MAP: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
}

_SPEECH_CONTENT_TYPES: dict[str, str] = {
    "mp3": "audio/mpeg",
    "opus": "audio/opus",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "wav": "audio/wav",
    "pcm": "audio/pcm",
}

_client_cache: dict[tuple[str, str], AsyncOpenAI] = {}


class ProviderError(Exception):
    """Raised when a backend call fails after retries."""

    pass


def _get_or_create_client(api_key: str, base_url: str) -> AsyncOpenAI:
    cache_key = (base_url, api_key)
    if cache_key not in _client_cache:
        _client_cache[cache_key] = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=PROVIDER_TIMEOUT,
        )
    return _client_cache[cache_key]


def map_finish_reason(reason: str | None) -> FinishReason:
    if reason is None:
        return FinishReason.UNKNOWN
    return _FINISH_REASON_MAP.get(reason, FinishReason.OTHER)


@retry(
    wait=wait_random_exponential(min=1, max=PROVIDER_RETRY_MAX_WAIT_SECONDS),
    stop=stop_after_attempt(PROVIDER_MAX_ATTEMPTS),
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _call_with_retry(call: Callable[[], Awaitable[T]]) -> T:
    return await call()


class _OpenAIBackend:
    provider = "openai"

    def __init__(
        self,
        model_name: str,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        api_key_env: str = "LLM_API_KEY",
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model_name = model_name
        self.model_id = model_name
        self.base_url = base_url
        self.api_key_env = api_key_env
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = os.environ.get(self.api_key_env, "") if self.api_key_env else ""
            if not api_key:
                # Local OpenAI-compatible servers (Ollama) ignore the key.
                if "localhost" not in self.base_url and "127.0.0.1" not in self.base_url:
                    raise ProviderError(
                        f"{self.api_key_env} environment variable is required for {self.model_id}"
                    )
                api_key = "ollama"
            self._client = _get_or_create_client(api_key, self.base_url)
        return self._client

    async def _request(self, what: str, call: Callable[[], Awaitable[T]]) -> T:
        logger.info("%s request starting (model=%s)", what, self.model_id)
        start_time = time.perf_counter()
        try:
            result = await _call_with_retry(call)
        except Exception as e:
            elapsed = time.perf_counter() - start_time
            logger.error(
                "%s request failed after %.2fs: %s: %s", what, elapsed, type(e).__name__, e
            )
            raise ProviderError(f"{what} request to {self.model_id} failed: {e}") from e
        logger.info("%s request completed in %.2fs", what, time.perf_counter() - start_time)
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.model_id!r}, base_url={self.base_url!r})"


class OpenAIChatModel(_OpenAIBackend):
    def __init__(
        self,
        model_name: str,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        api_key_env: str = "LLM_API_KEY",
        client: AsyncOpenAI | None = None,
        supports_image_urls: bool = False,
        supports_structured_outputs: bool = False,
    ) -> None:
        super().__init__(model_name, base_url, api_key_env, client)
        self.supports_image_urls = supports_image_urls
        self.supports_structured_outputs = supports_structured_outputs

    def _build_kwargs(self, options: TextGenerationOptions) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "messages": options.messages,
        }
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        if options.response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    async def do_generate(self, options: TextGenerationOptions) -> GenerateResult:
        kwargs = self._build_kwargs(options)
        client = self.client
        completion = await self._request(
            "Chat", lambda: client.chat.completions.create(**kwargs)
        )
        choice = completion.choices[0]
        usage = None
        if completion.usage:
            usage = Usage(
                prompt_tokens=completion.usage.prompt_tokens,
                completion_tokens=completion.usage.completion_tokens,
            )
        return GenerateResult(
            text=choice.message.content,
            finish_reason=map_finish_reason(choice.finish_reason),
            usage=usage,
            model_id=self.model_id,
        )

    async def do_stream(self, options: TextGenerationOptions) -> StreamResult:
        kwargs = self._build_kwargs(options)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}
        client = self.client
        stream = await self._request(
            "Chat streaming", lambda: client.chat.completions.create(**kwargs)
        )
        return StreamResult(stream=self._iter_parts(stream), model_id=self.model_id)

    async def _iter_parts(self, stream: Any) -> AsyncIterator[StreamPart]:
        finish_reason: FinishReason | None = None
        usage: Usage | None = None
        try:
            try:
                async for chunk in stream:
                    if chunk.usage:
                        usage = Usage(
                            prompt_tokens=chunk.usage.prompt_tokens,
                            completion_tokens=chunk.usage.completion_tokens,
                        )
                    if not chunk.choices:
                        continue
                    choice = chunk.choices[0]
                    if choice.delta.content:
                        yield StreamPart(
                            type=StreamPartType.TEXT_DELTA, text_delta=choice.delta.content
                        )
                    if choice.finish_reason:
                        finish_reason = map_finish_reason(choice.finish_reason)
            except Exception as e:
                logger.error(
                    "Chat stream from %s broke: %s: %s", self.model_id, type(e).__name__, e
                )
                yield StreamPart(type=StreamPartType.ERROR, error=e)
                return
            yield StreamPart(
                type=StreamPartType.FINISH,
                finish_reason=finish_reason or FinishReason.UNKNOWN,
                usage=usage,
            )
        finally:
            await close_stream(stream)


class OpenAIEmbeddingModel(_OpenAIBackend):
    supports_parallel_calls = True
    max_embeddings_per_call = OPENAI_MAX_EMBEDDINGS_PER_CALL

    async def do_embed(self, options: EmbedOptions) -> EmbedResult:
        if not options.values:
            return EmbedResult(embeddings=[])
        if len(options.values) > self.max_embeddings_per_call:
            raise ProviderError(
                f"{self.model_id} accepts at most {self.max_embeddings_per_call} values per call, "
                f"got {len(options.values)}"
            )
        client = self.client
        response = await self._request(
            "Embedding",
            lambda: client.embeddings.create(model=self.model_name, input=options.values),
        )
        usage = None
        if response.usage:
            usage = Usage(prompt_tokens=response.usage.prompt_tokens)
        return EmbedResult(embeddings=[item.embedding for item in response.data], usage=usage)


class OpenAITranscriptionModel(_OpenAIBackend):
    async def do_generate(self, options: TranscriptionOptions) -> TranscriptionResult:
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "file": (options.filename, options.audio),
        }
        if options.language:
            kwargs["language"] = options.language
        client = self.client
        response = await self._request(
            "Transcription", lambda: client.audio.transcriptions.create(**kwargs)
        )
        return TranscriptionResult(
            text=response.text,
            language=getattr(response, "language", None) or options.language,
            duration_seconds=getattr(response, "duration", None),
        )


class OpenAIImageModel(_OpenAIBackend):
    @property
    def max_images_per_call(self) -> int:
        # dall-e-3 only supports n=1
        if self.model_name.startswith("dall-e-3"):
            return 1
        return OPENAI_MAX_IMAGES_PER_CALL

    async def do_generate(self, options: ImageOptions) -> ImageResult:
        if options.n > self.max_images_per_call:
            raise ProviderError(
                f"{self.model_id} generates at most {self.max_images_per_call} images per call"
            )
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "prompt": options.prompt,
            "n": options.n,
        }
        if options.size:
            kwargs["size"] = options.size
        if self.model_name.startswith("dall-e"):
            kwargs["response_format"] = "b64_json"
        client = self.client
        response = await self._request(
            "Image", lambda: client.images.generate(**kwargs)
        )
        images = [item.b64_json for item in response.data or [] if item.b64_json]
        if not images:
            raise ProviderError(f"{self.model_id} returned no image data")
        return ImageResult(images=images)


class OpenAISpeechModel(_OpenAIBackend):
    async def do_generate(self, options: SpeechOptions) -> SpeechResult:
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "voice": options.voice,
            "input": options.text,
            "response_format": options.output_format,
        }
        if options.speed is not None:
            kwargs["speed"] = options.speed
        client = self.client
        response = await self._request(
            "Speech", lambda: client.audio.speech.create(**kwargs)
        )
        return SpeechResult(
            audio=response.content,
            content_type=_SPEECH_CONTENT_TYPES[options.output_format],
        )
