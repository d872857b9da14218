"""Combined backends: one object per capability that fails over across members.

Example:
    combined = combine_language_models([
        OpenAIChatModel("gpt-4o"),
        OpenAIChatModel("deepseek-chat", base_url="https://api.deepseek.com/v1",
                        api_key_env="DEEPSEEK_API_KEY"),
    ])
    result = await combined.do_generate(TextGenerationOptions(messages=[...]))
"""

from __future__ import annotations

from typing import Any

from ai_fallback.constants import COMBINED_MODEL_ID, COMBINED_PROVIDER, SPECIFICATION_VERSION
from ai_fallback.llm.capabilities import (
    EmbeddingModel,
    ImageModel,
    LanguageModel,
    SpeechModel,
    TranscriptionModel,
)
from ai_fallback.llm.scheduler import FailedResultError, FailoverScheduler, backend_label
from ai_fallback.schemas import (
    EmbedOptions,
    EmbedResult,
    FinishReason,
    GenerateResult,
    ImageOptions,
    ImageResult,
    ScoringPolicy,
    SpeechOptions,
    SpeechResult,
    StreamPart,
    StreamPartType,
    StreamResult,
    TextGenerationOptions,
    TranscriptionOptions,
    TranscriptionResult,
)
from ai_fallback.utils.stream import close_stream, peek_stream


def _is_error_finish(result: Any) -> bool:
    return getattr(result, "finish_reason", None) == FinishReason.ERROR


def _is_error_part(part: StreamPart | None) -> bool:
    return part is not None and part.type == StreamPartType.ERROR


class _CombinedBase:
    model_id = COMBINED_MODEL_ID
    provider = COMBINED_PROVIDER
    specification_version = SPECIFICATION_VERSION

    def __init__(self, scheduler: FailoverScheduler[Any]) -> None:
        self.scheduler = scheduler

    def __repr__(self) -> str:
        members = ", ".join(s.label for s in self.scheduler.snapshot())
        return f"{type(self).__name__}([{members}])"


class CombinedLanguageModel(_CombinedBase):
    default_object_generation_mode = "json"

    def __init__(self, scheduler: FailoverScheduler[LanguageModel]) -> None:
        super().__init__(scheduler)
        models = scheduler.backends
        self.supports_image_urls = any(getattr(m, "supports_image_urls", False) for m in models)
        self.supports_structured_outputs = any(
            getattr(m, "supports_structured_outputs", False) for m in models
        )

    async def do_generate(self, options: TextGenerationOptions) -> GenerateResult:
        async def _generate(model: LanguageModel) -> GenerateResult:
            return await model.do_generate(options)

        return await self.scheduler.run(_generate, is_failure_result=_is_error_finish)

    async def do_stream(self, options: TextGenerationOptions) -> StreamResult:
        async def _stream(model: LanguageModel) -> StreamResult:
            response = await model.do_stream(options)
            source = response.stream
            first, replay = await peek_stream(source)
            if _is_error_part(first):
                # rejected streams must not hold their connection open
                await close_stream(source)
                raise FailedResultError(response, backend_label(model))
            response.stream = replay
            return response

        return await self.scheduler.run(_stream)


class CombinedEmbeddingModel(_CombinedBase):
    def __init__(self, scheduler: FailoverScheduler[EmbeddingModel]) -> None:
        super().__init__(scheduler)
        models = scheduler.backends
        self.supports_parallel_calls = any(
            getattr(m, "supports_parallel_calls", False) for m in models
        )
        limits = [getattr(m, "max_embeddings_per_call", None) for m in models]
        self.max_embeddings_per_call = max([0] + [0 if n is None else n for n in limits])

    async def do_embed(self, options: EmbedOptions) -> EmbedResult:
        async def _embed(model: EmbeddingModel) -> EmbedResult:
            return await model.do_embed(options)

        return await self.scheduler.run(_embed)


class CombinedTranscriptionModel(_CombinedBase):
    async def do_generate(self, options: TranscriptionOptions) -> TranscriptionResult:
        async def _transcribe(model: TranscriptionModel) -> TranscriptionResult:
            return await model.do_generate(options)

        return await self.scheduler.run(_transcribe)


class CombinedImageModel(_CombinedBase):
    def __init__(self, scheduler: FailoverScheduler[ImageModel]) -> None:
        super().__init__(scheduler)
        limits = [getattr(m, "max_images_per_call", None) for m in scheduler.backends]
        self.max_images_per_call = max([0] + [1 if n is None else n for n in limits])

    async def do_generate(self, options: ImageOptions) -> ImageResult:
        async def _generate(model: ImageModel) -> ImageResult:
            return await model.do_generate(options)

        return await self.scheduler.run(_generate)


class CombinedSpeechModel(_CombinedBase):
    async def do_generate(self, options: SpeechOptions) -> SpeechResult:
        async def _speak(model: SpeechModel) -> SpeechResult:
            return await model.do_generate(options)

        return await self.scheduler.run(_speak)


def combine_language_models(
    models: list[LanguageModel], policy: ScoringPolicy | None = None
) -> CombinedLanguageModel:
    return CombinedLanguageModel(FailoverScheduler(models, policy, name="language"))


def combine_embeddings(
    models: list[EmbeddingModel], policy: ScoringPolicy | None = None
) -> CombinedEmbeddingModel:
    return CombinedEmbeddingModel(FailoverScheduler(models, policy, name="embedding"))


def combine_transcriptions(
    models: list[TranscriptionModel], policy: ScoringPolicy | None = None
) -> CombinedTranscriptionModel:
    return CombinedTranscriptionModel(FailoverScheduler(models, policy, name="transcription"))


def combine_images(
    models: list[ImageModel], policy: ScoringPolicy | None = None
) -> CombinedImageModel:
    return CombinedImageModel(FailoverScheduler(models, policy, name="image"))


def combine_speech(
    models: list[SpeechModel], policy: ScoringPolicy | None = None
) -> CombinedSpeechModel:
    return CombinedSpeechModel(FailoverScheduler(models, policy, name="speech"))
