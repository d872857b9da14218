from __future__ import annotations

from typing import Protocol, runtime_checkable

from ai_fallback.schemas import (
    EmbedOptions,
    EmbedResult,
    GenerateResult,
    ImageOptions,
    ImageResult,
    SpeechOptions,
    SpeechResult,
    StreamResult,
    TextGenerationOptions,
    TranscriptionOptions,
    TranscriptionResult,
)


@runtime_checkable
class LanguageModel(Protocol):
    model_id: str
    provider: str
    supports_image_urls: bool
    supports_structured_outputs: bool

    async def do_generate(self, options: TextGenerationOptions) -> GenerateResult: ...

    async def do_stream(self, options: TextGenerationOptions) -> StreamResult: ...


@runtime_checkable
class EmbeddingModel(Protocol):
    model_id: str
    provider: str
    supports_parallel_calls: bool
    max_embeddings_per_call: int | None

    async def do_embed(self, options: EmbedOptions) -> EmbedResult: ...


@runtime_checkable
class TranscriptionModel(Protocol):
    model_id: str
    provider: str

    async def do_generate(self, options: TranscriptionOptions) -> TranscriptionResult: ...


@runtime_checkable
class ImageModel(Protocol):
    model_id: str
    provider: str
    max_images_per_call: int | None

    async def do_generate(self, options: ImageOptions) -> ImageResult: ...


@runtime_checkable
class SpeechModel(Protocol):
    model_id: str
    provider: str

    async def do_generate(self, options: SpeechOptions) -> SpeechResult: ...
