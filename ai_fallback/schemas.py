from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ai_fallback.constants import (
    DECAY_FACTOR,
    DEFAULT_OPENAI_BASE_URL,
    DEFAULT_SPEECH_VOICE,
    FAILURE_FACTOR,
    INITIAL_SCORE,
    SUCCESS_FACTOR,
)


class Capability(StrEnum):
    LANGUAGE = "language"
    EMBEDDING = "embedding"
    TRANSCRIPTION = "transcription"
    IMAGE = "image"
    SPEECH = "speech"


class ModelProvider(StrEnum):
    OPENAI = "openai"
    DEEPSEEK = "deepseek"
    OLLAMA = "ollama"
    CUSTOM = "custom"


class FinishReason(StrEnum):
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    TOOL_CALLS = "tool-calls"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


class StreamPartType(StrEnum):
    TEXT_DELTA = "text-delta"
    FINISH = "finish"
    ERROR = "error"


# =============================================================================
# Scoring
# =============================================================================


class ScoringPolicy(BaseModel):
    """Multiplicative reward/penalty/decay factors used by the scheduler."""

    model_config = ConfigDict(frozen=True)

    initial_score: float = Field(default=INITIAL_SCORE, gt=0)
    success_factor: float = Field(default=SUCCESS_FACTOR, gt=0, le=1)
    failure_factor: float = Field(default=FAILURE_FACTOR, ge=1)
    decay_factor: float = Field(default=DECAY_FACTOR, gt=0, le=1)


class BackendScore(BaseModel):
    position: int
    label: str
    score: float


# =============================================================================
# Call options / results
# =============================================================================


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class TextGenerationOptions(BaseModel):
    messages: list[dict[str, Any]]
    temperature: float | None = None
    max_tokens: int | None = None
    response_format: Literal["text", "json"] = "text"


class GenerateResult(BaseModel):
    text: str | None = None
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage | None = None
    model_id: str = ""


@dataclass
class StreamPart:
    type: StreamPartType
    text_delta: str = ""
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    error: BaseException | None = None


@dataclass
class StreamResult:
    stream: AsyncIterator[StreamPart]
    model_id: str = ""


class EmbedOptions(BaseModel):
    values: list[str]


class EmbedResult(BaseModel):
    embeddings: list[list[float]]
    usage: Usage | None = None


class TranscriptionOptions(BaseModel):
    audio: bytes
    filename: str = "audio.wav"
    language: str | None = None


class TranscriptionResult(BaseModel):
    text: str
    language: str | None = None
    duration_seconds: float | None = None


class ImageOptions(BaseModel):
    prompt: str
    n: int = Field(default=1, ge=1)
    size: str | None = None


class ImageResult(BaseModel):
    # base64-encoded payloads
    images: list[str]


class SpeechOptions(BaseModel):
    text: str
    voice: str = DEFAULT_SPEECH_VOICE
    speed: float | None = Field(default=None, ge=0.25, le=4.0)
    output_format: Literal["mp3", "opus", "aac", "flac", "wav", "pcm"] = "mp3"


class SpeechResult(BaseModel):
    audio: bytes
    content_type: str = "audio/mpeg"


# =============================================================================
# Configuration
# =============================================================================


class ModelConfig(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: str
    capability: Capability
    provider: ModelProvider = ModelProvider.OPENAI
    model_name: str
    api_base: str = DEFAULT_OPENAI_BASE_URL
    api_key_env: str = "LLM_API_KEY"
    enabled: bool = True
    supports_image_urls: bool = False
    supports_structured_outputs: bool = False


class FallbackConfig(BaseModel):
    models: list[ModelConfig]
    scoring: ScoringPolicy = Field(default_factory=ScoringPolicy)
