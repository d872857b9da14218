from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from ai_fallback.config.loader import load_fallback_config
from ai_fallback.constants import DEFAULT_OPENAI_BASE_URL, OLLAMA_BASE_URL
from ai_fallback.llm.combined import (
    CombinedEmbeddingModel,
    CombinedImageModel,
    CombinedLanguageModel,
    CombinedSpeechModel,
    CombinedTranscriptionModel,
    combine_embeddings,
    combine_images,
    combine_language_models,
    combine_speech,
    combine_transcriptions,
)
from ai_fallback.providers.openai_provider import (
    OpenAIChatModel,
    OpenAIEmbeddingModel,
    OpenAIImageModel,
    OpenAISpeechModel,
    OpenAITranscriptionModel,
)
from ai_fallback.schemas import Capability, FallbackConfig, ModelConfig, ModelProvider

logger = logging.getLogger(__name__)


@dataclass
class CombinedModels:
    language: CombinedLanguageModel | None = None
    embedding: CombinedEmbeddingModel | None = None
    transcription: CombinedTranscriptionModel | None = None
    image: CombinedImageModel | None = None
    speech: CombinedSpeechModel | None = None


def _build_backend(cfg: ModelConfig) -> Any:
    common: dict[str, Any] = {
        "model_name": cfg.model_name,
        "base_url": cfg.api_base,
        "api_key_env": cfg.api_key_env,
    }
    if cfg.capability == Capability.LANGUAGE:
        backend: Any = OpenAIChatModel(
            **common,
            supports_image_urls=cfg.supports_image_urls,
            supports_structured_outputs=cfg.supports_structured_outputs,
        )
    elif cfg.capability == Capability.EMBEDDING:
        backend = OpenAIEmbeddingModel(**common)
    elif cfg.capability == Capability.TRANSCRIPTION:
        backend = OpenAITranscriptionModel(**common)
    elif cfg.capability == Capability.IMAGE:
        backend = OpenAIImageModel(**common)
    else:
        backend = OpenAISpeechModel(**common)
    backend.model_id = cfg.id
    backend.provider = cfg.provider.value
    return backend


def build_combined_models(config: FallbackConfig) -> CombinedModels:
    grouped: dict[Capability, list[Any]] = {c: [] for c in Capability}
    for cfg in config.models:
        if not cfg.enabled:
            continue
        grouped[cfg.capability].append(_build_backend(cfg))

    policy = config.scoring
    combined = CombinedModels()
    if grouped[Capability.LANGUAGE]:
        combined.language = combine_language_models(grouped[Capability.LANGUAGE], policy)
    if grouped[Capability.EMBEDDING]:
        combined.embedding = combine_embeddings(grouped[Capability.EMBEDDING], policy)
    if grouped[Capability.TRANSCRIPTION]:
        combined.transcription = combine_transcriptions(grouped[Capability.TRANSCRIPTION], policy)
    if grouped[Capability.IMAGE]:
        combined.image = combine_images(grouped[Capability.IMAGE], policy)
    if grouped[Capability.SPEECH]:
        combined.speech = combine_speech(grouped[Capability.SPEECH], policy)

    logger.info(
        "Combined backends: %s",
        ", ".join(f"{c.value}={len(grouped[c])}" for c in Capability if grouped[c]) or "none",
    )
    return combined


def _build_default_config() -> FallbackConfig:
    models: list[ModelConfig] = []

    if os.environ.get("LLM_API_KEY", ""):
        base_url = os.environ.get("LLM_BASE_URL", DEFAULT_OPENAI_BASE_URL)
        model_name = os.environ.get("LLM_MODEL", "gpt-4o")
        models.append(
            ModelConfig(
                id=f"openai:{model_name}",
                capability=Capability.LANGUAGE,
                model_name=model_name,
                api_base=base_url,
                supports_image_urls=True,
                supports_structured_outputs=True,
            )
        )
        embedding_model = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
        models.append(
            ModelConfig(
                id=f"openai:{embedding_model}",
                capability=Capability.EMBEDDING,
                model_name=embedding_model,
                api_base=base_url,
            )
        )

    if os.environ.get("DEEPSEEK_API_KEY", ""):
        ds_model = os.environ.get("DEEPSEEK_MODEL", "deepseek-chat")
        models.append(
            ModelConfig(
                id=f"deepseek:{ds_model}",
                capability=Capability.LANGUAGE,
                provider=ModelProvider.DEEPSEEK,
                model_name=ds_model,
                api_base=os.environ.get("DEEPSEEK_BASE_URL", "https://api.deepseek.com/v1"),
                api_key_env="DEEPSEEK_API_KEY",
                supports_structured_outputs=True,
            )
        )

    for m in os.environ.get("OLLAMA_MODELS", "").split(","):
        m = m.strip()
        if not m:
            continue
        models.append(
            ModelConfig(
                id=f"ollama:{m}",
                capability=Capability.LANGUAGE,
                provider=ModelProvider.OLLAMA,
                model_name=m,
                api_base=OLLAMA_BASE_URL,
                api_key_env="",
            )
        )

    return FallbackConfig(models=models)


_combined_models: CombinedModels | None = None


def get_combined_models() -> CombinedModels:
    """Process-wide combined backends, built once from FALLBACK_CONFIG_PATH or env."""
    global _combined_models
    if _combined_models is None:
        config = load_fallback_config(os.environ.get("FALLBACK_CONFIG_PATH", ""))
        if config is None:
            config = _build_default_config()
        _combined_models = build_combined_models(config)
    return _combined_models


def reset_combined_models() -> None:
    global _combined_models
    _combined_models = None
