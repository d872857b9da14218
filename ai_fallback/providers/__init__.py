from ai_fallback.providers.openai_provider import (
    OpenAIChatModel,
    OpenAIEmbeddingModel,
    OpenAIImageModel,
    OpenAISpeechModel,
    OpenAITranscriptionModel,
    ProviderError,
)

__all__ = [
    "OpenAIChatModel",
    "OpenAIEmbeddingModel",
    "OpenAIImageModel",
    "OpenAISpeechModel",
    "OpenAITranscriptionModel",
    "ProviderError",
]
