"""Adaptive failover across interchangeable model backends."""

from ai_fallback.llm import (
    FailedResultError,
    FailoverScheduler,
    combine_embeddings,
    combine_images,
    combine_language_models,
    combine_speech,
    combine_transcriptions,
)
from ai_fallback.schemas import ScoringPolicy

__all__ = [
    "FailedResultError",
    "FailoverScheduler",
    "ScoringPolicy",
    "combine_embeddings",
    "combine_images",
    "combine_language_models",
    "combine_speech",
    "combine_transcriptions",
]
