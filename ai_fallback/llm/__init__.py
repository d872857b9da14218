"""Failover scheduler and the per-capability combined backends built on it."""

from ai_fallback.llm.combined import (
    combine_embeddings,
    combine_images,
    combine_language_models,
    combine_speech,
    combine_transcriptions,
)
from ai_fallback.llm.scheduler import FailedResultError, FailoverScheduler

__all__ = [
    "FailedResultError",
    "FailoverScheduler",
    "combine_embeddings",
    "combine_images",
    "combine_language_models",
    "combine_speech",
    "combine_transcriptions",
]
