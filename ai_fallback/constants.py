"""Configuration constants with trade-off documentation.

Each constant has a rationale explaining why this specific value was chosen.
Scoring factors can be overridden through environment variables.
"""

import os

# =============================================================================
# Environment Variable Helpers
# =============================================================================


def _parse_int_env(name: str, default: int, min_val: int, max_val: int) -> int:
    """Parse an integer environment variable with bounds clamping.

    Returns default if env var is unset or unparseable. Clamps to [min_val, max_val].
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(min_val, min(max_val, value))


def _parse_float_env(name: str, default: float, min_val: float, max_val: float) -> float:
    """Float counterpart of _parse_int_env. NaN counts as unparseable."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if value != value:
        return default
    return max(min_val, min(max_val, value))


# =============================================================================
# Scheduler Scoring
# =============================================================================

INITIAL_SCORE = 1.0
# Baseline every backend starts from. Only ratios between scores matter for
# ordering, so the absolute value is arbitrary.

SUCCESS_FACTOR = _parse_float_env("FALLBACK_SUCCESS_FACTOR", default=0.7, min_val=0.01, max_val=1.0)
# Why 0.7: one success combined with decay (0.7 * 0.9 = 0.63) pulls a backend
# clearly ahead of an untried one (0.9) without making a single win decisive
# over a long history.

FAILURE_FACTOR = _parse_float_env("FALLBACK_FAILURE_FACTOR", default=1.5, min_val=1.0, max_val=10.0)
# Why 1.5: asymmetric with SUCCESS_FACTOR on purpose. 1.5 * 0.9 = 1.35 puts a
# failed backend behind untouched ones after one call, while a few
# subsequent successes elsewhere let decay bring it back into rotation.

DECAY_FACTOR = _parse_float_env("FALLBACK_DECAY_FACTOR", default=0.9, min_val=0.01, max_val=1.0)
# Why 0.9: applied to every backend after every call. Recent outcomes
# dominate the ranking; early outcomes fade within ~20 calls.

COMBINED_MODEL_ID = "combined"
COMBINED_PROVIDER = "combined"
SPECIFICATION_VERSION = "v1"

# =============================================================================
# OpenAI Backends
# =============================================================================

PROVIDER_MAX_ATTEMPTS = _parse_int_env("PROVIDER_MAX_ATTEMPTS", default=3, min_val=1, max_val=10)
# Why 3: total calls per request, so 2 retries after the first attempt.
# Transient 429/5xx usually clear by then. Longer retry chains delay
# failover to the next backend, which is the better recovery.

PROVIDER_RETRY_MAX_WAIT_SECONDS = 10
# Why 10: caps exponential backoff so a dead backend costs at most ~20s
# before the scheduler moves on.

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"

OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434/v1")

OPENAI_MAX_EMBEDDINGS_PER_CALL = 2048
# Why 2048: OpenAI embeddings endpoint input array limit.

OPENAI_MAX_IMAGES_PER_CALL = 10
# Why 10: gpt-image-1 and dall-e-2 accept n<=10. dall-e-3 only n=1,
# handled in providers.openai.

DEFAULT_SPEECH_VOICE = "alloy"
