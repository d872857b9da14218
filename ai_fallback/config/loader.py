"""YAML backend list for the combined models.

The file holds a ``models:`` list of ModelConfig entries and an optional
``scoring:`` block. String values may reference the environment as
``${VAR}`` or ``${VAR:-default}``.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ai_fallback.schemas import FallbackConfig, ModelConfig, ScoringPolicy

logger = logging.getLogger(__name__)

_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<default>.*?))?\}")


class ConfigError(Exception):
    """The config file cannot produce a usable FallbackConfig."""


def _expand_env(obj: Any) -> Any:
    """Resolve ``${VAR}`` references in every string nested inside obj."""
    if isinstance(obj, str):
        return _ENV_REF.sub(
            lambda m: os.environ.get(m["name"], m["default"] or ""),
            obj,
        )
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    return obj


def _read_document(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError("file not found")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"unreadable: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("top level must be a mapping")
    return data


def _parse_models(entries: Any, source: Path) -> list[ModelConfig]:
    if not isinstance(entries, list) or not entries:
        raise ConfigError("'models' must be a non-empty list")

    parsed: list[ModelConfig] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        try:
            cfg = ModelConfig.model_validate(_expand_env(entry))
        except ValidationError as e:
            logger.warning("Skipping model entry %d in %s: %s", index, source, e)
            continue
        # first definition wins
        if cfg.id in seen:
            logger.warning("Skipping model entry %d in %s: duplicate id %s", index, source, cfg.id)
            continue
        seen.add(cfg.id)
        parsed.append(cfg)

    if not parsed:
        raise ConfigError("no valid model entries")
    return parsed


def _parse_scoring(block: Any, source: Path) -> ScoringPolicy:
    if block is None:
        return ScoringPolicy()
    try:
        return ScoringPolicy.model_validate(_expand_env(block))
    except ValidationError as e:
        logger.warning("Ignoring 'scoring' block in %s, using defaults: %s", source, e)
        return ScoringPolicy()


def load_fallback_config(config_path: str | None = None) -> FallbackConfig | None:
    """Load the backend list, or return None when there is nothing usable.

    A None result lets the caller fall back to env-var defaults. Individual
    bad entries and a bad scoring block are skipped with a warning.
    """
    if not config_path:
        return None

    source = Path(config_path)
    try:
        document = _read_document(source)
        if "models" not in document:
            raise ConfigError("missing 'models' key")
        models = _parse_models(document["models"], source)
    except ConfigError as e:
        logger.warning("Fallback config %s not used: %s", source, e)
        return None

    config = FallbackConfig(models=models, scoring=_parse_scoring(document.get("scoring"), source))
    logger.info("Loaded %d model(s) from YAML config: %s", len(config.models), source)
    return config
