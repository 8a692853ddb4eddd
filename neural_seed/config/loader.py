"""Configuration loader with environment variable resolution."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path

from neural_seed.config.models import AssistantConfig
from neural_seed.services.exceptions import ConfigurationError

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")

CONFIG_PATH_ENV = "NEURAL_SEED_CONFIG"


def _resolve_env_vars(value: object) -> object:
    """Recursively resolve ``${ENV_VAR}`` placeholders in config values."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def load_config(path: str | Path | None = None) -> AssistantConfig:
    """Load the assistant configuration from a JSON file.

    - Uses ``$NEURAL_SEED_CONFIG`` (or ``config.json``) when *path* is omitted.
    - Resolves ``${ENV_VAR}`` placeholders from environment variables.
    - Validates the document against :class:`AssistantConfig` and checks
      that the selected backend is usable.

    Raises:
        FileNotFoundError: If the config file does not exist.
        pydantic.ValidationError: If the config shape is invalid.
        ConfigurationError: If the backend selection is unusable.
    """
    config_path = Path(path or os.environ.get(CONFIG_PATH_ENV, "config.json"))
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    raw = json.loads(config_path.read_text(encoding="utf-8"))
    resolved = _resolve_env_vars(raw)

    if not isinstance(resolved, dict):
        raise ValueError("Config file must contain a JSON object")

    config = AssistantConfig.model_validate(resolved)
    problems = config.backend.problems()
    if problems:
        raise ConfigurationError(f"AI configuration error: {', '.join(problems)}")
    return config
