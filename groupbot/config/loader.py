"""Configuration loading."""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import ValidationError

from groupbot.config.schema import Config
from groupbot.errors import ConfigError
from groupbot.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config.json")


def get_config_path() -> Path:
    """Config path from ``GROUPBOT_CONFIG`` or ``./config.json``."""
    env_path = os.environ.get("GROUPBOT_CONFIG")
    return Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_PATH


def load_config(path: Path | None = None) -> Config:
    """
    Load and validate the configuration file.

    Raises:
        ConfigError: if the file is missing, is not JSON, or fails validation.
    """
    path = path or get_config_path()
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {path}: {e}") from e

    if not config.names:
        raise ConfigError("Config must define at least one bot name in `names`")

    logger.info("config_loaded", path=str(path), model=config.ai.model, names=config.names)
    return config
