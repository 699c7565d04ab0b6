"""Configuration module for groupbot."""

from groupbot.config.loader import get_config_path, load_config
from groupbot.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config"]
