"""Configuration module for threadbot."""

from threadbot.config.loader import get_config_path, load_config
from threadbot.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
