"""Configuration module for mubus."""

from mubus.config.loader import load_config, save_config, get_config_path
from mubus.config.schema import Config
from mubus.config.access import get_config, clear_config_cache

__all__ = ["Config", "load_config", "save_config", "get_config_path", "get_config", "clear_config_cache"]
