"""Configuration module for morpheum."""

from morpheum.config.loader import load_config, get_config_path
from morpheum.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
