"""Config package facade."""

from .loader import API_TOKEN_ENV, load_config
from .schema import ConfigError, LoadedConfig
from .validate import validate_config

__all__ = [
    "API_TOKEN_ENV",
    "ConfigError",
    "LoadedConfig",
    "load_config",
    "validate_config",
]
