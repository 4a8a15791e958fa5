"""Configuration module for couchstream.

Settings come from a YAML file, the environment and defaults, validated by
Pydantic. YAML values support ${VAR} and ${VAR:-default} syntax for
environment variable interpolation.

Example:
    >>> from couchstream.config import get_settings
    >>> settings = get_settings()
    >>> settings.batch.channel_capacity
    100
"""

from __future__ import annotations

from couchstream.config.exceptions import (
    ConfigurationError,
    ConfigurationFileNotFoundError,
    ConfigurationValidationError,
)
from couchstream.config.schema import (
    BatchConfig,
    ChangesConfig,
    ConfigBaseModel,
    CouchDBConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
)
from couchstream.config.settings import (
    Settings,
    clear_settings_cache,
    find_config_file,
    get_settings,
    load_settings,
)


__all__ = [
    "BatchConfig",
    "ChangesConfig",
    "ConfigBaseModel",
    "ConfigurationError",
    "ConfigurationFileNotFoundError",
    "ConfigurationValidationError",
    "CouchDBConfig",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "Settings",
    "clear_settings_cache",
    "find_config_file",
    "get_settings",
    "load_settings",
]
