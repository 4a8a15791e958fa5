"""Settings management for couchstream.

This module provides the Settings class and functions for loading
configuration from a YAML file and the environment.

Example:
    >>> from couchstream.config import load_settings
    >>> settings = load_settings()
    >>> print(settings.couchdb.url)
    http://localhost:5984
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, ClassVar

import yaml
from pydantic import Field, ValidationError, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from couchstream.config.exceptions import (
    ConfigurationFileNotFoundError,
    ConfigurationValidationError,
)
from couchstream.config.schema import (
    BatchConfig,
    ChangesConfig,
    CouchDBConfig,
    LoggingConfig,
)


__all__ = [
    "Settings",
    "clear_settings_cache",
    "find_config_file",
    "get_settings",
    "load_settings",
]


# ---------------------------------------------------------------------------
# Environment Variable Interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _interpolate_env_vars(value: object) -> object:
    """Replace ${VAR} and ${VAR:-default} references in nested YAML data.

    Unset variables without a default become empty strings.

    Example:
        >>> os.environ["COUCH_PW"] = "secret"
        >>> _interpolate_env_vars({"password": "${COUCH_PW}"})
        {'password': 'secret'}
    """
    match value:
        case str():
            return _ENV_VAR_PATTERN.sub(
                lambda m: os.environ.get(m.group(1), m.group(2) or ""),
                value,
            )
        case dict():
            return {key: _interpolate_env_vars(item) for key, item in value.items()}
        case list():
            return [_interpolate_env_vars(item) for item in value]
        case _:
            return value


class _InterpolatingYamlSource(YamlConfigSettingsSource):
    """YAML settings source that interpolates environment variables."""

    def _read_file(self, file_path: Path) -> dict[str, Any]:
        data = _interpolate_env_vars(super()._read_file(file_path))
        return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Settings Class
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Application settings loaded from YAML file and environment variables.

    Settings are loaded in priority order (highest to lowest):
    1. Constructor arguments
    2. Environment variables (``COUCHSTREAM_*``, nested with ``__``)
    3. YAML configuration file
    4. Default values

    Attributes:
        couchdb: Server connection settings.
        changes: Changes feed settings.
        batch: Batched query settings.
        logging: Logging settings.

    Example:
        >>> import os
        >>> os.environ["COUCHSTREAM_COUCHDB__URL"] = "http://couch:5984"
        >>> load_settings().couchdb.url
        'http://couch:5984'
    """

    model_config = SettingsConfigDict(
        yaml_file=None,  # resolved by load_settings()
        yaml_file_encoding="utf-8",
        env_prefix="COUCHSTREAM_",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    CONFIG_SEARCH_PATHS: ClassVar[list[Path]] = [
        Path("couchstream.yaml"),
        Path("couchstream.yml"),
        Path.home() / ".config" / "couchstream" / "config.yaml",
        Path("/etc/couchstream/config.yaml"),
    ]

    # Set by load_settings() for the duration of one instantiation
    _yaml_file_override: ClassVar[Path | None] = None

    couchdb: CouchDBConfig = Field(default_factory=CouchDBConfig)
    changes: ChangesConfig = Field(default_factory=ChangesConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def resolve_couchdb_password(self) -> Settings:
        """Fill in the CouchDB password when it is not set directly.

        Falls back to ``couchdb.password_file``, then to the
        ``COUCHDB_PASSWORD`` environment variable.

        Raises:
            ValueError: If password_file is set but does not exist.
        """
        couchdb = self.couchdb
        if couchdb.password:
            return self

        if couchdb.password_file is not None:
            if not couchdb.password_file.is_file():
                msg = f"Password file not found: {couchdb.password_file}"
                raise ValueError(msg)
            couchdb.password = couchdb.password_file.read_text().strip()
            return self

        env_password = os.environ.get("COUCHDB_PASSWORD")
        if env_password:
            couchdb.password = env_password
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Put constructor, environment and YAML sources in priority order.

        ``.env`` files are not read.
        """
        yaml_source = (
            _InterpolatingYamlSource(settings_cls, yaml_file=cls._yaml_file_override)
            if cls._yaml_file_override is not None
            else _InterpolatingYamlSource(settings_cls)
        )
        return (init_settings, env_settings, yaml_source, file_secret_settings)

    def masked_dump(self) -> dict[str, Any]:
        """Dump the settings as JSON-compatible data with the password hidden."""
        data = self.model_dump(mode="json")
        if data["couchdb"].get("password"):
            data["couchdb"]["password"] = "********"
        return data


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_settings_cache: dict[str, Settings] = {}


def find_config_file(config_path: Path | str | None = None) -> Path | None:
    """Locate the YAML configuration file.

    Args:
        config_path: File to use. When None, ``Settings.CONFIG_SEARCH_PATHS``
            is tried in order.

    Returns:
        Path of an existing file, or None if there is none.
    """
    candidates = (
        [Path(config_path)] if config_path is not None else Settings.CONFIG_SEARCH_PATHS
    )
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def _build_settings(config_file: Path | None) -> Settings:
    Settings._yaml_file_override = config_file  # noqa: SLF001
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationValidationError.from_validation_error(exc) from exc
    except (OSError, yaml.YAMLError) as exc:
        # Unreadable file or YAML syntax error
        msg = f"Cannot read configuration from {config_file}: {exc}"
        raise ConfigurationValidationError(msg) from exc
    finally:
        Settings._yaml_file_override = None  # noqa: SLF001


def load_settings(
    config_path: Path | str | None = None,
    *,
    require_config_file: bool = False,
) -> Settings:
    """Load and validate settings, replacing the cached instance.

    Args:
        config_path: YAML file to read. When None the default locations
            are searched (./couchstream.yaml, ./couchstream.yml,
            ~/.config/couchstream/config.yaml, /etc/couchstream/config.yaml).
        require_config_file: Fail when the search finds nothing instead of
            running on environment variables and defaults alone. A
            ``config_path`` that does not exist always fails.

    Returns:
        The validated settings.

    Raises:
        ConfigurationFileNotFoundError: If a needed file does not exist.
        ConfigurationValidationError: If the file cannot be parsed or a
            value is invalid.
    """
    config_file = find_config_file(config_path)
    if config_file is None and (config_path is not None or require_config_file):
        raise ConfigurationFileNotFoundError(
            path=None if config_path is None else str(config_path),
            searched_paths=[str(path) for path in Settings.CONFIG_SEARCH_PATHS],
        )

    settings = _build_settings(config_file)
    _settings_cache["current"] = settings
    return settings


def get_settings() -> Settings:
    """Return the settings loaded last, loading the defaults on first use."""
    settings = _settings_cache.get("current")
    if settings is None:
        settings = load_settings()
    return settings


def clear_settings_cache() -> None:
    """Drop the cached settings; the next get_settings() loads them again."""
    _settings_cache.clear()
