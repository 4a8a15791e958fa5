"""Configuration-specific exceptions for couchstream."""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from pydantic import ValidationError


__all__ = [
    "ConfigurationError",
    "ConfigurationFileNotFoundError",
    "ConfigurationValidationError",
]


class ConfigurationError(Exception):
    """Base exception for configuration errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationFileNotFoundError(ConfigurationError):
    """Raised when a required configuration file is missing.

    Attributes:
        path: The explicitly requested path, or None when searching defaults.
        searched_paths: Every location that was tried.
    """

    def __init__(
        self,
        path: str | None = None,
        searched_paths: list[str] | None = None,
    ) -> None:
        self.path = path
        self.searched_paths = searched_paths or []

        if path:
            message = f"Configuration file not found: {path}"
        elif self.searched_paths:
            message = "No configuration file in " + ", ".join(self.searched_paths)
        else:
            message = "Configuration file not found"
        super().__init__(message)


class ConfigurationValidationError(ConfigurationError):
    """Raised when loaded configuration values do not validate.

    Attributes:
        errors: Pydantic error details, one dict per invalid field.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict[str, object]] | None = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_validation_error(
        cls,
        exc: ValidationError,
    ) -> ConfigurationValidationError:
        """Summarize a pydantic ValidationError as a configuration error.

        The message names each offending field by its dotted path, e.g.
        ``couchdb.timeout: Input should be greater than 0``.
        """
        details = [dict(error) for error in exc.errors()]
        lines = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        message = "Invalid configuration: " + "; ".join(lines)
        return cls(message, errors=details)
