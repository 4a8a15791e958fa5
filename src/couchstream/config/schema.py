"""Configuration sections of couchstream.

Each top-level key of the YAML file maps to one model here. Values from
the file and from COUCHSTREAM_* variables are validated against them.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path  # noqa: TC003 - needed at runtime for Pydantic
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator


__all__ = [
    "BatchConfig",
    "ChangesConfig",
    "ConfigBaseModel",
    "CouchDBConfig",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class LogFormat(StrEnum):
    """Renderer used for log lines.

    Attributes:
        CONSOLE: Colored, aligned output for people.
        LOGFMT: key=value lines for log shippers.
    """

    CONSOLE = "console"
    LOGFMT = "logfmt"


class LogLevel(StrEnum):
    """Minimum level written to the log, spelled as in the standard library."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ---------------------------------------------------------------------------
# Base Model
# ---------------------------------------------------------------------------


class ConfigBaseModel(BaseModel):
    """Common base of the configuration sections.

    Unknown keys are rejected so that a misspelled option fails loudly
    instead of silently keeping its default.
    """

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        validate_default=True,
    )


# ---------------------------------------------------------------------------
# CouchDB Connection
# ---------------------------------------------------------------------------


class CouchDBConfig(ConfigBaseModel):
    """CouchDB connection configuration.

    Credentials are optional; without a username requests are sent
    anonymously. If both `password` and `password_file` are set,
    `password` takes precedence.

    Attributes:
        url: Server URL.
        username: User for HTTP basic authentication.
        password: Password (supports ${VAR} interpolation).
        password_file: Path to a file containing the password.
        timeout: Default request timeout in seconds.
        connect_timeout: Connection timeout in seconds.
    """

    url: str = Field(
        default="http://localhost:5984",
        description="Base URL of the CouchDB server",
    )
    username: str | None = Field(default=None, description="Basic auth user")
    password: str | None = Field(
        default=None,
        description="Basic auth password (supports ${VAR} interpolation)",
    )
    password_file: Path | None = Field(
        default=None,
        description="Path to file containing the password",
    )
    timeout: Annotated[
        float,
        Field(gt=0, le=3600, description="Request timeout in seconds"),
    ] = 10.0
    connect_timeout: Annotated[
        float,
        Field(gt=0, le=300, description="Connect timeout in seconds"),
    ] = 5.0

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


# ---------------------------------------------------------------------------
# Streaming Reads
# ---------------------------------------------------------------------------


class ChangesConfig(ConfigBaseModel):
    """Changes feed configuration.

    Attributes:
        infinite: Keep following the feed after the known changes.
        include_docs: Ask the server to embed each changed document.
        heartbeat_ms: Interval of empty keep-alive lines, if any.
        read_timeout: Seconds of silence tolerated on an open feed.
            Defaults to the client timeout.
    """

    infinite: bool = Field(default=False)
    include_docs: bool = Field(default=True)
    heartbeat_ms: Annotated[
        int | None,
        Field(ge=1000, le=60000, description="Heartbeat interval in ms"),
    ] = None
    read_timeout: Annotated[
        float | None,
        Field(gt=0, description="Feed read timeout in seconds"),
    ] = None

    def feed_params(self) -> dict[str, str]:
        """Return the query parameters these settings translate to."""
        params = {"include_docs": str(self.include_docs).lower()}
        if self.heartbeat_ms is not None:
            params["heartbeat"] = str(self.heartbeat_ms)
        return params


class BatchConfig(ConfigBaseModel):
    """Batched query configuration.

    Attributes:
        page_size: Rows per ``_find`` request (0 selects 1000).
        max_results: Row budget per run (0 is unbounded).
        channel_capacity: Pages buffered between producer and consumer.
    """

    page_size: Annotated[
        int,
        Field(ge=0, description="Rows per request, 0 for the default"),
    ] = 0
    max_results: Annotated[
        int,
        Field(ge=0, description="Row budget, 0 for unbounded"),
    ] = 0
    channel_capacity: Annotated[
        int,
        Field(ge=1, le=10000, description="Buffered pages"),
    ] = 100


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------


class LoggingConfig(ConfigBaseModel):
    """Logging section.

    Attributes:
        level: Minimum level to write.
        format: Log output format. None picks console on a TTY and
            logfmt otherwise.
    """

    level: LogLevel = Field(default=LogLevel.INFO)
    format: LogFormat | None = Field(default=None)
