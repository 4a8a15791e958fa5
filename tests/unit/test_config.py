"""Unit tests for the configuration module."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from couchstream.config import (
    BatchConfig,
    ChangesConfig,
    ConfigurationError,
    ConfigurationFileNotFoundError,
    ConfigurationValidationError,
    CouchDBConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    Settings,
    clear_settings_cache,
    find_config_file,
    get_settings,
    load_settings,
)


if TYPE_CHECKING:
    from pathlib import Path


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_environment(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Run each test in an empty directory without couchstream variables."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("COUCHDB_PASSWORD", raising=False)
    for name in ("URL", "USERNAME", "PASSWORD"):
        monkeypatch.delenv(f"COUCHSTREAM_COUCHDB__{name}", raising=False)


@pytest.fixture
def sample_config_yaml(tmp_path: Path) -> Path:
    """Create a sample configuration file."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("""
couchdb:
  url: "http://couch.internal:5984/"
  username: "replicator"
  password: "s3cret"
  timeout: 30

changes:
  infinite: true
  include_docs: false
  heartbeat_ms: 10000
  read_timeout: 90

batch:
  page_size: 250
  max_results: 10000
  channel_capacity: 8

logging:
  level: "DEBUG"
  format: "logfmt"
""")
    return config_file


@pytest.fixture
def minimal_config_yaml(tmp_path: Path) -> Path:
    """Create a configuration file with only one value set."""
    config_file = tmp_path / "minimal.yaml"
    config_file.write_text("couchdb:\n  username: reader\n")
    return config_file


@pytest.fixture
def config_with_interpolation(tmp_path: Path) -> Path:
    """Create a configuration file that references environment variables."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("""
couchdb:
  url: "${TEST_COUCH_URL:-http://default:5984}"
  username: "admin"
  password: "${TEST_COUCH_PASSWORD}"
""")
    return config_file


# ---------------------------------------------------------------------------
# Schema Validation Tests
# ---------------------------------------------------------------------------


class TestSchemaValidation:
    """Tests for configuration schema validation."""

    def test_enum_values(self) -> None:
        assert LogFormat.CONSOLE == "console"
        assert LogFormat.LOGFMT == "logfmt"
        assert LogLevel.DEBUG == "DEBUG"
        assert LogLevel.CRITICAL == "CRITICAL"

    def test_couchdb_config_defaults(self) -> None:
        config = CouchDBConfig()

        assert config.url == "http://localhost:5984"
        assert config.username is None
        assert config.password is None
        assert config.timeout == 10.0
        assert config.connect_timeout == 5.0

    def test_couchdb_config_strips_trailing_slash(self) -> None:
        config = CouchDBConfig(url="http://couch:5984/")

        assert config.url == "http://couch:5984"

    def test_couchdb_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            CouchDBConfig(timeout=0)

    def test_changes_config_defaults(self) -> None:
        config = ChangesConfig()

        assert config.infinite is False
        assert config.include_docs is True
        assert config.heartbeat_ms is None
        assert config.read_timeout is None

    def test_changes_feed_params(self) -> None:
        assert ChangesConfig().feed_params() == {"include_docs": "true"}
        assert ChangesConfig(include_docs=False, heartbeat_ms=5000).feed_params() == {
            "include_docs": "false",
            "heartbeat": "5000",
        }

    def test_heartbeat_bounds(self) -> None:
        ChangesConfig(heartbeat_ms=1000)
        ChangesConfig(heartbeat_ms=60000)

        with pytest.raises(ValidationError):
            ChangesConfig(heartbeat_ms=500)
        with pytest.raises(ValidationError):
            ChangesConfig(heartbeat_ms=60001)

    def test_batch_config_defaults(self) -> None:
        config = BatchConfig()

        assert config.page_size == 0
        assert config.max_results == 0
        assert config.channel_capacity == 100

    def test_batch_config_bounds(self) -> None:
        with pytest.raises(ValidationError):
            BatchConfig(page_size=-1)
        with pytest.raises(ValidationError):
            BatchConfig(max_results=-5)
        with pytest.raises(ValidationError):
            BatchConfig(channel_capacity=0)

    def test_logging_config_defaults(self) -> None:
        config = LoggingConfig()

        assert config.level == LogLevel.INFO
        assert config.format is None

    def test_config_forbids_extra_fields(self) -> None:
        """Typos in configuration keys are rejected."""
        with pytest.raises(ValidationError):
            BatchConfig(pagesize=10)  # type: ignore[call-arg]


# ---------------------------------------------------------------------------
# Settings Loading Tests
# ---------------------------------------------------------------------------


class TestSettingsLoading:
    """Tests for settings loading functionality."""

    def test_load_settings_with_defaults(self) -> None:
        settings = load_settings()

        assert settings.couchdb.url == "http://localhost:5984"
        assert settings.changes.include_docs is True
        assert settings.batch.channel_capacity == 100
        assert settings.logging.level == LogLevel.INFO

    def test_load_settings_from_yaml(self, sample_config_yaml: Path) -> None:
        settings = load_settings(sample_config_yaml)

        assert settings.couchdb.url == "http://couch.internal:5984"
        assert settings.couchdb.username == "replicator"
        assert settings.couchdb.password == "s3cret"  # noqa: S105
        assert settings.couchdb.timeout == 30.0
        assert settings.changes.infinite is True
        assert settings.changes.heartbeat_ms == 10000
        assert settings.changes.read_timeout == 90.0
        assert settings.batch.page_size == 250
        assert settings.batch.channel_capacity == 8
        assert settings.logging.level == LogLevel.DEBUG
        assert settings.logging.format == LogFormat.LOGFMT

    def test_load_settings_minimal_yaml(self, minimal_config_yaml: Path) -> None:
        settings = load_settings(minimal_config_yaml)

        assert settings.couchdb.username == "reader"
        assert settings.couchdb.url == "http://localhost:5984"
        assert settings.batch.page_size == 0

    def test_load_settings_finds_default_file(self, tmp_path: Path) -> None:
        (tmp_path / "couchstream.yaml").write_text("batch:\n  page_size: 42\n")

        settings = load_settings()

        assert settings.batch.page_size == 42

    def test_require_config_file(self) -> None:
        with pytest.raises(ConfigurationFileNotFoundError) as exc_info:
            load_settings(require_config_file=True)

        assert "couchstream.yaml" in exc_info.value.message

    def test_explicit_missing_file_raises(self) -> None:
        """A path given on purpose must exist."""
        with pytest.raises(ConfigurationFileNotFoundError) as exc_info:
            load_settings("/nonexistent/config.yaml")

        assert exc_info.value.path == "/nonexistent/config.yaml"
        assert "not found" in exc_info.value.message.lower()

    def test_invalid_values_are_reported_by_path(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("batch:\n  channel_capacity: 0\n")

        with pytest.raises(ConfigurationValidationError) as exc_info:
            load_settings(config_file)

        assert "batch.channel_capacity" in exc_info.value.message
        assert exc_info.value.errors

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("couchdb: [unclosed\n")

        with pytest.raises(ConfigurationValidationError, match="Cannot read"):
            load_settings(config_file)

    def test_unknown_key_rejected(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("couchdb:\n  uri: http://typo:5984\n")

        with pytest.raises(ConfigurationValidationError):
            load_settings(config_file)


class TestEnvironmentVariableInterpolation:
    """Tests for ${VAR} interpolation in YAML values."""

    def test_interpolation_with_value(
        self,
        config_with_interpolation: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("TEST_COUCH_URL", "http://env-couch:6984")
        monkeypatch.setenv("TEST_COUCH_PASSWORD", "from-env")

        settings = load_settings(config_with_interpolation)

        assert settings.couchdb.url == "http://env-couch:6984"
        assert settings.couchdb.password == "from-env"  # noqa: S105

    def test_interpolation_with_default(
        self,
        config_with_interpolation: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.delenv("TEST_COUCH_URL", raising=False)
        monkeypatch.setenv("TEST_COUCH_PASSWORD", "from-env")

        settings = load_settings(config_with_interpolation)

        assert settings.couchdb.url == "http://default:5984"

    def test_interpolation_empty_when_missing(
        self,
        config_with_interpolation: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A missing variable without default leaves the password unset."""
        monkeypatch.delenv("TEST_COUCH_PASSWORD", raising=False)

        settings = load_settings(config_with_interpolation)

        assert settings.couchdb.password == ""


class TestPasswordResolution:
    """Tests for password_file and COUCHDB_PASSWORD fallbacks."""

    def test_password_from_file(self, tmp_path: Path) -> None:
        password_file = tmp_path / "password.txt"
        password_file.write_text("from-file\n")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(f'couchdb:\n  password_file: "{password_file}"\n')

        settings = load_settings(config_file)

        assert settings.couchdb.password == "from-file"  # noqa: S105

    def test_password_file_not_found(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text('couchdb:\n  password_file: "/nonexistent/pw"\n')

        with pytest.raises(ConfigurationValidationError) as exc_info:
            load_settings(config_file)

        assert "password file not found" in exc_info.value.message.lower()

    def test_password_takes_precedence_over_file(self, tmp_path: Path) -> None:
        password_file = tmp_path / "password.txt"
        password_file.write_text("from-file")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            f'couchdb:\n  password: "direct"\n  password_file: "{password_file}"\n',
        )

        settings = load_settings(config_file)

        assert settings.couchdb.password == "direct"  # noqa: S105

    def test_couchdb_password_env_fallback(
        self,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("COUCHDB_PASSWORD", "env-fallback")

        settings = load_settings()

        assert settings.couchdb.password == "env-fallback"  # noqa: S105


class TestEnvironmentVariableOverrides:
    """Tests for environment variable overrides."""

    def test_env_overrides_yaml(
        self,
        sample_config_yaml: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("COUCHSTREAM_BATCH__PAGE_SIZE", "500")

        settings = load_settings(sample_config_yaml)

        # YAML has 250
        assert settings.batch.page_size == 500

    def test_env_override_nested(
        self,
        minimal_config_yaml: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("COUCHSTREAM_CHANGES__INFINITE", "true")
        monkeypatch.setenv("COUCHSTREAM_COUCHDB__URL", "http://env:5984/")

        settings = load_settings(minimal_config_yaml)

        assert settings.changes.infinite is True
        assert settings.couchdb.url == "http://env:5984"
        assert settings.couchdb.username == "reader"


# ---------------------------------------------------------------------------
# Settings Caching Tests
# ---------------------------------------------------------------------------


class TestSettingsCaching:
    """Tests for settings caching behavior."""

    def test_get_settings_caches(self) -> None:
        assert get_settings() is get_settings()

    def test_clear_settings_cache(self) -> None:
        settings1 = get_settings()
        clear_settings_cache()
        settings2 = get_settings()

        assert settings1 is not settings2

    def test_load_settings_updates_cache(self, sample_config_yaml: Path) -> None:
        settings1 = get_settings()
        settings2 = load_settings(sample_config_yaml)

        assert get_settings() is settings2
        assert settings2 is not settings1


# ---------------------------------------------------------------------------
# Find Config File Tests
# ---------------------------------------------------------------------------


class TestFindConfigFile:
    """Tests for find_config_file function."""

    def test_find_explicit_path(self, sample_config_yaml: Path) -> None:
        assert find_config_file(sample_config_yaml) == sample_config_yaml
        assert find_config_file(str(sample_config_yaml)) == sample_config_yaml

    def test_find_nonexistent_returns_none(self) -> None:
        assert find_config_file("/nonexistent/config.yaml") is None

    def test_find_searches_default_paths(self, tmp_path: Path) -> None:
        config_file = tmp_path / "couchstream.yml"
        config_file.write_text("batch:\n  page_size: 1\n")

        result = find_config_file(None)

        assert result is not None
        assert result.resolve() == config_file.resolve()


# ---------------------------------------------------------------------------
# Exception Tests
# ---------------------------------------------------------------------------


class TestExceptions:
    """Tests for configuration exceptions."""

    def test_configuration_error_base(self) -> None:
        exc = ConfigurationError("Test error message")

        assert exc.message == "Test error message"
        assert str(exc) == "Test error message"

    def test_file_not_found_lists_searched_paths(self) -> None:
        exc = ConfigurationFileNotFoundError(searched_paths=["/a", "/b"])

        assert exc.path is None
        assert "/a" in exc.message
        assert "/b" in exc.message

    def test_file_not_found_with_path(self) -> None:
        exc = ConfigurationFileNotFoundError(path="/path/to/config.yaml")

        assert "/path/to/config.yaml" in exc.message

    def test_validation_error_defaults(self) -> None:
        exc = ConfigurationValidationError("Validation failed")

        assert exc.message == "Validation failed"
        assert exc.errors == []

    def test_from_validation_error(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            BatchConfig(page_size=-1)

        exc = ConfigurationValidationError.from_validation_error(exc_info.value)

        assert exc.message.startswith("Invalid configuration: page_size:")
        assert exc.errors[0]["type"] == "greater_than_equal"


# ---------------------------------------------------------------------------
# Settings Object Tests
# ---------------------------------------------------------------------------


class TestSettingsObject:
    """Tests for the Settings object itself."""

    def test_settings_has_all_sections(self) -> None:
        settings = Settings()

        assert isinstance(settings.couchdb, CouchDBConfig)
        assert isinstance(settings.changes, ChangesConfig)
        assert isinstance(settings.batch, BatchConfig)
        assert isinstance(settings.logging, LoggingConfig)

    def test_masked_dump_hides_password(self) -> None:
        settings = Settings(couchdb=CouchDBConfig(password="hunter2"))

        data = settings.masked_dump()

        assert data["couchdb"]["password"] == "********"  # noqa: S105
        assert settings.couchdb.password == "hunter2"  # noqa: S105

    def test_masked_dump_without_password(self) -> None:
        data = Settings().masked_dump()

        assert data["couchdb"]["password"] is None
        assert data["batch"]["channel_capacity"] == 100
