"""Unit tests for the logging module."""

from __future__ import annotations

import asyncio
import logging

import pytest
import structlog

from couchstream.observability import (
    LogLevel,
    clear_operation_context,
    configure_logging,
    generate_operation_id,
    get_logger,
    get_operation_id,
    set_operation_id,
)


@pytest.fixture(autouse=True)
def reset_structlog() -> None:
    """Start every test from structlog's defaults."""
    structlog.reset_defaults()


# ---------------------------------------------------------------------------
# TestLogLevel
# ---------------------------------------------------------------------------


class TestLogLevel:
    """Tests for LogLevel enum."""

    @pytest.mark.parametrize(
        ("level", "expected"),
        [
            (LogLevel.DEBUG, logging.DEBUG),
            (LogLevel.INFO, logging.INFO),
            (LogLevel.WARNING, logging.WARNING),
            (LogLevel.ERROR, logging.ERROR),
            (LogLevel.CRITICAL, logging.CRITICAL),
        ],
    )
    def test_to_stdlib_level(self, level: LogLevel, expected: int) -> None:
        assert level.to_stdlib_level() == expected

    def test_values_are_lowercase(self) -> None:
        assert LogLevel("warning") is LogLevel.WARNING


# ---------------------------------------------------------------------------
# TestOperationId
# ---------------------------------------------------------------------------


class TestOperationId:
    """Tests for operation ID management."""

    def test_generate_operation_id(self) -> None:
        operation_id = generate_operation_id()

        assert len(operation_id) == 8
        int(operation_id, 16)

    def test_generate_operation_id_unique(self) -> None:
        ids = {generate_operation_id() for _ in range(100)}

        assert len(ids) == 100

    def test_default_is_none(self) -> None:
        assert get_operation_id() is None

    def test_set_and_clear(self) -> None:
        assert set_operation_id("dump-1") == "dump-1"
        assert get_operation_id() == "dump-1"

        clear_operation_context()

        assert get_operation_id() is None

    def test_set_generates_when_none(self) -> None:
        operation_id = set_operation_id()

        assert len(operation_id) == 8
        assert get_operation_id() == operation_id

    async def test_isolated_between_tasks(self) -> None:
        """Each task sees only the operation it started."""

        async def operation(name: str) -> str | None:
            set_operation_id(name)
            await asyncio.sleep(0)
            return get_operation_id()

        results = await asyncio.gather(operation("a"), operation("b"))

        assert results == ["a", "b"]
        assert get_operation_id() is None


# ---------------------------------------------------------------------------
# TestConfigureLogging
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for configure_logging function."""

    @pytest.mark.parametrize("level", ["debug", "INFO", LogLevel.ERROR])
    def test_accepts_names_and_enum(self, level: LogLevel | str) -> None:
        configure_logging(level=level, force_colors=False)

    def test_invalid_level_raises(self) -> None:
        with pytest.raises(ValueError, match="'loud' is not a valid LogLevel"):
            configure_logging(level="loud")

    def test_stdlib_level_follows(self) -> None:
        """Library loggers such as httpx use the same threshold."""
        configure_logging(level=LogLevel.WARNING, force_colors=False)

        assert logging.getLogger().level == logging.WARNING

    def test_colored_output(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(level=LogLevel.INFO, force_colors=True)

        get_logger(__name__).info("changes_started")

        assert "changes_started" in capfd.readouterr().err


# ---------------------------------------------------------------------------
# TestLogfmtOutput
# ---------------------------------------------------------------------------


class TestLogfmtOutput:
    """Tests for the logfmt renderer."""

    def test_key_order(self, capfd: pytest.CaptureFixture[str]) -> None:
        """Timestamp, level, event and operation id lead every line."""
        configure_logging(level=LogLevel.DEBUG, force_colors=False)
        set_operation_id("op-42")

        get_logger(__name__, database="orders").info("dump_started", page_size=500)

        line = capfd.readouterr().err.strip()
        assert line.startswith("timestamp=")
        assert "Z level=info event=dump_started operation_id=op-42" in line
        assert "database=orders" in line
        assert "page_size=500" in line

    def test_no_operation_id_when_unset(
        self,
        capfd: pytest.CaptureFixture[str],
    ) -> None:
        configure_logging(level=LogLevel.DEBUG, force_colors=False)

        get_logger(__name__).info("batch_finished")

        err = capfd.readouterr().err
        assert "batch_finished" in err
        assert "operation_id" not in err

    def test_booleans_are_explicit(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(level=LogLevel.DEBUG, force_colors=False)

        get_logger(__name__).info("changes_started", follow=True)

        assert "follow=true" in capfd.readouterr().err

    def test_values_with_spaces_are_quoted(
        self,
        capfd: pytest.CaptureFixture[str],
    ) -> None:
        configure_logging(level=LogLevel.DEBUG, force_colors=False)

        get_logger(__name__).warning("changes_failed", error="Changes feed idle timeout")

        assert 'error="Changes feed idle timeout"' in capfd.readouterr().err

    def test_level_filtering(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(level=LogLevel.WARNING, force_colors=False)
        logger = get_logger(__name__)

        logger.debug("debug_message")
        logger.info("info_message")
        logger.warning("warning_message")

        err = capfd.readouterr().err
        assert "debug_message" not in err
        assert "info_message" not in err
        assert "warning_message" in err

    def test_nothing_on_stdout(self, capfd: pytest.CaptureFixture[str]) -> None:
        """Stdout is reserved for command output."""
        configure_logging(level=LogLevel.DEBUG, force_colors=False)

        get_logger(__name__).info("event")

        assert capfd.readouterr().out == ""
