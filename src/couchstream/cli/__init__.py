"""CLI module for couchstream."""

from __future__ import annotations

import asyncio
import json
import sys
from contextlib import aclosing
from dataclasses import dataclass
from pathlib import Path  # noqa: TC003 - typer resolves annotations at runtime
from typing import TYPE_CHECKING, Any

import typer

from couchstream import __version__
from couchstream.config import (
    ConfigurationError,
    LogFormat,
    Settings,
    find_config_file,
    load_settings,
)
from couchstream.couchdb import CouchClient, CouchError, FindQuery
from couchstream.observability import (
    LogLevel,
    configure_logging,
    get_logger,
    set_operation_id,
)


if TYPE_CHECKING:
    from typing import TextIO

    from couchstream.couchdb import ChangesStream


app = typer.Typer(
    name="couchstream",
    help="Follow CouchDB changes feeds and export query results.",
    no_args_is_help=True,
)


@dataclass
class _CliState:
    config_file: str | None = None
    level: LogLevel | None = None


def version_callback(value: bool) -> None:  # noqa: FBT001
    """Print version and exit."""
    if value:
        typer.echo(f"couchstream version {__version__}")
        raise typer.Exit


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--verbose",
        "-V",
        help="Enable verbose (debug) logging.",
    ),
    quiet: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--quiet",
        "-q",
        help="Only show warnings and errors.",
    ),
    config_file: str | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
) -> None:
    """couchstream CLI."""
    del version  # Handled by callback

    if verbose and quiet:
        typer.echo("Error: --verbose and --quiet are mutually exclusive.", err=True)
        raise typer.Exit(1)

    level: LogLevel | None = None
    if verbose:
        level = LogLevel.DEBUG
    elif quiet:
        level = LogLevel.WARNING

    ctx.obj = _CliState(config_file=config_file, level=level)


def _setup(ctx: typer.Context) -> Settings:
    """Load settings and configure logging for a command."""
    state: _CliState = ctx.obj or _CliState()
    try:
        settings = load_settings(state.config_file)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(1) from exc

    log_format = settings.logging.format
    configure_logging(
        level=state.level or settings.logging.level,
        force_colors=None if log_format is None else log_format == LogFormat.CONSOLE,
    )
    return settings


def _fail(exc: CouchError) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(1)


# ---------------------------------------------------------------------------
# changes
# ---------------------------------------------------------------------------


async def _follow_changes(
    settings: Settings,
    database: str,
    *,
    since: str | None,
    follow: bool,
) -> None:
    set_operation_id()
    log = get_logger(__name__, database=database)
    log.info("changes_started", since=since, follow=follow)

    count = 0
    stream: ChangesStream | None = None
    try:
        async with CouchClient.from_config(settings.couchdb) as client:
            stream = client.database(database).changes(
                since,
                infinite=follow,
                params=settings.changes.feed_params(),
                read_timeout=settings.changes.read_timeout,
            )
            async with stream:
                async for event in stream:
                    typer.echo(event.model_dump_json(exclude_defaults=True))
                    count += 1
    finally:
        # Runs on errors and Ctrl-C too.
        last_seq = since if stream is None else stream.last_seq
        log.info("changes_stopped", changes=count, last_seq=last_seq)
        if last_seq is not None:
            typer.echo(f"last_seq: {last_seq}", err=True)


@app.command()
def changes(
    ctx: typer.Context,
    database: str = typer.Argument(..., help="Database to follow."),
    since: str | None = typer.Option(
        None,
        "--since",
        "-s",
        help="Resume after this sequence.",
    ),
    follow: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--follow",
        "-f",
        help="Keep waiting for new changes (also enabled by changes.infinite).",
    ),
) -> None:
    """Print the changes of a database as JSON lines.

    The last sequence is printed to stderr on exit, including after an
    error or Ctrl-C, so it can be passed back with --since.
    """
    settings = _setup(ctx)
    follow = follow or settings.changes.infinite

    try:
        asyncio.run(_follow_changes(settings, database, since=since, follow=follow))
    except CouchError as exc:
        raise _fail(exc) from exc
    except KeyboardInterrupt:
        raise typer.Exit(130) from None


# ---------------------------------------------------------------------------
# dump
# ---------------------------------------------------------------------------


async def _dump(  # noqa: PLR0913
    settings: Settings,
    database: str,
    query: FindQuery,
    output: TextIO,
    *,
    page_size: int,
    max_results: int,
) -> int:
    set_operation_id()
    log = get_logger(__name__, database=database)
    log.info("dump_started", page_size=page_size, max_results=max_results)

    rows = 0
    async with CouchClient.from_config(settings.couchdb) as client:
        batches = client.database(database).iter_batches(
            query,
            page_size=page_size,
            max_results=max_results,
            capacity=settings.batch.channel_capacity,
        )
        async with aclosing(batches):
            async for page in batches:
                for row in page.rows:
                    output.write(json.dumps(row, separators=(",", ":")) + "\n")
                rows += page.total_rows

    log.info("dump_finished", rows=rows)
    return rows


def _parse_selector(value: str | None) -> dict[str, Any] | None:
    if value is None:
        return None
    try:
        selector = json.loads(value)
    except json.JSONDecodeError as exc:
        msg = f"Selector is not valid JSON: {exc}"
        raise typer.BadParameter(msg) from exc
    if not isinstance(selector, dict):
        msg = "Selector must be a JSON object"
        raise typer.BadParameter(msg)
    return selector


@app.command()
def dump(  # noqa: PLR0913
    ctx: typer.Context,
    database: str = typer.Argument(..., help="Database to export."),
    selector: str | None = typer.Option(
        None,
        "--selector",
        help="Mango selector as JSON (default: all documents).",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write JSON lines to this file instead of stdout.",
    ),
    page_size: int | None = typer.Option(
        None,
        "--page-size",
        min=0,
        help="Rows per request (0 for the default of 1000).",
    ),
    max_results: int | None = typer.Option(
        None,
        "--max-results",
        min=0,
        help="Stop after this many rows, rounded up to whole pages.",
    ),
) -> None:
    """Export the documents matching a selector as JSON lines."""
    settings = _setup(ctx)
    parsed = _parse_selector(selector)
    query = FindQuery(selector=parsed) if parsed is not None else FindQuery.find_all()

    def run(stream: TextIO) -> int:
        return asyncio.run(
            _dump(
                settings,
                database,
                query,
                stream,
                page_size=settings.batch.page_size if page_size is None else page_size,
                max_results=(
                    settings.batch.max_results if max_results is None else max_results
                ),
            ),
        )

    try:
        if output is None:
            rows = run(sys.stdout)
        else:
            with output.open("w", encoding="utf-8") as stream:
                rows = run(stream)
    except CouchError as exc:
        raise _fail(exc) from exc

    typer.echo(f"{rows} rows", err=True)


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@app.command()
def config(ctx: typer.Context) -> None:
    """Validate and print the effective configuration."""
    settings = _setup(ctx)
    state: _CliState = ctx.obj or _CliState()

    config_file = find_config_file(state.config_file)
    source = str(config_file) if config_file else "environment and defaults"
    typer.echo(f"Configuration loaded from {source}", err=True)
    typer.echo(json.dumps(settings.masked_dump(), indent=2))


__all__ = ["app"]
