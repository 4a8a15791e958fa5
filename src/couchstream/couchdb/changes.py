"""Resumable consumer of the CouchDB continuous changes feed."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Self
from urllib.parse import quote

import httpx
import structlog

from couchstream.couchdb.exceptions import (
    CouchError,
    CouchIdleTimeoutError,
    CouchTransportError,
)
from couchstream.couchdb.models import (
    ChangeEvent,
    FinishedEvent,
    StreamState,
    parse_feed_line,
)


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from couchstream.couchdb.client import CouchClient


__all__ = ["COUCH_MAX_TIMEOUT", "DEFAULT_PARAMS", "ChangesStream"]


# Largest idle timeout CouchDB accepts for a feed, in milliseconds.
COUCH_MAX_TIMEOUT = 60000

DEFAULT_PARAMS: Mapping[str, str] = {
    "feed": "continuous",
    "timeout": "0",
    "include_docs": "true",
}


class ChangesStream:
    """Pull-based stream over ``GET /{db}/_changes?feed=continuous``.

    The stream is an explicit state machine. From ``IDLE`` it builds a feed
    request resuming after ``last_seq``; in ``AWAITING_RESPONSE`` it waits for
    the response headers; in ``READING_LINES`` it decodes the body one line
    at a time. When the server closes the body the stream goes back to
    ``IDLE`` and subscribes again, so a caller only ever sees change events.

    In finite mode (the default) the server reports the changes it knows
    about and then a terminal ``last_seq`` line, which ends the stream. In
    infinite mode the terminal line and read timeouts on an idle feed are
    absorbed and the stream waits for new changes forever.

    Any other failure is fatal: the error is raised once and the stream is
    closed, so later calls return end of stream without touching the
    network.

    Example:
        ```python
        async with db.changes(since=saved_seq, infinite=True) as stream:
            async for event in stream:
                handle(event)
                saved_seq = stream.last_seq
        ```
    """

    def __init__(
        self,
        client: CouchClient,
        database: str,
        last_seq: str | None = None,
        params: Mapping[str, str] | None = None,
        *,
        read_timeout: float | None = None,
    ) -> None:
        """Initialize the stream without touching the network.

        Args:
            client: Client used to issue feed requests.
            database: Name of the database to follow.
            last_seq: Cursor to resume after, or None to start from the
                beginning of the change log.
            params: Query parameters overriding or extending
                ``DEFAULT_PARAMS`` (e.g. ``heartbeat`` or ``filter``).
            read_timeout: Seconds without a byte on an open feed before the
                read times out. None keeps the client's timeout.
        """
        self._client = client
        self._database = database
        self._path = f"/{quote(database, safe='')}/_changes"
        self._params = dict(DEFAULT_PARAMS)
        if params:
            self._params.update(params)
        self._last_seq = last_seq
        self._pending: int | None = None
        self._infinite = False
        self._read_timeout = read_timeout

        self._state = StreamState.IDLE
        self._request: httpx.Request | None = None
        self._response: httpx.Response | None = None
        self._lines: AsyncIterator[str] | None = None
        self._advancing = False
        self._logger = structlog.get_logger(__name__).bind(database=database)

    # -------------------------------------------------------------------------
    # Public state
    # -------------------------------------------------------------------------

    @property
    def database(self) -> str:
        """Name of the followed database."""
        return self._database

    @property
    def last_seq(self) -> str | None:
        """Cursor of the last delivered event, or the seed cursor."""
        return self._last_seq

    def set_last_seq(self, last_seq: str | None) -> None:
        """Move the resume cursor.

        Takes effect on the next subscription; a feed that is already open
        keeps reading from where it is.
        """
        self._last_seq = last_seq

    @property
    def infinite(self) -> bool:
        """Whether the stream keeps waiting after the known changes."""
        return self._infinite

    def set_infinite(self, infinite: bool) -> None:  # noqa: FBT001
        """Toggle between drain-then-stop and drain-then-wait.

        Also sets the ``timeout`` query parameter: the protocol maximum when
        infinite, 0 otherwise so the server answers with what it has.
        """
        self._infinite = infinite
        self._params["timeout"] = str(COUCH_MAX_TIMEOUT if infinite else 0)

    @property
    def params(self) -> dict[str, str]:
        """Copy of the base query parameters."""
        return dict(self._params)

    @property
    def pending(self) -> int | None:
        """Pending count from the last terminal line, if the server sent one."""
        return self._pending

    @property
    def state(self) -> StreamState:
        """Current state of the stream."""
        return self._state

    # -------------------------------------------------------------------------
    # Iteration
    # -------------------------------------------------------------------------

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.next()
        if event is None:
            raise StopAsyncIteration
        return event

    async def next(self) -> ChangeEvent | None:
        """Return the next change, or None once the stream has ended.

        Cancelling a pending call, for example with ``asyncio.wait_for``,
        drops the open response but leaves the stream usable: the next call
        subscribes again from the last delivered cursor.

        Returns:
            The next change event in server order, or None at end of stream.

        Raises:
            CouchTransportError: If the feed cannot be reached or breaks.
            CouchIdleTimeoutError: If a finite feed stays silent past the
                read timeout.
            CouchProtocolError: If the server answers with an error status.
            CouchDecodeError: If a feed line cannot be decoded.
            RuntimeError: If another call is already advancing this stream.
        """
        if self._advancing:
            msg = "ChangesStream is already being advanced by another task"
            raise RuntimeError(msg)

        self._advancing = True
        try:
            return await self._advance()
        except CouchError as exc:
            self._logger.warning(
                "changes_failed",
                error=str(exc),
                last_seq=self._last_seq,
            )
            await self.aclose()
            raise
        except asyncio.CancelledError:
            self._logger.debug("changes_cancelled", last_seq=self._last_seq)
            self._request = None
            await self._release()
            if self._state is not StreamState.CLOSED:
                self._state = StreamState.IDLE
            raise
        except BaseException:
            await self.aclose()
            raise
        finally:
            self._advancing = False

    async def _advance(self) -> ChangeEvent | None:
        while True:
            match self._state:
                case StreamState.CLOSED:
                    return None
                case StreamState.IDLE:
                    self._request = await self._build_request()
                    self._state = StreamState.AWAITING_RESPONSE
                case StreamState.AWAITING_RESPONSE:
                    await self._open_feed()
                case StreamState.READING_LINES:
                    event = await self._read_line()
                    if event is not None:
                        return event

    async def _build_request(self) -> httpx.Request:
        params = dict(self._params)
        if self._last_seq is not None:
            params["since"] = self._last_seq

        timeout = None
        if self._read_timeout is not None:
            base = self._client.timeout
            timeout = httpx.Timeout(
                base.write,
                connect=base.connect,
                read=self._read_timeout,
                pool=base.pool,
            )

        self._logger.debug("changes_request", since=self._last_seq)
        return await self._client.build_request(
            "GET",
            self._path,
            params=params,
            timeout=timeout,
        )

    async def _open_feed(self) -> None:
        request = self._request
        self._request = None
        if request is None:
            self._state = StreamState.IDLE
            return

        response = await self._client.send_streaming(request)
        self._response = response
        self._lines = response.aiter_lines()
        self._state = StreamState.READING_LINES

    async def _read_line(self) -> ChangeEvent | None:
        if self._lines is None:
            self._state = StreamState.IDLE
            return None

        try:
            line = await anext(self._lines)
        except StopAsyncIteration:
            self._logger.debug("changes_feed_closed", last_seq=self._last_seq)
            await self._release()
            self._state = StreamState.IDLE
            return None
        except httpx.ReadTimeout as exc:
            await self._release()
            if not self._infinite:
                raise CouchIdleTimeoutError(cause=exc) from exc
            self._logger.debug("changes_idle_timeout", last_seq=self._last_seq)
            self._state = StreamState.IDLE
            return None
        except httpx.RequestError as exc:
            msg = "Changes feed connection failed"
            raise CouchTransportError(msg, cause=exc) from exc

        if not line.strip():
            # Heartbeat
            return None

        event = parse_feed_line(line)

        if isinstance(event, FinishedEvent):
            self._last_seq = event.last_seq
            self._pending = event.pending
            await self._release()
            self._logger.debug(
                "changes_finished",
                last_seq=event.last_seq,
                pending=event.pending,
            )
            self._state = StreamState.IDLE if self._infinite else StreamState.CLOSED
            return None

        self._last_seq = event.seq
        return event

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    async def _release(self) -> None:
        lines = self._lines
        self._lines = None
        if isinstance(lines, AsyncGenerator):
            await lines.aclose()
        response = self._response
        self._response = None
        if response is not None:
            await response.aclose()

    async def aclose(self) -> None:
        """Close the stream and release any open response.

        The stream is finished afterwards; iterating it yields nothing.
        """
        self._state = StreamState.CLOSED
        self._request = None
        await self._release()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()
