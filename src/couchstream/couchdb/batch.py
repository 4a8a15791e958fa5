"""Bookmark-driven pagination of Mango queries into a bounded channel."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from couchstream.couchdb.channel import deliver
from couchstream.couchdb.exceptions import CouchError


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from couchstream.couchdb.channel import PageSender
    from couchstream.couchdb.models import FindQuery, Page


__all__ = ["DEFAULT_PAGE_SIZE", "BatchPaginator"]


DEFAULT_PAGE_SIZE = 1000


class BatchPaginator:
    """Retrieve every row of a query by following server bookmarks.

    Each request asks for at most ``page_size`` rows and carries the
    bookmark returned by the previous response. Accepted pages are pushed
    into the channel one at a time; a full channel suspends the paginator,
    and only one request is ever outstanding. The paginator owns the sender
    and closes it when it stops, whatever the reason.

    Pagination stops cleanly when the server returns an empty page, when it
    returns no bookmark or the bookmark that was just sent, when the consumer
    closes its end of the channel, or when ``max_results`` rows have been
    sent. The budget is checked after whole pages, so it is rounded up to the
    page boundary and never truncates a page. A page whose rows were all
    filtered out by ``fetch`` is not sent, but its bookmark is followed.

    A failed request aborts the run and its error is raised to the caller.
    Pages sent before the failure stay delivered.

    Example:
        ```python
        sender, receiver = open_page_channel()
        paginator = BatchPaginator(db.find, FindQuery.find_all(), sender)
        total = await paginator.run()
        ```

    Attributes:
        page_size: Rows requested per page.
        max_results: Row budget, or 0 for no budget.
    """

    def __init__(
        self,
        fetch: Callable[[FindQuery], Awaitable[Page[Any]]],
        query: FindQuery,
        sender: PageSender,
        *,
        page_size: int = 0,
        max_results: int = 0,
    ) -> None:
        """Initialize the paginator.

        Args:
            fetch: Executes one ``_find`` request and returns its page.
            query: Base query; its ``limit`` and ``bookmark`` are replaced
                on every request.
            sender: Send side of the page channel.
            page_size: Rows per request; 0 selects ``DEFAULT_PAGE_SIZE``.
            max_results: Row budget; 0 means unbounded.

        Raises:
            ValueError: If page_size or max_results is negative.
        """
        if page_size < 0 or max_results < 0:
            msg = "page_size and max_results must not be negative"
            raise ValueError(msg)

        self.page_size = page_size or DEFAULT_PAGE_SIZE
        self.max_results = max_results
        self._fetch = fetch
        self._query = query
        self._sender = sender
        self._bookmark: str | None = None
        self._total = 0
        self._pages = 0
        self._started = False
        self._logger = structlog.get_logger(__name__)

    @property
    def bookmark(self) -> str | None:
        """Bookmark of the last accepted page."""
        return self._bookmark

    @property
    def total_rows(self) -> int:
        """Rows delivered so far."""
        return self._total

    @property
    def pages(self) -> int:
        """Pages delivered so far."""
        return self._pages

    async def run(self) -> int:
        """Paginate until the result set is exhausted or a stop condition hits.

        Returns:
            Total number of rows delivered to the channel.

        Raises:
            CouchError: If a page request fails.
            RuntimeError: If the paginator has already been run.
        """
        if self._started:
            msg = "BatchPaginator can only be run once"
            raise RuntimeError(msg)
        self._started = True

        log = self._logger.bind(
            page_size=self.page_size,
            max_results=self.max_results,
        )
        log.debug("batch_started")

        async with self._sender:
            while True:
                query = self._query.model_copy(
                    update={"limit": self.page_size, "bookmark": self._bookmark},
                )
                try:
                    page = await self._fetch(query)
                except CouchError as exc:
                    log.warning(
                        "batch_failed",
                        error=str(exc),
                        pages=self._pages,
                        total_rows=self._total,
                    )
                    raise

                if page.fetched_rows == 0:
                    log.debug("batch_empty_page")
                    break

                if page.bookmark is None or page.bookmark == self._bookmark:
                    log.debug("batch_bookmark_unchanged", bookmark=page.bookmark)
                    break
                self._bookmark = page.bookmark

                if page.total_rows == 0:
                    log.debug("batch_page_filtered", fetched=page.fetched_rows)
                    continue

                if not await deliver(self._sender, page):
                    log.info("batch_receiver_closed", total_rows=self._total)
                    break

                self._pages += 1
                self._total += page.total_rows
                log.debug(
                    "batch_page_sent",
                    rows=page.total_rows,
                    total_rows=self._total,
                )

                if self.max_results and self._total >= self.max_results:
                    log.debug("batch_budget_reached")
                    break

        log.info("batch_finished", pages=self._pages, total_rows=self._total)
        return self._total
