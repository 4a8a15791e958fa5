"""Handle for a single CouchDB database."""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import structlog
from pydantic import BaseModel, ValidationError

from couchstream.couchdb.batch import BatchPaginator
from couchstream.couchdb.changes import ChangesStream
from couchstream.couchdb.channel import DEFAULT_CHANNEL_CAPACITY, iter_pages
from couchstream.couchdb.exceptions import (
    CouchDecodeError,
    CouchNotFoundError,
    CouchProtocolError,
)
from couchstream.couchdb.models import (
    BulkDocResult,
    DatabaseInfo,
    FindQuery,
    FindResult,
    Page,
)


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Mapping

    from couchstream.couchdb.channel import PageSender
    from couchstream.couchdb.client import CouchClient


__all__ = ["Database"]


# CouchDB sends this literal when a query has no further pages.
_NO_BOOKMARK = frozenset({"", "nil"})


def _doc_path(doc_id: str) -> str:
    """Quote a document id for use in a URL path."""
    if doc_id.startswith("_design/"):
        return "_design/" + quote(doc_id.removeprefix("_design/"), safe="")
    return quote(doc_id, safe="")


class Database:
    """Operations on one database of a :class:`CouchClient`.

    Obtained from :meth:`CouchClient.database`. The handle is cheap and holds
    no state besides the name; it can be shared between tasks.
    """

    def __init__(self, client: CouchClient, name: str) -> None:
        self._client = client
        self._name = name
        self._path = f"/{quote(name, safe='')}"
        self._logger = structlog.get_logger(__name__).bind(database=name)

    def __repr__(self) -> str:
        return f"Database(name={self._name!r})"

    @property
    def name(self) -> str:
        """Database name."""
        return self._name

    @property
    def client(self) -> CouchClient:
        """Client this database belongs to."""
        return self._client

    # -------------------------------------------------------------------------
    # Database and Document Operations
    # -------------------------------------------------------------------------

    async def info(self) -> DatabaseInfo:
        """Get database information.

        Raises:
            CouchNotFoundError: If the database does not exist.
        """
        response = await self._client.request("GET", self._path)
        return DatabaseInfo.model_validate(self._client.decode_json(response))

    async def get[M: BaseModel](
        self,
        doc_id: str,
        model: type[M] | None = None,
    ) -> M | dict[str, Any]:
        """Get a document by id.

        Args:
            doc_id: The document id.
            model: Optional pydantic model to decode the document into.

        Returns:
            The document as a dict, or as ``model`` if given.

        Raises:
            CouchNotFoundError: If the document does not exist.
            CouchDecodeError: If the document does not fit ``model``.
        """
        response = await self._client.request(
            "GET",
            f"{self._path}/{_doc_path(doc_id)}",
        )
        data = self._client.decode_json(response)
        if model is None:
            return data
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            msg = f"Document {doc_id!r} does not match {model.__name__}"
            raise CouchDecodeError(msg, payload=response.text) from exc

    async def exists(self, doc_id: str) -> bool:
        """Check whether a document exists."""
        try:
            await self._client.request("HEAD", f"{self._path}/{_doc_path(doc_id)}")
        except CouchNotFoundError:
            return False
        return True

    async def bulk_docs(self, docs: list[dict[str, Any]]) -> list[BulkDocResult]:
        """Write several documents in one request.

        Documents that were written get their ``_id`` and ``_rev`` updated in
        place, so they can be saved again without a fetch.

        Args:
            docs: Documents to create or update.

        Returns:
            One result per document, in input order.
        """
        if not docs:
            return []

        response = await self._client.request(
            "POST",
            f"{self._path}/_bulk_docs",
            json={"docs": docs},
        )
        data = self._client.decode_json(response)
        try:
            results = [BulkDocResult.model_validate(item) for item in data]
        except (TypeError, ValidationError) as exc:
            msg = "Unexpected _bulk_docs response"
            raise CouchDecodeError(msg, payload=response.text) from exc

        for doc, result in zip(docs, results, strict=False):
            if result.success and result.id is not None:
                doc["_id"] = result.id
                if result.rev is not None:
                    doc["_rev"] = result.rev

        failed = sum(1 for result in results if not result.success)
        self._logger.debug("bulk_docs_written", count=len(results), failed=failed)
        return results

    # -------------------------------------------------------------------------
    # Mango Queries
    # -------------------------------------------------------------------------

    async def find(
        self,
        query: FindQuery,
        model: type[BaseModel] | None = None,
    ) -> Page[Any]:
        """Run a single ``_find`` request.

        Design documents are dropped from the rows but still counted in
        ``Page.fetched``, so a page holding only design documents is not
        mistaken for the end of the result set. A ``"nil"`` or empty bookmark
        is reported as None.

        Args:
            query: The Mango query, including any ``limit`` and ``bookmark``.
            model: Optional pydantic model to decode each row into.

        Returns:
            One page of rows with the server's continuation bookmark.

        Raises:
            CouchProtocolError: If the server rejects the query.
            CouchDecodeError: If the response or a row has an unexpected shape.
        """
        response = await self._client.request(
            "POST",
            f"{self._path}/_find",
            json=query.to_body(),
        )
        data = self._client.decode_json(response)

        try:
            result = FindResult.model_validate(data)
        except ValidationError as exc:
            msg = "Unexpected _find response"
            raise CouchDecodeError(msg, payload=response.text) from exc

        if result.docs is None:
            if result.error is not None:
                raise CouchProtocolError(
                    response.status_code,
                    error=result.error,
                    reason=result.reason,
                    response=response,
                )
            msg = "_find response has no docs"
            raise CouchDecodeError(msg, payload=response.text)

        if result.warning:
            self._logger.debug("find_warning", warning=result.warning)

        docs = [
            doc for doc in result.docs if not str(doc.get("_id", "")).startswith("_")
        ]
        rows: list[Any] = docs
        if model is not None:
            try:
                rows = [model.model_validate(doc) for doc in docs]
            except ValidationError as exc:
                msg = f"Row does not match {model.__name__}"
                raise CouchDecodeError(msg, payload=str(exc)) from exc

        bookmark = None if result.bookmark in _NO_BOOKMARK else result.bookmark
        return Page[Any](rows=rows, bookmark=bookmark, fetched=len(result.docs))

    async def find_batched(
        self,
        query: FindQuery,
        sender: PageSender,
        *,
        page_size: int = 0,
        max_results: int = 0,
        model: type[BaseModel] | None = None,
    ) -> int:
        """Send every page of a query into a channel.

        Runs a :class:`BatchPaginator`, which closes ``sender`` when it
        stops. Run it concurrently with a consumer of the receiving side.

        Args:
            query: The base Mango query.
            sender: Send side of a page channel.
            page_size: Rows per request; 0 selects the default of 1000.
            max_results: Row budget, rounded up to whole pages; 0 is unbounded.
            model: Optional pydantic model to decode each row into.

        Returns:
            Number of rows delivered.

        Raises:
            CouchError: If a page request fails; earlier pages stay delivered.
        """
        fetch = functools.partial(self.find, model=model)
        paginator = BatchPaginator(
            fetch,
            query,
            sender,
            page_size=page_size,
            max_results=max_results,
        )
        return await paginator.run()

    async def get_all_batched(
        self,
        sender: PageSender,
        *,
        page_size: int = 0,
        max_results: int = 0,
        model: type[BaseModel] | None = None,
    ) -> int:
        """Send every document of the database into a channel.

        Same as :meth:`find_batched` with :meth:`FindQuery.find_all`.
        """
        return await self.find_batched(
            FindQuery.find_all(),
            sender,
            page_size=page_size,
            max_results=max_results,
            model=model,
        )

    def iter_batches(
        self,
        query: FindQuery | None = None,
        *,
        page_size: int = 0,
        max_results: int = 0,
        model: type[BaseModel] | None = None,
        capacity: int = DEFAULT_CHANNEL_CAPACITY,
    ) -> AsyncGenerator[Page[Any], None]:
        """Iterate over the pages of a query with a background paginator.

        Wrap the iterator in ``contextlib.aclosing`` when the loop may end
        early, so the paginator is stopped as soon as the loop is left.

        Example:
            ```python
            async with aclosing(db.iter_batches(page_size=500)) as pages:
                async for page in pages:
                    for doc in page.rows:
                        print(doc["_id"])
            ```
        """
        producer = functools.partial(
            self.find_batched,
            query or FindQuery.find_all(),
            page_size=page_size,
            max_results=max_results,
            model=model,
        )
        return iter_pages(producer, capacity=capacity)

    # -------------------------------------------------------------------------
    # Changes Feed
    # -------------------------------------------------------------------------

    def changes(
        self,
        since: str | None = None,
        *,
        infinite: bool = False,
        params: Mapping[str, str] | None = None,
        read_timeout: float | None = None,
    ) -> ChangesStream:
        """Open a stream over this database's changes feed.

        Nothing is sent until the stream is first advanced.

        Args:
            since: Cursor to resume after; None starts from the beginning.
            infinite: Keep waiting for new changes after the known ones.
            params: Extra or overriding feed query parameters.
            read_timeout: Seconds of silence tolerated on an open feed.

        Returns:
            The configured stream.
        """
        stream = ChangesStream(
            self._client,
            self._name,
            since,
            params,
            read_timeout=read_timeout,
        )
        if infinite:
            stream.set_infinite(infinite)
        return stream
