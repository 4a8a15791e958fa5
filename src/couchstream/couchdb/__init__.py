"""CouchDB API client module.

This module provides an async HTTP client for CouchDB with two streaming
reads on top of plain request/response calls: a resumable consumer of the
continuous changes feed, and a bookmark-driven paginator that pushes Mango
query results through a bounded channel.

Example:
    ```python
    from couchstream.couchdb import CouchClient, FindQuery

    async with CouchClient("http://localhost:5984", "admin", "secret") as client:
        db = client.database("orders")

        # Follow the changes feed from a saved cursor
        async with db.changes(since=saved_seq) as stream:
            async for event in stream:
                print(event.id, event.revisions)
        saved_seq = stream.last_seq

        # Read a large result set one page at a time
        query = FindQuery(selector={"type": "order"})
        async for page in db.iter_batches(query, page_size=500):
            for doc in page.rows:
                print(doc["_id"])
    ```
"""

from __future__ import annotations

from couchstream.couchdb.batch import DEFAULT_PAGE_SIZE, BatchPaginator
from couchstream.couchdb.changes import COUCH_MAX_TIMEOUT, DEFAULT_PARAMS, ChangesStream
from couchstream.couchdb.channel import (
    DEFAULT_CHANNEL_CAPACITY,
    PageReceiver,
    PageSender,
    deliver,
    iter_pages,
    open_page_channel,
)
from couchstream.couchdb.client import CouchClient
from couchstream.couchdb.database import Database
from couchstream.couchdb.exceptions import (
    CouchAuthenticationError,
    CouchConflictError,
    CouchDecodeError,
    CouchError,
    CouchIdleTimeoutError,
    CouchNotFoundError,
    CouchProtocolError,
    CouchTransportError,
)
from couchstream.couchdb.models import (
    BulkDocResult,
    Change,
    ChangeEvent,
    Cursor,
    DatabaseInfo,
    FeedEvent,
    FindQuery,
    FindResult,
    FinishedEvent,
    Page,
    ServerInfo,
    StreamState,
    parse_feed_line,
)


__all__ = [
    "COUCH_MAX_TIMEOUT",
    "DEFAULT_CHANNEL_CAPACITY",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_PARAMS",
    "BatchPaginator",
    "BulkDocResult",
    "Change",
    "ChangeEvent",
    "ChangesStream",
    "CouchAuthenticationError",
    "CouchClient",
    "CouchConflictError",
    "CouchDecodeError",
    "CouchError",
    "CouchIdleTimeoutError",
    "CouchNotFoundError",
    "CouchProtocolError",
    "CouchTransportError",
    "Cursor",
    "Database",
    "DatabaseInfo",
    "FeedEvent",
    "FindQuery",
    "FindResult",
    "FinishedEvent",
    "Page",
    "PageReceiver",
    "PageSender",
    "ServerInfo",
    "StreamState",
    "deliver",
    "iter_pages",
    "open_page_channel",
    "parse_feed_line",
]
