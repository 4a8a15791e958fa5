"""couchstream: async CouchDB client with resumable changes feeds and batched queries."""

from __future__ import annotations

from couchstream.couchdb import (
    BatchPaginator,
    ChangeEvent,
    ChangesStream,
    CouchClient,
    CouchError,
    Database,
    FindQuery,
    Page,
    open_page_channel,
)


__version__ = "0.1.0"

__all__ = [
    "BatchPaginator",
    "ChangeEvent",
    "ChangesStream",
    "CouchClient",
    "CouchError",
    "Database",
    "FindQuery",
    "Page",
    "__version__",
    "open_page_channel",
]
