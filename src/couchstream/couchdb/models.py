"""Pydantic models for CouchDB API requests and responses."""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Annotated, Any, Literal, Self

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from couchstream.couchdb.exceptions import CouchDecodeError


__all__ = [
    "BulkDocResult",
    "Change",
    "ChangeEvent",
    "Cursor",
    "DatabaseInfo",
    "FeedEvent",
    "FindQuery",
    "FindResult",
    "FinishedEvent",
    "Page",
    "ServerInfo",
    "StreamState",
    "parse_feed_line",
]


def _coerce_cursor(value: object) -> object:
    """Normalize a server sequence value to an opaque string.

    CouchDB 2.x and later send strings, 1.x sends integers, and some
    clustered deployments send arrays. Strings pass through untouched.
    """
    if isinstance(value, str) or value is None:
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return json.dumps(value, separators=(",", ":"))


Cursor = Annotated[str, BeforeValidator(_coerce_cursor)]
"""Opaque position token. Compare for equality only, never for order."""


class StreamState(StrEnum):
    """States of a changes stream.

    Attributes:
        IDLE: No request in flight; the next step issues one.
        AWAITING_RESPONSE: A request is built and its headers are awaited.
        READING_LINES: A 2xx body is open and being read line by line.
        CLOSED: Terminal. The feed finished, failed, or was closed.
    """

    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    READING_LINES = "reading_lines"
    CLOSED = "closed"


class CouchBaseModel(BaseModel):
    """Base model with common configuration for all CouchDB models."""

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=False,
        extra="ignore",  # CouchDB adds fields between releases
    )


# ---------------------------------------------------------------------------
# Changes feed
# ---------------------------------------------------------------------------


class Change(CouchBaseModel):
    """A single leaf revision reported for a changed document."""

    rev: str


class ChangeEvent(CouchBaseModel):
    """One document change from the ``_changes`` feed.

    The ``doc`` field is only populated when the feed was requested with
    ``include_docs=true``.
    """

    seq: Cursor
    id: str
    changes: list[Change]
    deleted: bool = False
    doc: dict[str, Any] | None = None

    @property
    def revisions(self) -> list[str]:
        """Return the revision tokens of this change."""
        return [change.rev for change in self.changes]


class FinishedEvent(CouchBaseModel):
    """Terminal line of a feed response carrying the last sequence.

    ``pending`` is missing on CouchDB 1.x.
    """

    last_seq: Cursor
    pending: int | None = None


type FeedEvent = ChangeEvent | FinishedEvent

# Tried in order; the first shape that validates wins.
_FEED_EVENT_SHAPES: tuple[type[ChangeEvent] | type[FinishedEvent], ...] = (
    ChangeEvent,
    FinishedEvent,
)


def parse_feed_line(line: str) -> FeedEvent:
    """Decode one non-empty line of a continuous changes feed.

    Args:
        line: A single line of newline-delimited JSON.

    Returns:
        The decoded event.

    Raises:
        CouchDecodeError: If the line is not JSON or matches no event shape.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        msg = "Changes feed line is not valid JSON"
        raise CouchDecodeError(msg, payload=line) from exc

    if isinstance(data, dict):
        for shape in _FEED_EVENT_SHAPES:
            try:
                return shape.model_validate(data)
            except ValidationError:
                continue

    msg = "Changes feed line matches no known event shape"
    raise CouchDecodeError(msg, payload=line)


# ---------------------------------------------------------------------------
# Mango queries
# ---------------------------------------------------------------------------


class FindQuery(CouchBaseModel):
    """A Mango query sent to ``POST /{db}/_find``.

    Unset optional fields are left out of the request body so the server
    applies its own defaults.
    """

    selector: dict[str, Any]
    limit: int | None = Field(default=None, ge=0)
    skip: int | None = Field(default=None, ge=0)
    sort: list[str | dict[str, Literal["asc", "desc"]]] = Field(default_factory=list)
    fields: list[str] | None = None
    use_index: str | list[str] | None = None
    r: int | None = None
    bookmark: str | None = None
    update: bool | None = None
    stable: bool | None = None
    execution_stats: bool | None = None

    @classmethod
    def find_all(cls) -> Self:
        """Return a query that selects every non-deleted document."""
        return cls(selector={"_id": {"$ne": None}})

    def to_body(self) -> dict[str, Any]:
        """Serialize to the JSON body expected by ``_find``."""
        body = self.model_dump(exclude_none=True, exclude={"selector"})
        body["selector"] = self.selector
        if not self.sort:
            body.pop("sort", None)
        return body


class FindResult(CouchBaseModel):
    """Raw response of a ``_find`` call."""

    docs: list[dict[str, Any]] | None = None
    bookmark: str | None = None
    warning: str | None = None
    error: str | None = None
    reason: str | None = None


class Page[T](CouchBaseModel):
    """One bounded batch of rows from a single paginated request.

    Attributes:
        rows: Decoded documents, in server order.
        bookmark: Continuation token for the next page, or None.
        fetched: Rows the server returned before filtering; None means
            the same as the length of ``rows``.
    """

    rows: list[T] = Field(default_factory=list)
    bookmark: str | None = None
    fetched: int | None = Field(default=None, ge=0)

    @property
    def total_rows(self) -> int:
        """Number of rows on this page."""
        return len(self.rows)

    @property
    def fetched_rows(self) -> int:
        """Number of rows the server sent for this page."""
        return len(self.rows) if self.fetched is None else self.fetched

    def __len__(self) -> int:
        return len(self.rows)


# ---------------------------------------------------------------------------
# Server and database metadata
# ---------------------------------------------------------------------------


class ServerInfo(CouchBaseModel):
    """Welcome message returned by ``GET /``."""

    couchdb: str
    version: str
    uuid: str | None = None
    features: list[str] = Field(default_factory=list)
    vendor: dict[str, str] = Field(default_factory=dict)


class DatabaseInfo(CouchBaseModel):
    """Database information returned by ``GET /{db}``."""

    db_name: str
    doc_count: int = 0
    doc_del_count: int = 0
    update_seq: Cursor | None = None
    purge_seq: Cursor | None = None
    compact_running: bool = False
    sizes: dict[str, int] = Field(default_factory=dict)
    instance_start_time: str | None = None


class BulkDocResult(CouchBaseModel):
    """Per-document outcome of a ``_bulk_docs`` write."""

    id: str | None = None
    rev: str | None = None
    ok: bool | None = None
    error: str | None = None
    reason: str | None = None

    @property
    def success(self) -> bool:
        """Return True if the document was written."""
        return self.error is None
