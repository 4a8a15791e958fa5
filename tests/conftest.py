"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from couchstream.config import clear_settings_cache
from couchstream.couchdb import CouchClient
from couchstream.observability import clear_operation_context


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator


COUCH_URL = "http://couch.test:5984"


@pytest.fixture
def couch_url() -> str:
    """Base URL of the mocked CouchDB server."""
    return COUCH_URL


@pytest.fixture
async def client(couch_url: str) -> AsyncGenerator[CouchClient, None]:
    """Client pointed at the mocked server."""
    async with CouchClient(couch_url, username="admin", password="secret") as c:
        yield c


@pytest.fixture(autouse=True)
def clean_global_state() -> Generator[None, None, None]:
    """Reset cached settings and logging context around each test."""
    clear_settings_cache()
    clear_operation_context()
    yield
    clear_settings_cache()
    clear_operation_context()
