"""Async HTTP client for the CouchDB API."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any, Self
from urllib.parse import quote

import httpx
import structlog

from couchstream.couchdb.database import Database
from couchstream.couchdb.exceptions import (
    CouchAuthenticationError,
    CouchConflictError,
    CouchDecodeError,
    CouchError,
    CouchNotFoundError,
    CouchProtocolError,
    CouchTransportError,
)
from couchstream.couchdb.models import ServerInfo


if TYPE_CHECKING:
    from collections.abc import Mapping

    from couchstream.config import CouchDBConfig


__all__ = ["CouchClient"]


class CouchClient:
    """Async client for a CouchDB server.

    Plain calls go through :meth:`request`, which maps HTTP failures onto
    the ``CouchError`` hierarchy. Long-lived reads such as the changes feed
    build their request with :meth:`build_request` and open it with
    :meth:`send_streaming`. Connection pooling, TLS and connect retries are
    left to httpx.

    Example:
        ```python
        async with CouchClient(
            "http://localhost:5984",
            username="admin",
            password="secret",
        ) as client:
            db = client.database("orders")
            info = await db.info()
            print(info.doc_count)
        ```

    Attributes:
        base_url: The server URL without a trailing slash.
        timeout: Default timeout for requests.
    """

    DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)

    def __init__(
        self,
        base_url: str,
        username: str | None = None,
        password: str | None = None,
        *,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the CouchDB client.

        Args:
            base_url: Server URL (e.g., "http://localhost:5984").
            username: User for HTTP basic authentication, if any.
            password: Password for HTTP basic authentication.
            timeout: Default timeouts; feed reads may override the read part.
            transport: Transport to use instead of the pooled default.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._auth = (
            httpx.BasicAuth(username, password or "") if username else None
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._logger = structlog.get_logger(__name__)

    @classmethod
    def from_config(cls, config: CouchDBConfig) -> Self:
        """Create a client from the ``couchdb`` configuration section."""
        return cls(
            config.url,
            username=config.username,
            password=config.password,
            timeout=httpx.Timeout(config.timeout, connect=config.connect_timeout),
        )

    async def __aenter__(self) -> Self:
        """Open the connection pool."""
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Close the connection pool."""
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Return the underlying httpx client, creating it on first use."""
        if self._client is None or self._client.is_closed:
            transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                auth=self._auth,
                timeout=self.timeout,
                transport=transport,
            )
        return self._client

    async def close(self) -> None:
        """Close pooled connections. The client reopens on next use."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # Core Request Methods
    # -------------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,  # noqa: ANN401
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Execute a buffered HTTP request.

        Args:
            method: HTTP method (GET, PUT, POST, DELETE, HEAD).
            path: Path relative to the server URL.
            params: Query parameters.
            json: JSON body data.
            headers: Additional headers.

        Returns:
            The successful HTTP response.

        Raises:
            CouchTransportError: For connection failures and timeouts.
            CouchProtocolError: For non-success statuses (or a subclass).
        """
        client = await self._ensure_client()
        log = self._logger.bind(method=method, path=path)

        try:
            response = await client.request(
                method,
                path,
                params=dict(params) if params else None,
                json=json,
                headers=dict(headers) if headers else None,
            )
        except httpx.TimeoutException as exc:
            log.warning("timeout_error", error=str(exc))
            msg = "Request timed out"
            raise CouchTransportError(msg, cause=exc) from exc
        except httpx.RequestError as exc:
            log.warning("connection_error", error=str(exc))
            raise CouchTransportError(cause=exc) from exc

        log.debug(
            "api_response",
            status_code=response.status_code,
            elapsed_ms=response.elapsed.total_seconds() * 1000,
        )
        self._raise_for_status(response)
        return response

    async def build_request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        timeout: httpx.Timeout | None = None,  # noqa: ASYNC109
    ) -> httpx.Request:
        """Build a request with the client's URL, headers and auth settings.

        Args:
            method: HTTP method.
            path: Path relative to the server URL.
            params: Query parameters.
            timeout: Override default timeout.

        Returns:
            A request ready for :meth:`send_streaming`.
        """
        client = await self._ensure_client()
        if timeout is None:
            return client.build_request(method, path, params=params)
        return client.build_request(method, path, params=params, timeout=timeout)

    async def send_streaming(self, request: httpx.Request) -> httpx.Response:
        """Send a request and return once the response headers have arrived.

        The body is left unread. The caller owns the response and must
        close it with ``aclose()``.

        Raises:
            CouchTransportError: If the request fails before headers arrive.
            CouchProtocolError: For a non-success status; the response is
                read and closed first.
        """
        client = await self._ensure_client()
        log = self._logger.bind(method=request.method, path=request.url.path)

        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            log.warning("timeout_error", error=str(exc))
            msg = "Request timed out"
            raise CouchTransportError(msg, cause=exc) from exc
        except httpx.RequestError as exc:
            log.warning("connection_error", error=str(exc))
            raise CouchTransportError(cause=exc) from exc

        log.debug("stream_opened", status_code=response.status_code)

        if not response.is_success:
            try:
                await response.aread()
            except httpx.RequestError as exc:
                raise CouchTransportError(cause=exc) from exc
            finally:
                await response.aclose()
            self._raise_for_status(response)

        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Map a non-success response onto the CouchError hierarchy."""
        if response.is_success:
            return

        status = response.status_code
        error: str | None = None
        reason: str | None = None
        # HEAD responses and proxies may not carry a CouchDB error body
        with contextlib.suppress(ValueError):
            body = response.json()
            if isinstance(body, dict):
                error = body.get("error")
                reason = body.get("reason")

        if status in {401, 403}:
            raise CouchAuthenticationError(
                status, error=error, reason=reason, response=response
            )

        if status == 404:  # noqa: PLR2004
            raise CouchNotFoundError(
                status, error=error, reason=reason, response=response
            )

        if status == 409:  # noqa: PLR2004
            raise CouchConflictError(
                status, error=error, reason=reason, response=response
            )

        raise CouchProtocolError(status, error=error, reason=reason, response=response)

    def decode_json(self, response: httpx.Response) -> Any:  # noqa: ANN401
        """Decode a response body as JSON.

        Raises:
            CouchDecodeError: If the body is not valid JSON.
        """
        try:
            return response.json()
        except ValueError as exc:
            msg = "Response body is not valid JSON"
            raise CouchDecodeError(
                msg,
                payload=response.text,
                response=response,
            ) from exc

    # -------------------------------------------------------------------------
    # Server Operations
    # -------------------------------------------------------------------------

    async def server_info(self) -> ServerInfo:
        """Get the server welcome message.

        Returns:
            Server vendor and version information.
        """
        response = await self.request("GET", "/")
        return ServerInfo.model_validate(self.decode_json(response))

    async def list_databases(self) -> list[str]:
        """List the names of all databases on the server."""
        response = await self.request("GET", "/_all_dbs")
        data = self.decode_json(response)
        if not isinstance(data, list):
            msg = "Expected a list of database names"
            raise CouchDecodeError(msg, payload=response.text, response=response)
        return [str(name) for name in data]

    async def database_exists(self, name: str) -> bool:
        """Check whether a database exists."""
        try:
            await self.request("HEAD", f"/{quote(name, safe='')}")
        except CouchNotFoundError:
            return False
        return True

    async def create_database(self, name: str, *, exist_ok: bool = False) -> bool:
        """Create a database.

        Args:
            name: Database name.
            exist_ok: If True, an existing database is not an error.

        Returns:
            True if the database was created, False if it already existed.

        Raises:
            CouchProtocolError: With status 412 if the database exists and
                exist_ok is False.
        """
        try:
            await self.request("PUT", f"/{quote(name, safe='')}")
        except CouchProtocolError as exc:
            if exist_ok and exc.status == 412:  # noqa: PLR2004
                return False
            raise
        self._logger.info("database_created", database=name)
        return True

    async def delete_database(self, name: str) -> None:
        """Delete a database.

        Raises:
            CouchNotFoundError: If the database does not exist.
        """
        await self.request("DELETE", f"/{quote(name, safe='')}")
        self._logger.info("database_deleted", database=name)

    def database(self, name: str) -> Database:
        """Return a handle for a database without contacting the server."""
        return Database(self, name)

    # -------------------------------------------------------------------------
    # Health Check
    # -------------------------------------------------------------------------

    async def health_check(self) -> bool:
        """Check if CouchDB is reachable and ready to serve requests.

        Returns:
            True when the node answers 200, False on any failure.
        """
        try:
            await self.request("GET", "/_up")
            return True  # noqa: TRY300
        except CouchError:
            return False
