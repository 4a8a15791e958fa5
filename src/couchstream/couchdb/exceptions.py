"""Custom exceptions for the CouchDB client."""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    import httpx


__all__ = [
    "CouchAuthenticationError",
    "CouchConflictError",
    "CouchDecodeError",
    "CouchError",
    "CouchIdleTimeoutError",
    "CouchNotFoundError",
    "CouchProtocolError",
    "CouchTransportError",
]


class CouchError(Exception):
    """Base exception for all CouchDB client errors.

    Attributes:
        message: Human-readable error description.
        response: The HTTP response that caused this error, if available.
    """

    def __init__(
        self,
        message: str,
        *,
        response: httpx.Response | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            response: The HTTP response that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.response = response

    def __str__(self) -> str:
        """Append the HTTP status when a response is attached."""
        if self.response is not None:
            return f"{self.message} (status={self.response.status_code})"
        return self.message


class CouchTransportError(CouchError):
    """Raised when the network call to CouchDB fails outright.

    Covers connection failures, DNS errors, protocol-level breakage and
    timeouts outside an open changes feed. Always fatal to the caller.
    """

    def __init__(
        self,
        message: str = "Failed to reach CouchDB",
        *,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the transport error.

        Args:
            message: Human-readable error description.
            cause: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.__cause__ = cause


class CouchIdleTimeoutError(CouchTransportError):
    """Raised when an open changes feed delivers nothing within the read timeout.

    A changes stream in infinite mode absorbs this condition and resubscribes;
    everywhere else it is fatal.
    """

    def __init__(
        self,
        message: str = "Changes feed idle timeout",
        *,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the idle timeout error.

        Args:
            message: Human-readable error description.
            cause: The read timeout raised by the transport.
        """
        super().__init__(message, cause=cause)


class CouchProtocolError(CouchError):
    """Raised for a non-success HTTP status or an error body from CouchDB.

    Attributes:
        status: The HTTP status code.
        error: The CouchDB ``error`` field (e.g. ``"not_found"``), if any.
        reason: The CouchDB ``reason`` field, if any.
    """

    def __init__(
        self,
        status: int,
        *,
        error: str | None = None,
        reason: str | None = None,
        response: httpx.Response | None = None,
    ) -> None:
        """Initialize the protocol error.

        Args:
            status: The HTTP status code.
            error: CouchDB error identifier.
            reason: CouchDB human-readable reason.
            response: The HTTP response that caused this error.
        """
        parts = [part for part in (error, reason) if part]
        detail = ": ".join(parts) if parts else "unexpected response"
        super().__init__(f"CouchDB error {status}: {detail}", response=response)
        self.status = status
        self.error = error
        self.reason = reason

    def __str__(self) -> str:
        """Return the message; the status is already part of it."""
        return self.message


class CouchAuthenticationError(CouchProtocolError):
    """Raised when CouchDB rejects the credentials or the user lacks access."""


class CouchNotFoundError(CouchProtocolError):
    """Raised when a database or document does not exist (404)."""


class CouchConflictError(CouchProtocolError):
    """Raised when a write conflicts with the current revision (409)."""


class CouchDecodeError(CouchError):
    """Raised when a response body or feed line has an unexpected shape.

    Attributes:
        payload: The raw text that failed to decode, truncated for logging.
    """

    MAX_PAYLOAD = 200

    def __init__(
        self,
        message: str,
        *,
        payload: str | None = None,
        response: httpx.Response | None = None,
    ) -> None:
        """Initialize the decode error.

        Args:
            message: Human-readable error description.
            payload: The raw text that could not be decoded.
            response: The HTTP response the payload came from.
        """
        super().__init__(message, response=response)
        if payload is not None and len(payload) > self.MAX_PAYLOAD:
            payload = payload[: self.MAX_PAYLOAD] + "..."
        self.payload = payload
