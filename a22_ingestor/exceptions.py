"""Custom exceptions for A22_Ingestor."""

from __future__ import annotations


class A22IngestorError(Exception):
    """Base exception for all A22_Ingestor errors."""

    pass


class ConfigurationError(A22IngestorError):
    """Raised when configuration is invalid or missing."""

    pass


class AuthenticationError(A22IngestorError):
    """Raised when the web service rejects a handshake or de-authentication."""

    pass


class SessionExpiredError(A22IngestorError):
    """Raised when a request is answered with an authentication status (HTTP 401)."""

    def __init__(self, status_code: int, *, group_id: str | None = None) -> None:
        target = f" for group {group_id}" if group_id is not None else ""
        super().__init__(f"Session rejected with HTTP {status_code}{target}")
        self.status_code = status_code
        self.group_id = group_id


class CollectionError(A22IngestorError):
    """Raised when data collection from the web service fails."""

    pass


class ProtocolError(CollectionError):
    """Raised when a response does not have the expected shape.

    Protocol errors are never retried: they mean the remote format changed
    and the caller must not paper over it.
    """

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(f"Could not parse {operation} response: {detail}")
        self.operation = operation
        self.detail = detail


class StorageError(A22IngestorError):
    """Raised when a database read or write fails."""

    pass


class InvalidWindowError(A22IngestorError):
    """Raised when a requested historical window is out of range."""

    pass
