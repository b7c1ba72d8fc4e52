"""Error taxonomy shared by the sync components and the HTTP layer."""
from typing import Any, Dict, Optional


class SyncError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SyncError):
    """Missing or malformed request fields."""
    status_code = 400


class UnauthorizedError(SyncError):
    """Trigger did not carry the expected credentials or flag."""
    status_code = 401


class NotFoundError(SyncError):
    """A referenced entity does not exist."""
    status_code = 404


class ConflictError(SyncError):
    """A sync is already running or a state transition is not allowed."""
    status_code = 409


class UpstreamError(SyncError):
    """An external dependency (feed host, webhook) failed."""
    status_code = 502


class FetchError(UpstreamError):
    """The iCal feed could not be retrieved."""


class ParseError(UpstreamError):
    """The iCal feed could not be parsed as a calendar."""


class PersistenceError(SyncError):
    """A database read or write failed."""
    status_code = 500
