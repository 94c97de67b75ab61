"""Exception hierarchy shared by every SiteKeeper component.

Transient errors are retried through the work queue with backoff.
Terminal errors are recorded on the object's status and not retried until
the object changes.  Fatal errors stop the process.
"""

from __future__ import annotations


class SiteKeeperError(Exception):
    """Base class for all SiteKeeper errors."""


class StoreError(SiteKeeperError):
    """Raised by a store or workload client for a failed API call."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """The addressed object does not exist."""


class TransientError(StoreError):
    """Network failure, timeout or server-side error.  Safe to retry."""


class ConflictError(TransientError):
    """Optimistic-concurrency failure: the object changed since it was read."""


class ThrottledError(TransientError):
    """The API server asked the client to slow down (HTTP 429)."""


class ResourceVersionExpiredError(TransientError):
    """The watch resource version is too old (HTTP 410); a relist is required."""


class RejectedError(StoreError):
    """The API server refused the request as invalid.  Retrying will not help."""


class TerminalError(SiteKeeperError):
    """Per-object failure that must not be retried automatically."""


class InvalidSpecError(TerminalError):
    """The Website spec holds values that cannot be reconciled."""


class MalformedObjectError(SiteKeeperError):
    """A raw store object could not be converted into a Website."""


class CacheSyncError(SiteKeeperError):
    """The event cache could not complete its initial list."""
