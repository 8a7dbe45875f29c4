"""IndexSync exceptions.

Everything below the granularity of one flush is reported, not raised:
the listener catches these and turns them into ``SyncFailure`` entries.
``ConfigurationError`` is the exception that escapes, at construction time.
"""

from __future__ import annotations


class IndexSyncError(Exception):
    """Base exception for IndexSync errors."""


class ConfigurationError(IndexSyncError):
    """Raised when index, client or driver configuration is invalid."""


class IdentityError(IndexSyncError):
    """Raised when a stable document identifier cannot be resolved."""


class TransformError(IndexSyncError):
    """Raised when a domain object cannot be turned into a document."""


class WriteError(IndexSyncError):
    """Raised when the search backend rejects a bulk submission."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransportError(IndexSyncError):
    """Raised when the search backend cannot be reached."""


class ChannelError(IndexSyncError):
    """Raised when a batch message cannot be published or received."""
