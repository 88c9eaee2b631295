"""Exceptions raised by the product sync pipeline.

All sync-related exceptions inherit from SyncError.
"""


class SyncError(Exception):
    """Base exception for sync operations."""

    pass


class ConfigurationError(SyncError):
    """Raised when a sync run cannot start because of its configuration.

    Covers a disabled feature flag, a missing or unreadable indexing
    configuration, a missing mandatory job parameter and a locale with no
    resolvable target.
    """

    def __init__(self, message: str, locale: str | None = None):
        self.message = message
        self.locale = locale
        super().__init__(message)


class MalformedDocumentError(SyncError):
    """Raised when a localized document cannot be encoded as an operation."""

    def __init__(self, reason: str, locale: str | None = None):
        self.reason = reason
        self.locale = locale
        super().__init__(f"Malformed document ({locale or 'no locale'}): {reason}")


class DispatchError(SyncError):
    """A batch request failed. Recovered into run counters, never propagated."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ResourceError(SyncError):
    """Raised when releasing the catalog cursor fails."""

    pass


class InvalidStateError(SyncError):
    """Raised when an engine operation is called from a state that forbids it."""

    pass
