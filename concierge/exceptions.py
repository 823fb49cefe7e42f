"""Custom exception hierarchy for concierge."""


class ConciergeError(Exception):
    """Base exception for concierge."""
    pass


class ServiceUnavailableError(ConciergeError):
    """Raised when an external service (e.g. Anthropic, Google) is down."""
    pass


class StorageError(ConciergeError):
    """Raised when there's an issue with SQLite or vector storage."""
    pass


class ConfigurationError(ConciergeError):
    """Raised when a user has no usable credential for a source. Fatal for that user's run."""
    pass


class SourceNotConnectedError(ConciergeError):
    """Raised when an optional source (the CRM) is not connected for a user."""
    pass


class VectorUnavailableError(ConciergeError):
    """Raised when the vector index is disabled or its extension failed to load."""
    pass


class SyncCancelledError(ConciergeError):
    """Raised when a sync run was told to stop before it finished."""
    pass


class RemoteAPIError(ConciergeError):
    """A remote provider returned a non-success response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
