"""Exception hierarchy for the Linear/Motion synchronizer."""


class SyncError(Exception):
    """Base class for every error raised by the synchronizer."""


class ConfigError(SyncError):
    """Configuration could not be loaded or failed validation."""


class StorageError(SyncError):
    """A persisted map could not be read, written or decoded."""

    def __init__(self, message: str, operation: str | None = None, key: str | None = None) -> None:
        """Initialize storage error.

        Args:
            message: Human readable description.
            operation: Store operation that failed (e.g. "get", "insert").
            key: Record key involved, if any.
        """
        super().__init__(message)
        self.operation = operation
        self.key = key


class RemoteApiError(SyncError):
    """A remote service answered with an error or a malformed payload."""

    service = "remote"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize remote API error.

        Args:
            message: Error description returned by, or about, the service.
            status_code: HTTP status code when the failure came from a response.
        """
        super().__init__(f"{self.service} API error: {message}")
        self.message = message
        self.status_code = status_code


class LinearApiError(RemoteApiError):
    """Linear returned a non-success response or an unusable payload."""

    service = "Linear"


class MotionApiError(RemoteApiError):
    """Motion returned a non-success response or an unusable payload."""

    service = "Motion"


class ConnectivityError(RemoteApiError):
    """A service could not be reached, or its connectivity check failed."""

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        self.service = service
        super().__init__(message, status_code=status_code)


class AuthenticationError(ConnectivityError):
    """A service rejected the configured credentials."""
