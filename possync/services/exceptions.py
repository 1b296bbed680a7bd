"""Sync-specific exceptions."""


class SyncError(Exception):
    """Base exception for sync errors."""

    pass


class MenuFetchError(SyncError):
    """Raised when the remote menu cannot be fetched."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class OrderNotFoundError(SyncError):
    """Raised when a local order does not exist."""

    pass


class OperationNotFoundError(SyncError):
    """Raised when a queued operation does not exist."""

    pass


class UnknownOperationTypeError(SyncError):
    """Raised when no executor is registered for an operation type."""

    pass
