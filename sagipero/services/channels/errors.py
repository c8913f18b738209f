"""Error taxonomy for the channel adapters.

Transport errors are recovered by the adapters themselves and never reach
the synchronization core. Only ActionFailedError is user-visible.
"""
from typing import Optional


class SyncError(Exception):
    """Base class for client synchronization errors."""


class TransportError(SyncError):
    """Network failure, timeout, or an error response from the backend."""

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class NotFoundError(TransportError):
    """The backend answered 404."""

    def __init__(self, message: str):
        super().__init__(message, status=404, retryable=False)


class ActionFailedError(SyncError):
    """A local action (accept/arrive/resolve/mark-fraud) did not succeed."""

    def __init__(self, action: str, message: str, status: Optional[int] = None):
        super().__init__(f"{action} failed: {message}")
        self.action = action
        self.status = status
