"""Exception types shared across the sync pipeline."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base exception raised for synchronization failures."""


class SourceError(SyncError):
    """Raised when the remote ledger source fails after retries.

    ``status_code`` carries the HTTP status when the failure was a response
    rather than a transport error.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InventoryMissingError(SyncError):
    """Raised when a prerequisite inventory is empty and the run cannot start."""


class SyncAlreadyRunningError(SyncError):
    """Raised when another run holds the lease for the same job name."""


class CheckpointError(SyncError):
    """Raised when a persisted checkpoint cannot be read or advanced."""


class LeaseLostError(SyncError):
    """Raised when a run finds its job lease expired and taken over."""
