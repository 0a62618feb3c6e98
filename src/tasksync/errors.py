from __future__ import annotations


class SyncError(Exception):
    """Base class for sync engine errors that reach the caller."""


class SyncInProgressError(SyncError):
    """Raised when a sync pass is requested while another one is still running."""

    def __init__(self) -> None:
        super().__init__("A sync pass is already in progress")

