"""Workspace synchronization errors."""


class SyncError(Exception):
    """Raised when a local file operation fails during synchronization."""
