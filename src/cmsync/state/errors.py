"""Snapshot store errors."""


class SnapshotStoreError(Exception):
    """Raised when persisted snapshot data cannot be written or read."""


class MissingSnapshotError(SnapshotStoreError):
    """Raised when a build has no complete persisted snapshot."""
