"""Workspace synchronization."""

from .checksum import HashComputer
from .errors import SyncError
from .executor import WorkspaceSynchronizer
from .fetcher import MemberFetcher
from .models import SyncOptions, SyncResult, normalize_line_endings

__all__ = [
    "HashComputer",
    "MemberFetcher",
    "SyncError",
    "SyncOptions",
    "SyncResult",
    "WorkspaceSynchronizer",
    "normalize_line_endings",
]
