"""Baseline comparison for project snapshots."""

from .comparator import BaselineComparator
from .models import ChangeKind, ChangeRecord, ChangeSet

__all__ = ["BaselineComparator", "ChangeKind", "ChangeRecord", "ChangeSet"]
