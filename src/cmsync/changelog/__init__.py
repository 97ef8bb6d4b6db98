"""Build change log encoding and parsing."""

from .encoder import ChangeLogEncoder
from .models import ChangeLogDocument, ChangeLogEntry
from .parser import ChangeLogError, ChangeLogParser

__all__ = [
    "ChangeLogDocument",
    "ChangeLogEncoder",
    "ChangeLogEntry",
    "ChangeLogError",
    "ChangeLogParser",
]
