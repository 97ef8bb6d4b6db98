"""Change log document models."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

CHANGELOG_VERSION = 1


class ChangeLogEntry(BaseModel):
    """One changed member as recorded in a build change log.

    Attributes:
        action: ``added``, ``updated`` or ``deleted``.
        path: Member path relative to the project root.
        type: ``file`` or ``directory``.
        revision: Revision after the change (empty for deletions).
        previous_revision: Revision before the change (empty for additions).
        author: Author of the change when known.
        description: Revision description.
        timestamp: Server-side time of the change.
    """

    action: Literal["added", "updated", "deleted"]
    path: str
    type: Literal["file", "directory"] = "file"
    revision: str = ""
    previous_revision: str = ""
    author: str = ""
    description: str = ""
    timestamp: datetime


class ChangeLogDocument(BaseModel):
    """Change log written for one build.

    Attributes:
        version: Document format version.
        build: Build label the change log belongs to.
        project: Project name.
        configuration_path: Configuration path the build was taken from.
        revision: Project revision of the build.
        server_url: Browsable URL of the CM server.
        entries: Changed members in change set order.
    """

    version: int = CHANGELOG_VERSION
    build: str
    project: str = ""
    configuration_path: str = ""
    revision: str = ""
    server_url: str = ""
    entries: List[ChangeLogEntry] = Field(default_factory=list)

    @property
    def change_count(self) -> int:
        return len(self.entries)

    def summary(self) -> List[Tuple[str, str, datetime]]:
        """Return ``(path, author, timestamp)`` tuples in document order."""
        return [(entry.path, entry.author, entry.timestamp) for entry in self.entries]

    def entry_for(self, path: str) -> Optional[ChangeLogEntry]:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None


__all__ = ["CHANGELOG_VERSION", "ChangeLogEntry", "ChangeLogDocument"]
