"""Serialize change sets into build change logs."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from cmsync.comparison.models import ChangeSet
from cmsync.state.models import Snapshot

from .models import ChangeLogDocument, ChangeLogEntry


class ChangeLogEncoder:
    """Encode a change set as a JSON change log document."""

    def __init__(self, server_url: str = "") -> None:
        self.server_url = server_url

    def build_document(
        self,
        build_label: str,
        change_set: ChangeSet,
        project: Optional[Snapshot] = None,
    ) -> ChangeLogDocument:
        """Return the change log document for ``change_set``, preserving its order."""
        entries = []
        for change in change_set:
            record = change.record
            entries.append(
                ChangeLogEntry(
                    action=change.kind.value,
                    path=change.path,
                    type=record.type.value,
                    revision=change.new.revision if change.new is not None else "",
                    previous_revision=change.old.revision if change.old is not None else "",
                    author=record.author,
                    description=record.description,
                    timestamp=record.timestamp,
                )
            )
        return ChangeLogDocument(
            build=build_label,
            project=project.project if project is not None else "",
            configuration_path=project.configuration_path if project is not None else "",
            revision=project.revision if project is not None else "",
            server_url=self.server_url,
            entries=entries,
        )

    def encode(
        self,
        build_label: str,
        change_set: ChangeSet,
        project: Optional[Snapshot] = None,
    ) -> str:
        """Return the change log text for ``change_set``."""
        document = self.build_document(build_label, change_set, project)
        return document.model_dump_json(indent=2) + "\n"

    def write(
        self,
        path: Path,
        build_label: str,
        change_set: ChangeSet,
        project: Optional[Snapshot] = None,
    ) -> Path:
        """Write the encoded change log to ``path``, replacing any previous content."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.encode(build_label, change_set, project), encoding="utf-8")
        return path


__all__ = ["ChangeLogEncoder"]
