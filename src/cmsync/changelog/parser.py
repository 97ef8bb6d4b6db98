"""Read build change logs back into documents."""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from .models import CHANGELOG_VERSION, ChangeLogDocument


class ChangeLogError(Exception):
    """Raised when a change log cannot be parsed."""


class ChangeLogParser:
    """Parse change logs written by ``ChangeLogEncoder``."""

    def parse(self, text: str) -> ChangeLogDocument:
        """Return the document encoded in ``text``.

        An empty text yields an empty document for an unknown build.

        Raises:
            ChangeLogError: If the text is not a change log of a supported version.
        """
        if not text.strip():
            return ChangeLogDocument(build="")
        try:
            document = ChangeLogDocument.model_validate_json(text)
        except ValidationError as exc:
            raise ChangeLogError(f"Invalid change log: {exc}") from exc
        if document.version > CHANGELOG_VERSION:
            raise ChangeLogError(f"Unsupported change log version {document.version}")
        return document

    def parse_file(self, path: Path) -> ChangeLogDocument:
        """Parse the change log stored at ``path``; a missing file is an empty log."""
        if not path.exists():
            return ChangeLogDocument(build="")
        return self.parse(path.read_text(encoding="utf-8"))
