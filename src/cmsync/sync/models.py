"""Synchronization options and results."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel

LineTerminator = Literal["native", "unix", "windows"]

_TERMINATORS = {"unix": b"\n", "windows": b"\r\n"}


class SyncOptions(BaseModel):
    """Options controlling how a change set is applied to a workspace.

    Attributes:
        force_full_copy: Clear the target and fetch every member.
        line_terminator: Line ending applied to fetched text files.
        restore_timestamp: Set file modification times to the server timestamp.
        fetch_changed_workspace_files: Re-fetch files whose on-disk checksum drifted.
        alternate_workspace: Directory used instead of the workspace; relative
            values are resolved against the workspace.
    """

    force_full_copy: bool = False
    line_terminator: LineTerminator = "native"
    restore_timestamp: bool = True
    fetch_changed_workspace_files: bool = False
    alternate_workspace: str = ""

    def resolve_target(self, workspace: Path) -> Path:
        """Return the directory that receives the project files."""
        if not self.alternate_workspace.strip():
            return workspace
        alternate = Path(self.alternate_workspace.strip()).expanduser()
        return alternate if alternate.is_absolute() else workspace / alternate

    def terminator_bytes(self) -> bytes:
        return _TERMINATORS.get(self.line_terminator, os.linesep.encode("ascii"))


@dataclass(slots=True)
class SyncResult:
    """Outcome of one synchronization run.

    Attributes:
        target: Directory that was synchronized.
        full_copy: Whether the run cleared the target and fetched everything.
        success: Whether every file operation succeeded.
        error: Failure description when ``success`` is false.
        created_directories: Directories created, shallowest first.
        deleted: Paths removed, deepest first.
        fetched: Files fetched from the server.
        refetched: Files fetched again because their local copy drifted.
        checksum_updates: Checksums to merge into the persisted snapshot.
    """

    target: Path
    full_copy: bool
    success: bool = True
    error: Optional[str] = None
    created_directories: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    fetched: list[str] = field(default_factory=list)
    refetched: list[str] = field(default_factory=list)
    checksum_updates: dict[str, str] = field(default_factory=dict)

    def counts(self) -> dict[str, int]:
        return {
            "directories": len(self.created_directories),
            "removed": len(self.deleted),
            "fetched": len(self.fetched),
            "refetched": len(self.refetched),
        }


def normalize_line_endings(content: bytes, terminator: bytes) -> bytes:
    """Rewrite line endings of text ``content`` to ``terminator``.

    Content containing a NUL byte is treated as binary and returned unchanged.
    """
    if b"\0" in content:
        return content
    unified = content.replace(b"\r\n", b"\n")
    if terminator == b"\n":
        return unified
    return unified.replace(b"\n", terminator)


__all__ = ["LineTerminator", "SyncOptions", "SyncResult", "normalize_line_endings"]
