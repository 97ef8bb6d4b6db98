"""Member records and project snapshots."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class MemberType(str, Enum):
    """Kind of tracked member."""

    FILE = "file"
    DIRECTORY = "directory"


def normalize_member_path(value: str) -> str:
    """Return ``value`` as a relative posix path without leading or trailing slashes."""
    path = value.replace("\\", "/").strip("/")
    while path.startswith("./"):
        path = path[2:]
    return path


class MemberRecord(BaseModel):
    """One file or directory tracked by a CM project.

    Attributes:
        path: Path relative to the project root; unique within a snapshot.
        type: Whether the member is a file or a directory.
        revision: Opaque revision token, compared for equality only.
        timestamp: Time of the last server-side change.
        author: Author of the revision when known.
        description: Revision description.
        checksum: Content checksum recorded when change detection is enabled.
        member_name: Name of the member inside its containing project.
        config_path: Configuration path of the containing (sub)project.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    type: MemberType = MemberType.FILE
    revision: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    author: str = ""
    description: str = ""
    checksum: Optional[str] = None
    member_name: str = ""
    config_path: str = ""

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        path = normalize_member_path(value)
        if not path:
            raise ValueError("member path must not be empty")
        return path

    @field_validator("timestamp")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_directory(self) -> bool:
        return self.type is MemberType.DIRECTORY

    @property
    def depth(self) -> int:
        """Number of path segments; deeper members sort after their ancestors."""
        return self.path.count("/") + 1


class Snapshot(BaseModel):
    """Ordered member records of a project configuration at one point in time.

    Attributes:
        project: Project name.
        configuration_path: Configuration path the snapshot was taken from.
        revision: Project revision token.
        build_id: Build the snapshot belongs to, once persisted.
        members: Member records in server order.
    """

    project: str = ""
    configuration_path: str = ""
    revision: str = ""
    build_id: Optional[str] = None
    members: List[MemberRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_paths(self) -> "Snapshot":
        seen: set[str] = set()
        for member in self.members:
            if member.path in seen:
                raise ValueError(f"duplicate member path in snapshot: {member.path}")
            seen.add(member.path)
        return self

    def __len__(self) -> int:
        return len(self.members)

    def by_path(self) -> Dict[str, MemberRecord]:
        """Return an insertion-ordered mapping of path to record."""
        return {member.path: member for member in self.members}

    def get(self, path: str) -> Optional[MemberRecord]:
        normalized = normalize_member_path(path)
        for member in self.members:
            if member.path == normalized:
                return member
        return None

    def files(self) -> List[MemberRecord]:
        return [member for member in self.members if not member.is_directory]

    def directories(self) -> List[MemberRecord]:
        return [member for member in self.members if member.is_directory]

    def checksums(self) -> Dict[str, str]:
        """Return recorded checksums keyed by path."""
        return {m.path: m.checksum for m in self.members if m.checksum is not None}

    def with_checksums(self, checksums: Mapping[str, str]) -> "Snapshot":
        """Return a copy whose file records carry the given checksums."""
        members = [
            member.model_copy(update={"checksum": checksums[member.path]})
            if member.path in checksums and not member.is_directory
            else member
            for member in self.members
        ]
        return self.model_copy(update={"members": members})


__all__ = ["MemberType", "MemberRecord", "Snapshot", "normalize_member_path"]
