"""Change set data models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator

from cmsync.state.models import MemberRecord


class ChangeKind(str, Enum):
    """Category of a member change."""

    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"


class ChangeRecord(BaseModel):
    """A single member change between two snapshots.

    Attributes:
        kind: Whether the member was added, updated or deleted.
        path: Member path.
        old: Record from the baseline snapshot (absent for additions).
        new: Record from the current snapshot (absent for deletions).
    """

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    path: str
    old: Optional[MemberRecord] = None
    new: Optional[MemberRecord] = None

    @model_validator(mode="after")
    def _check_records(self) -> "ChangeRecord":
        if self.kind is not ChangeKind.DELETED and self.new is None:
            raise ValueError(f"{self.kind.value} change for {self.path} requires the new record")
        if self.kind is not ChangeKind.ADDED and self.old is None:
            raise ValueError(f"{self.kind.value} change for {self.path} requires the old record")
        return self

    @property
    def record(self) -> MemberRecord:
        """Return the most recent record describing the member."""
        return self.new if self.new is not None else self.old  # type: ignore[return-value]

    @property
    def is_directory(self) -> bool:
        return self.record.is_directory


@dataclass(frozen=True)
class ChangeSet:
    """Ordered changes between a current snapshot and its baseline."""

    changes: Tuple[ChangeRecord, ...] = ()

    def __iter__(self) -> Iterator[ChangeRecord]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def __bool__(self) -> bool:
        return bool(self.changes)

    @property
    def change_count(self) -> int:
        """Number of changed members; a positive count warrants a build."""
        return len(self.changes)

    def of_kind(self, kind: ChangeKind) -> List[ChangeRecord]:
        return [change for change in self.changes if change.kind is kind]

    @property
    def added(self) -> List[ChangeRecord]:
        return self.of_kind(ChangeKind.ADDED)

    @property
    def updated(self) -> List[ChangeRecord]:
        return self.of_kind(ChangeKind.UPDATED)

    @property
    def deleted(self) -> List[ChangeRecord]:
        return self.of_kind(ChangeKind.DELETED)

    def counts(self) -> Dict[str, int]:
        """Return the number of changes per kind."""
        return {kind.value: len(self.of_kind(kind)) for kind in ChangeKind}

    def with_authors(self, authors: Mapping[str, str]) -> "ChangeSet":
        """Return a copy whose new records carry the given authors."""
        changes = []
        for change in self.changes:
            author = authors.get(change.path)
            if author is not None and change.new is not None:
                change = change.model_copy(
                    update={"new": change.new.model_copy(update={"author": author})}
                )
            changes.append(change)
        return ChangeSet(changes=tuple(changes))


__all__ = ["ChangeKind", "ChangeRecord", "ChangeSet"]
