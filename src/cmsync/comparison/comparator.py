"""Baseline comparison between two project snapshots."""

from __future__ import annotations

import logging
from typing import Optional

from cmsync.state.models import MemberRecord, Snapshot

from .models import ChangeKind, ChangeRecord, ChangeSet

LOGGER = logging.getLogger(__name__)


class BaselineComparator:
    """Derive the ordered change set between a snapshot and its baseline."""

    def compare(self, current: Snapshot, previous: Optional[Snapshot]) -> ChangeSet:
        """Return the changes that turn ``previous`` into ``current``.

        Members of ``current`` are visited in snapshot order and yield an
        ``ADDED`` change when the baseline lacks them or an ``UPDATED`` change
        when a file's revision differs. Directories are compared by presence
        only. Baseline members that were never visited follow as ``DELETED``
        changes, in baseline order.

        Args:
            current: Snapshot of the requested project state.
            previous: Baseline snapshot, or ``None`` for a first build.

        Returns:
            ChangeSet: Ordered changes; empty when both snapshots agree.
        """

        baseline: dict[str, MemberRecord] = previous.by_path() if previous is not None else {}
        changes: list[ChangeRecord] = []

        for member in current.members:
            old = baseline.pop(member.path, None)
            if old is None:
                changes.append(ChangeRecord(kind=ChangeKind.ADDED, path=member.path, new=member))
            elif self._differs(old, member):
                changes.append(
                    ChangeRecord(kind=ChangeKind.UPDATED, path=member.path, old=old, new=member)
                )

        for path, old in baseline.items():
            changes.append(ChangeRecord(kind=ChangeKind.DELETED, path=path, old=old))

        change_set = ChangeSet(changes=tuple(changes))
        LOGGER.debug("Baseline comparison found %s", change_set.counts())
        return change_set

    def _differs(self, old: MemberRecord, new: MemberRecord) -> bool:
        if old.type is not new.type:
            return True
        if new.is_directory:
            return False
        return old.revision != new.revision


__all__ = ["BaselineComparator"]
