"""Apply change sets to a workspace directory."""

from __future__ import annotations

import logging
import os
import shutil
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, Optional, Protocol

from cmsync.comparison.models import ChangeKind, ChangeRecord, ChangeSet
from cmsync.state.models import MemberRecord, Snapshot

from .checksum import HashComputer
from .errors import SyncError
from .models import SyncOptions, SyncResult, normalize_line_endings

LOGGER = logging.getLogger(__name__)


class ContentFetcher(Protocol):
    def fetch(self, record: MemberRecord) -> bytes: ...


class WorkspaceSynchronizer:
    """Bring a workspace in line with a project snapshot.

    Deletions run sequentially, deepest paths first, before any fetch. File
    fetches run on a bounded thread pool. Local file failures abort the run
    and are reported through ``SyncResult``; transport errors raised by the
    fetcher propagate to the caller.
    """

    def __init__(
        self,
        fetcher: ContentFetcher,
        hasher: HashComputer | None = None,
        *,
        max_workers: int = 4,
    ) -> None:
        self._fetcher = fetcher
        self._hasher = hasher or HashComputer()
        self._max_workers = max(1, max_workers)

    def synchronize(
        self,
        change_set: ChangeSet,
        current: Snapshot,
        workspace: Path,
        options: SyncOptions,
        baseline: Optional[Snapshot] = None,
    ) -> SyncResult:
        """Apply ``change_set`` (or a full copy of ``current``) to the workspace.

        Args:
            change_set: Changes between ``baseline`` and ``current``.
            current: Snapshot the workspace should reflect afterwards.
            workspace: Workspace directory.
            options: Synchronization options.
            baseline: Snapshot the workspace was last synchronized to. Without
                one, the run always performs a full copy.

        Returns:
            SyncResult: Outcome, including checksums to persist when
                ``fetch_changed_workspace_files`` is enabled.

        Raises:
            TransportError: If member content cannot be fetched.
        """

        target = options.resolve_target(workspace)
        full_copy = options.force_full_copy or baseline is None
        result = SyncResult(target=target, full_copy=full_copy)

        try:
            if full_copy:
                LOGGER.info("Full copy of %d members into %s", len(current), target)
                self._clear(target)
                directories = current.directories()
                files = current.files()
            else:
                LOGGER.info("Applying %d changes to %s", change_set.change_count, target)
                result.deleted = self._delete(change_set.deleted, current, target)
                directories = self._records(change_set, directories=True)
                files = self._records(change_set, directories=False)

            self._make_directory(target)
            for record in sorted(directories, key=lambda member: member.depth):
                self._make_directory(self._resolve(target, record.path))
                result.created_directories.append(record.path)

            result.fetched = self._fetch_all(files, target, options)

            if options.fetch_changed_workspace_files:
                result.checksum_updates = self._reconcile(
                    current, baseline, target, options, set(result.fetched), result
                )
        except SyncError as exc:
            LOGGER.error("Workspace synchronization failed: %s", exc)
            result.success = False
            result.error = str(exc)

        return result

    # Change application -----------------------------------------------

    def _records(self, change_set: ChangeSet, *, directories: bool) -> list[MemberRecord]:
        return [
            change.new
            for change in change_set
            if change.kind is not ChangeKind.DELETED
            and change.new is not None
            and change.new.is_directory is directories
        ]

    def _delete(self, deleted: Iterable[ChangeRecord], current: Snapshot, target: Path) -> list[str]:
        tracked = [member.path for member in current.members]
        removed: list[str] = []
        for change in sorted(deleted, key=lambda item: (-item.record.depth, item.path)):
            path = self._resolve(target, change.path)
            if change.is_directory:
                prefix = f"{change.path}/"
                if any(candidate.startswith(prefix) for candidate in tracked):
                    LOGGER.info("Keeping directory %s; it still holds tracked members", change.path)
                    continue
            try:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink(missing_ok=True)
            except OSError as exc:
                raise SyncError(f"Unable to delete {change.path}: {exc}") from exc
            LOGGER.debug("Deleted %s", change.path)
            removed.append(change.path)
        return removed

    def _clear(self, target: Path) -> None:
        if not target.exists():
            return
        try:
            for child in target.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
        except OSError as exc:
            raise SyncError(f"Unable to clear {target}: {exc}") from exc

    def _make_directory(self, path: Path) -> None:
        try:
            if path.exists() and not path.is_dir():
                path.unlink()
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SyncError(f"Unable to create directory {path}: {exc}") from exc

    # Fetching ---------------------------------------------------------

    def _fetch_all(self, records: list[MemberRecord], target: Path, options: SyncOptions) -> list[str]:
        if not records:
            return []
        workers = min(self._max_workers, len(records))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cmsync-fetch") as pool:
            futures: dict[Future[None], MemberRecord] = {
                pool.submit(self._fetch_one, record, target, options): record for record in records
            }
            try:
                for future in as_completed(futures):
                    future.result()
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return [record.path for record in records]

    def _fetch_one(self, record: MemberRecord, target: Path, options: SyncOptions) -> None:
        destination = self._resolve(target, record.path)
        content = self._fetcher.fetch(record)
        data = normalize_line_endings(content, options.terminator_bytes())
        staging = destination.with_name(f".{destination.name}.cmsync-tmp")
        try:
            if destination.is_dir() and not destination.is_symlink():
                shutil.rmtree(destination)
            destination.parent.mkdir(parents=True, exist_ok=True)
            staging.write_bytes(data)
            os.replace(staging, destination)
            if options.restore_timestamp:
                stamp = record.timestamp.timestamp()
                os.utime(destination, (stamp, stamp))
        except OSError as exc:
            staging.unlink(missing_ok=True)
            raise SyncError(f"Unable to write {record.path}: {exc}") from exc
        LOGGER.debug("Fetched %s revision %s", record.path, record.revision)

    # Checksums --------------------------------------------------------

    def _reconcile(
        self,
        current: Snapshot,
        baseline: Optional[Snapshot],
        target: Path,
        options: SyncOptions,
        fetched: set[str],
        result: SyncResult,
    ) -> dict[str, str]:
        recorded = baseline.checksums() if baseline is not None else {}
        checksums: dict[str, str] = {}
        drifted: list[MemberRecord] = []

        for record in current.files():
            path = self._resolve(target, record.path)
            if record.path not in fetched:
                if not path.is_file():
                    drifted.append(record)
                    continue
                checksum = self._checksum(path, record)
                expected = recorded.get(record.path)
                if expected is not None and expected != checksum:
                    drifted.append(record)
                    continue
                checksums[record.path] = checksum
            else:
                checksums[record.path] = self._checksum(path, record)

        if drifted:
            LOGGER.info("Re-fetching %d workspace files changed outside of the CM server", len(drifted))
            result.refetched = self._fetch_all(drifted, target, options)
            for record in drifted:
                checksums[record.path] = self._checksum(self._resolve(target, record.path), record)

        return {record.path: checksums[record.path] for record in current.files() if record.path in checksums}

    def _checksum(self, path: Path, record: MemberRecord) -> str:
        try:
            return self._hasher.compute(path)
        except OSError as exc:
            raise SyncError(f"Unable to checksum {record.path}: {exc}") from exc

    # Paths ------------------------------------------------------------

    def _resolve(self, target: Path, relative: str) -> Path:
        candidate = target / relative
        root = target.resolve()
        resolved = candidate.resolve()
        if resolved != root and root not in resolved.parents:
            raise SyncError(f"Member path {relative} escapes workspace {target}")
        return candidate


__all__ = ["WorkspaceSynchronizer"]
