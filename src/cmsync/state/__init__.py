"""Per-build persistence of project snapshots."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Iterable, Mapping, Optional

from pydantic import ValidationError

from .errors import MissingSnapshotError, SnapshotStoreError
from .models import MemberRecord, MemberType, Snapshot

LOGGER = logging.getLogger(__name__)

DEFAULT_STORE_DIRNAME = "cmsync-project"
COMPLETION_MARKER = "snapshot.complete"
_DATABASE_NAME = "members.db"
_MEMBER_COLUMNS = (
    "position",
    "path",
    "type",
    "revision",
    "timestamp",
    "author",
    "description",
    "checksum",
    "member_name",
    "config_path",
)
_SCHEMA = """
CREATE TABLE IF NOT EXISTS project (
    key TEXT PRIMARY KEY,
    value TEXT
);
CREATE TABLE IF NOT EXISTS members (
    position INTEGER PRIMARY KEY,
    path TEXT NOT NULL UNIQUE,
    type TEXT NOT NULL,
    revision TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    author TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    checksum TEXT,
    member_name TEXT NOT NULL DEFAULT '',
    config_path TEXT NOT NULL DEFAULT ''
);
"""


class SnapshotStore:
    """SQLite-backed member table stored under a build's root directory.

    A store only counts as valid once ``persist`` has written the completion
    marker, which happens after the member rows are committed. Use the store as
    a context manager so the connection is released on every exit path.

    Stores of earlier builds are opened with ``read_only=True``; such a store
    never creates files and rejects ``persist`` and ``update_checksums``.
    """

    def __init__(
        self,
        build_root: Path,
        dirname: str = DEFAULT_STORE_DIRNAME,
        *,
        read_only: bool = False,
    ) -> None:
        self._build_root = Path(build_root)
        self._directory = self._build_root / dirname
        self._read_only = read_only
        self._connection: sqlite3.Connection | None = None

    @property
    def directory(self) -> Path:
        """Return the directory holding the store files."""
        return self._directory

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    @property
    def read_only(self) -> bool:
        return self._read_only

    @classmethod
    def is_complete(cls, build_root: Path, dirname: str = DEFAULT_STORE_DIRNAME) -> bool:
        """Return whether ``build_root`` holds a fully persisted snapshot."""
        return (Path(build_root) / dirname / COMPLETION_MARKER).is_file()

    def open(self) -> "SnapshotStore":
        """Create or attach to the member table.

        A read-only store attaches to the existing database without touching it.

        Raises:
            MissingSnapshotError: If a read-only store has no database file.
            SnapshotStoreError: If the database cannot be opened or initialized.
        """
        if self._connection is not None:
            return self
        if self._read_only:
            return self._open_read_only()
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            connection = sqlite3.connect(self._directory / _DATABASE_NAME)
        except (OSError, sqlite3.Error) as exc:
            raise SnapshotStoreError(f"Unable to open snapshot store {self._directory}: {exc}") from exc
        try:
            connection.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            connection.close()
            raise SnapshotStoreError(f"Corrupt snapshot store {self._directory}: {exc}") from exc
        self._connection = connection
        return self

    def _open_read_only(self) -> "SnapshotStore":
        database = self._directory / _DATABASE_NAME
        if not database.is_file():
            raise MissingSnapshotError(f"No snapshot database in {self._directory}")
        try:
            self._connection = sqlite3.connect(f"{database.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as exc:
            raise SnapshotStoreError(f"Unable to open snapshot store {self._directory}: {exc}") from exc
        return self

    def close(self) -> None:
        """Release the database connection."""
        if self._connection is None:
            return
        self._connection.close()
        self._connection = None

    def __enter__(self) -> "SnapshotStore":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def persist(self, snapshot: Snapshot) -> None:
        """Replace the stored snapshot with ``snapshot`` in a single transaction.

        Raises:
            SnapshotStoreError: If the rows cannot be written.
        """
        connection = self._require_writable()
        marker = self._directory / COMPLETION_MARKER
        marker.unlink(missing_ok=True)
        project_rows = [
            ("project", snapshot.project),
            ("configuration_path", snapshot.configuration_path),
            ("revision", snapshot.revision),
            ("build_id", snapshot.build_id),
        ]
        member_rows = [
            (
                position,
                member.path,
                member.type.value,
                member.revision,
                member.timestamp.isoformat(),
                member.author,
                member.description,
                member.checksum,
                member.member_name,
                member.config_path,
            )
            for position, member in enumerate(snapshot.members)
        ]
        placeholders = ", ".join("?" for _ in _MEMBER_COLUMNS)
        try:
            with connection:
                connection.execute("DELETE FROM project")
                connection.execute("DELETE FROM members")
                connection.executemany("INSERT INTO project (key, value) VALUES (?, ?)", project_rows)
                connection.executemany(
                    f"INSERT INTO members ({', '.join(_MEMBER_COLUMNS)}) VALUES ({placeholders})",
                    member_rows,
                )
        except sqlite3.Error as exc:
            raise SnapshotStoreError(f"Failed to persist snapshot into {self._directory}: {exc}") from exc
        try:
            marker.write_text(f"{len(member_rows)}\n", encoding="utf-8")
        except OSError as exc:
            raise SnapshotStoreError(f"Failed to mark snapshot complete in {self._directory}: {exc}") from exc
        LOGGER.debug("Persisted %d members into %s", len(member_rows), self._directory)

    def load(self) -> Snapshot:
        """Return the persisted snapshot in its original member order.

        Raises:
            MissingSnapshotError: If no complete snapshot has been persisted.
            SnapshotStoreError: If the stored rows cannot be read or validated.
        """
        if not (self._directory / COMPLETION_MARKER).is_file():
            raise MissingSnapshotError(f"No complete snapshot in {self._directory}")
        connection = self._require_connection()
        try:
            project = dict(connection.execute("SELECT key, value FROM project").fetchall())
            rows = connection.execute(
                f"SELECT {', '.join(_MEMBER_COLUMNS)} FROM members ORDER BY position"
            ).fetchall()
        except sqlite3.Error as exc:
            raise SnapshotStoreError(f"Unreadable snapshot store {self._directory}: {exc}") from exc

        try:
            members = [
                MemberRecord(
                    path=path,
                    type=MemberType(kind),
                    revision=revision,
                    timestamp=datetime.fromisoformat(timestamp),
                    author=author,
                    description=description,
                    checksum=checksum,
                    member_name=member_name,
                    config_path=config_path,
                )
                for _, path, kind, revision, timestamp, author, description, checksum, member_name, config_path in rows
            ]
            return Snapshot(
                project=project.get("project") or "",
                configuration_path=project.get("configuration_path") or "",
                revision=project.get("revision") or "",
                build_id=project.get("build_id"),
                members=members,
            )
        except (ValueError, ValidationError) as exc:
            raise SnapshotStoreError(f"Invalid snapshot data in {self._directory}: {exc}") from exc

    def update_checksums(self, checksums: Mapping[str, str]) -> None:
        """Back-fill content checksums for already persisted members.

        Raises:
            SnapshotStoreError: If the update fails.
        """
        if not checksums:
            return
        connection = self._require_writable()
        try:
            with connection:
                connection.executemany(
                    "UPDATE members SET checksum = ? WHERE path = ?",
                    [(checksum, path) for path, checksum in checksums.items()],
                )
        except sqlite3.Error as exc:
            raise SnapshotStoreError(f"Failed to update checksums in {self._directory}: {exc}") from exc

    def _require_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise SnapshotStoreError(f"Snapshot store {self._directory} is not open")
        return self._connection

    def _require_writable(self) -> sqlite3.Connection:
        if self._read_only:
            raise SnapshotStoreError(f"Snapshot store {self._directory} is read-only")
        return self._require_connection()


def load_latest_before(
    build_roots: Iterable[Path],
    *,
    max_depth: int = 50,
    dirname: str = DEFAULT_STORE_DIRNAME,
) -> Optional[Snapshot]:
    """Return the snapshot of the most recent earlier build that persisted one.

    Args:
        build_roots: Root directories of earlier builds, most recent first.
        max_depth: Maximum number of builds to inspect.
        dirname: Store directory name inside each build root.

    Returns:
        Snapshot | None: The baseline snapshot, or ``None`` when no usable
            snapshot exists and the caller must treat the build as its first.
    """
    for depth, build_root in enumerate(build_roots):
        if depth >= max_depth:
            LOGGER.debug("Stopped looking for a baseline after %d builds", max_depth)
            break
        if not SnapshotStore.is_complete(build_root, dirname):
            LOGGER.debug("No project state found for build %s", build_root)
            continue
        try:
            with SnapshotStore(build_root, dirname, read_only=True) as store:
                snapshot = store.load()
        except SnapshotStoreError as exc:
            LOGGER.warning("Ignoring unreadable project state in %s: %s", build_root, exc)
            return None
        LOGGER.debug("Found previous project state in build %s", build_root)
        return snapshot
    return None


__all__ = [
    "SnapshotStore",
    "DEFAULT_STORE_DIRNAME",
    "COMPLETION_MARKER",
    "load_latest_before",
    "MemberRecord",
    "MemberType",
    "Snapshot",
    "SnapshotStoreError",
    "MissingSnapshotError",
]
