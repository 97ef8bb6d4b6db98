"""Live state of a CM project for the duration of one build or poll."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import PurePosixPath
from typing import Iterable, Mapping, Optional

from cmsync.comparison import BaselineComparator, ChangeKind, ChangeSet
from cmsync.session import APISession, Command, TransportError, WorkItem
from cmsync.state import SnapshotStore
from cmsync.state.models import MemberRecord, MemberType, Snapshot

from .models import (
    CHECKPOINT,
    MEMBER_MODEL,
    PROJECT_INFO,
    REVISION_INFO,
    SUBPROJECT_MODEL,
    VIEW_FIELDS,
    VIEW_PROJECT,
    ProjectKind,
    parse_timestamp,
    project_directory,
)

LOGGER = logging.getLogger(__name__)


class ProjectState:
    """A CM project configuration and its member snapshot.

    A project state is initialized from a ``projectinfo`` result, populated
    from a ``viewproject`` result and, when a store is attached, persisted at
    the end of a successful checkout. ``close`` releases the store and must be
    called on every exit path; the object is also a context manager.
    """

    def __init__(
        self,
        *,
        name: str,
        configuration_path: str,
        revision: str = "",
        kind: ProjectKind = ProjectKind.NORMAL,
        store: SnapshotStore | None = None,
        build_id: str | None = None,
        skip_author_info: bool = False,
    ) -> None:
        self.name = name
        self.configuration_path = configuration_path
        self.revision = revision
        self.kind = kind
        self.build_id = build_id
        self.skip_author_info = skip_author_info
        self._store = store
        self._snapshot: Snapshot | None = None
        self._comparator = BaselineComparator()

    # Construction -----------------------------------------------------

    @classmethod
    def from_work_item(cls, item: WorkItem, **kwargs: object) -> "ProjectState":
        """Build a project state from a ``projectinfo`` work item."""
        state = cls(name="", configuration_path="", **kwargs)  # type: ignore[arg-type]
        state.initialize_project(item)
        return state

    @classmethod
    def initialize(
        cls,
        session: APISession,
        configuration_path: str,
        *,
        store: SnapshotStore | None = None,
        revision: str | None = None,
        build_id: str | None = None,
        skip_author_info: bool = False,
    ) -> "ProjectState":
        """Query ``projectinfo`` for ``configuration_path`` and return the project state.

        The attached ``store`` is opened here and closed by ``close``.

        Raises:
            TransportError: If the command fails.
            SnapshotStoreError: If the store cannot be opened.
        """
        response = session.run_command(cls._project_info_command(configuration_path, revision))
        state = cls.from_work_item(
            cls._first_item(response.work_items, PROJECT_INFO),
            store=store,
            build_id=build_id,
            skip_author_info=skip_author_info,
        )
        if store is not None:
            store.open()
        LOGGER.info(
            "Initialized %s project %s (revision %s)",
            state.kind.value,
            state.configuration_path,
            state.revision or "head",
        )
        return state

    def initialize_project(self, item: WorkItem) -> None:
        """Reset name, configuration path, revision and kind from a ``projectinfo`` item."""
        self.name = str(item.get("projectName") or item.id)
        self.configuration_path = str(item.get("fullConfigSyntax") or self.name)
        self.revision = str(item.get("revision") or "")
        self.kind = ProjectKind.parse(item.get("projectType"))
        self._snapshot = None

    def reinitialize(self, session: APISession, revision: str) -> None:
        """Point the project at ``revision`` and drop any populated snapshot.

        Raises:
            TransportError: If the command fails.
        """
        response = session.run_command(self._project_info_command(self.name, revision))
        self.initialize_project(self._first_item(response.work_items, PROJECT_INFO))
        LOGGER.info("Project %s now built from revision %s", self.name, self.revision)

    # Snapshot ---------------------------------------------------------

    @property
    def snapshot(self) -> Snapshot:
        """Return the populated snapshot.

        Raises:
            RuntimeError: If ``populate`` has not run yet.
        """
        if self._snapshot is None:
            raise RuntimeError(f"Project {self.configuration_path} has not been populated")
        return self._snapshot

    def populate(self, session: APISession) -> Snapshot:
        """Run ``viewproject`` and build the member snapshot.

        Raises:
            TransportError: If the command fails or returns malformed members.
        """
        command = Command(
            name=VIEW_PROJECT,
            options={
                "recurse": True,
                "project": self.configuration_path,
                "fields": ",".join(VIEW_FIELDS),
            },
        )
        response = session.run_command_with_interim(command)
        try:
            snapshot = self.parse_project(response.work_items)
        except ValueError as exc:
            raise TransportError(f"Malformed project listing: {exc}", command=VIEW_PROJECT) from exc
        LOGGER.info(
            "Project %s lists %d files in %d directories",
            self.configuration_path,
            len(snapshot.files()),
            len(snapshot.directories()),
        )
        return snapshot

    def parse_project(self, items: Iterable[WorkItem]) -> Snapshot:
        """Convert ``viewproject`` work items into the ordered member snapshot.

        Member paths are resolved against the root project directory; every
        ancestor directory and every subproject directory becomes an explicit
        directory member placed before its first child.

        Subprojects listed without a timestamp are stamped with the Unix epoch.

        Raises:
            ValueError: If an item lacks a name, or a member lacks or carries an
                invalid timestamp.
        """
        root = project_directory(self.name or self.configuration_path)
        members: dict[str, MemberRecord] = {}

        for item in items:
            if item.model_type not in (MEMBER_MODEL, SUBPROJECT_MODEL):
                continue
            name = str(item.get("name") or item.id or "")
            if not name:
                raise ValueError("work item without a member name")
            context = str(item.get("context") or self.configuration_path)
            relative = self._relative_path(root, context, name)
            raw_timestamp = item.get("membertimestamp")
            if raw_timestamp is None or raw_timestamp == "":
                if item.model_type == MEMBER_MODEL:
                    raise ValueError(f"member {name} has no timestamp")
                raw_timestamp = 0
            timestamp = parse_timestamp(raw_timestamp)

            if item.model_type == SUBPROJECT_MODEL:
                self._add_directories(members, relative.parent, timestamp, context)
                continue

            self._add_directories(members, relative.parent, timestamp, context)
            path = relative.as_posix()
            if path in members:
                LOGGER.warning("Ignoring duplicate member %s", path)
                continue
            members[path] = MemberRecord(
                path=path,
                type=MemberType.FILE,
                revision=str(item.get("memberrev") or ""),
                timestamp=timestamp,
                description=str(item.get("memberdescription") or ""),
                member_name=name,
                config_path=context,
            )

        self._snapshot = Snapshot(
            project=self.name,
            configuration_path=self.configuration_path,
            revision=self.revision,
            build_id=self.build_id,
            members=list(members.values()),
        )
        return self._snapshot

    # Checkpoint -------------------------------------------------------

    @property
    def can_checkpoint(self) -> bool:
        return self.kind.can_checkpoint

    def checkpoint(
        self,
        session: APISession,
        *,
        label: str = "",
        description: str = "",
    ) -> Optional[str]:
        """Checkpoint the project on the server and return the new revision.

        Build configurations cannot be checkpointed; for them this logs a
        notice and returns ``None``. Callers must ``reinitialize`` with the
        returned revision before populating the snapshot.

        Raises:
            TransportError: If the command fails or reports no new revision.
        """
        if not self.can_checkpoint:
            LOGGER.info("Cannot checkpoint build project configuration %s", self.configuration_path)
            return None
        options = {"project": self.configuration_path}
        if label:
            options["label"] = label
        if description:
            options["description"] = description
        response = session.run_command(Command(name=CHECKPOINT, options=options))
        try:
            item = response.get_work_item(self.configuration_path)
        except LookupError:
            item = self._first_item(response.work_items, CHECKPOINT)
        resultant = item.get("resultant")
        if not resultant:
            raise TransportError("Checkpoint reported no resultant revision", command=CHECKPOINT)
        LOGGER.info("Checkpointed %s as revision %s", self.configuration_path, resultant)
        return str(resultant)

    # Comparison -------------------------------------------------------

    def compare_baseline(
        self,
        previous: Snapshot | None,
        session: APISession | None = None,
    ) -> ChangeSet:
        """Compare the snapshot with ``previous`` and resolve authors of changed files.

        Author lookups require ``session`` and are skipped when
        ``skip_author_info`` is set.
        """
        change_set = self._comparator.compare(self.snapshot, previous)
        if session is None or self.skip_author_info:
            return change_set

        wanted = [
            change.new
            for change in change_set
            if change.kind is not ChangeKind.DELETED and change.new is not None and not change.is_directory
        ]
        authors = self._lookup_authors(session, wanted)
        self._apply_authors(authors)
        return change_set.with_authors(authors)

    # Persistence ------------------------------------------------------

    def save(self, checksum_updates: Mapping[str, str] | None = None) -> Snapshot:
        """Persist the snapshot into the attached store and back-fill checksums.

        Raises:
            RuntimeError: If no store is attached.
            SnapshotStoreError: If the snapshot cannot be written.
        """
        if self._store is None:
            raise RuntimeError(f"No snapshot store attached to {self.configuration_path}")
        self._store.open()
        self._store.persist(self.snapshot)
        if checksum_updates:
            self._store.update_checksums(checksum_updates)
            self._snapshot = self.snapshot.with_checksums(checksum_updates)
        return self.snapshot

    def close(self) -> None:
        """Release the snapshot store handle."""
        if self._store is not None:
            self._store.close()

    def __enter__(self) -> "ProjectState":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Internal helpers -------------------------------------------------

    @staticmethod
    def _project_info_command(project: str, revision: str | None) -> Command:
        options = {"project": project}
        if revision:
            options["projectRevision"] = revision
        return Command(name=PROJECT_INFO, options=options)

    @staticmethod
    def _first_item(items: list[WorkItem], command: str) -> WorkItem:
        if not items:
            raise TransportError("Command returned no work items", command=command)
        return items[0]

    @staticmethod
    def _relative_path(root: PurePosixPath, context: str, name: str) -> PurePosixPath:
        full = project_directory(context) / name.replace("\\", "/")
        try:
            return full.relative_to(root)
        except ValueError:
            return PurePosixPath(name.replace("\\", "/").lstrip("/"))

    @staticmethod
    def _add_directories(
        members: dict[str, MemberRecord],
        directory: PurePosixPath,
        timestamp: datetime,
        context: str,
    ) -> None:
        if directory.as_posix() in ("", "."):
            return
        for ancestor in [*reversed(directory.parents), directory]:
            path = ancestor.as_posix()
            if path in ("", ".") or path in members:
                continue
            members[path] = MemberRecord(
                path=path,
                type=MemberType.DIRECTORY,
                timestamp=timestamp,
                config_path=context,
            )

    def _lookup_authors(self, session: APISession, records: Iterable[MemberRecord]) -> dict[str, str]:
        authors: dict[str, str] = {}
        for record in records:
            command = Command(
                name=REVISION_INFO,
                options={"project": record.config_path or self.configuration_path, "revision": record.revision},
                selection=[record.member_name or record.path],
            )
            response = session.run_command(command)
            if response.work_items:
                author = response.work_items[0].get("author")
                if author:
                    authors[record.path] = str(author)
        return authors

    def _apply_authors(self, authors: Mapping[str, str]) -> None:
        if not authors or self._snapshot is None:
            return
        members = [
            member.model_copy(update={"author": authors[member.path]}) if member.path in authors else member
            for member in self._snapshot.members
        ]
        self._snapshot = self._snapshot.model_copy(update={"members": members})


__all__ = ["ProjectState", "ProjectKind"]
