"""Checkout and polling orchestration for one job."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from cmsync.changelog import ChangeLogEncoder
from cmsync.comparison import ChangeSet
from cmsync.config import CMSyncConfig
from cmsync.project import ProjectState
from cmsync.session import APISession, TransportError, TransportFactory
from cmsync.state import SnapshotStore, SnapshotStoreError, load_latest_before
from cmsync.sync import MemberFetcher, SyncOptions, SyncResult, WorkspaceSynchronizer

from .models import BuildHistory, BuildRecord

LOGGER = logging.getLogger(__name__)


class PollingResult(str, Enum):
    """Decision returned by a poll."""

    BUILD_NOW = "build_now"
    SIGNIFICANT = "significant"
    NO_CHANGES = "no_changes"


@dataclass(slots=True)
class CheckoutResult:
    """Outcome of a checkout.

    Attributes:
        build: Build that was checked out.
        success: Whether the workspace was synchronized and the snapshot persisted.
        first_build: Whether no earlier snapshot was available.
        revision: Project revision the build was taken from.
        change_set: Changes relative to the baseline.
        sync: Synchronization result, when synchronization ran.
        change_log: Path of the written change log, if any.
        error: Failure description when ``success`` is false.
    """

    build: BuildRecord
    success: bool
    first_build: bool = False
    revision: str = ""
    change_set: ChangeSet = field(default_factory=ChangeSet)
    sync: Optional[SyncResult] = None
    change_log: Optional[Path] = None
    error: Optional[str] = None

    def counts(self) -> dict[str, int]:
        counts = dict(self.change_set.counts())
        if self.sync is not None:
            counts.update(self.sync.counts())
        return counts


@dataclass(slots=True)
class PollResult:
    """Outcome of a poll.

    Attributes:
        result: Whether a build is warranted.
        change_count: Number of changed members found.
        message: Human-readable explanation.
    """

    result: PollingResult
    change_count: int = 0
    message: str = ""


class IntegrationService:
    """Run checkouts and polls for one job against the CM server."""

    def __init__(self, config: CMSyncConfig, transport_factory: TransportFactory) -> None:
        self._config = config
        self._transport_factory = transport_factory

    @property
    def config(self) -> CMSyncConfig:
        return self._config

    def open_session(self) -> APISession:
        """Return an unopened session; use it as a context manager."""
        return APISession(self._config.server, self._transport_factory())

    def build_environment(self) -> dict[str, str]:
        """Return environment variables describing the CM project for the build."""
        server = self._config.server
        return {
            "CM_PROJECT": self._config.project.config_path,
            "CM_HOST": server.host,
            "CM_PORT": str(server.port),
            "CM_USER": server.user,
        }

    def sync_options(self, *, first_build: bool) -> SyncOptions:
        project = self._config.project
        return SyncOptions(
            force_full_copy=first_build or project.clean_copy,
            line_terminator=project.line_terminator,
            restore_timestamp=project.restore_timestamp,
            fetch_changed_workspace_files=project.fetch_changed_workspace_files,
            alternate_workspace=project.alternate_workspace,
        )

    def checkout(
        self,
        build: BuildRecord,
        history: BuildHistory,
        workspace: Path,
        change_log: Optional[Path] = None,
    ) -> CheckoutResult:
        """Synchronize ``workspace`` for ``build`` and persist the build's snapshot.

        The snapshot is persisted, and the change log written, only after the
        workspace was synchronized successfully. The session and the snapshot
        store are released on every exit path.
        """
        options = self._config.project
        if not options.config_path:
            return CheckoutResult(build=build, success=False, error="No project configuration path configured")

        LOGGER.info("Checking out %s for build %s", options.config_path, build.number)
        project: ProjectState | None = None
        try:
            with self.open_session() as session:
                project = ProjectState.initialize(
                    session,
                    options.config_path,
                    store=SnapshotStore(build.root_dir),
                    build_id=build.label,
                    skip_author_info=options.skip_author_info,
                )
                if options.checkpoint_before_build:
                    self._checkpoint(project, session, build)
                project.populate(session)

                baseline = load_latest_before(
                    (record.root_dir for record in history.previous(build.number)),
                    max_depth=self._config.sync.history_depth,
                )
                first_build = baseline is None
                if first_build:
                    LOGGER.info("No previous project state found; performing a full checkout")
                change_set = project.compare_baseline(baseline, session)

                synchronizer = WorkspaceSynchronizer(
                    MemberFetcher(session), max_workers=self._config.sync.max_workers
                )
                sync_result = synchronizer.synchronize(
                    change_set,
                    project.snapshot,
                    workspace,
                    self.sync_options(first_build=first_build),
                    baseline,
                )
                result = CheckoutResult(
                    build=build,
                    success=sync_result.success,
                    first_build=first_build,
                    revision=project.revision,
                    change_set=change_set,
                    sync=sync_result,
                    error=sync_result.error,
                )
                if not sync_result.success:
                    return result

                LOGGER.info("Saving current project configuration for build %s", build.number)
                project.save(sync_result.checksum_updates or None)
                if change_log is not None:
                    encoder = ChangeLogEncoder(self._config.server.url)
                    result.change_log = encoder.write(change_log, build.label, change_set, project.snapshot)
                    LOGGER.info("Change log written to %s", change_log)
                return result
        except TransportError as exc:
            LOGGER.error("Checkout of build %s failed: %s", build.number, exc)
            return CheckoutResult(build=build, success=False, error=str(exc))
        except (SnapshotStoreError, OSError) as exc:
            LOGGER.error("Unable to record project state for build %s: %s", build.number, exc)
            return CheckoutResult(build=build, success=False, error=str(exc))
        finally:
            if project is not None:
                project.close()

    def poll(self, history: BuildHistory) -> PollResult:
        """Decide whether the project changed since the last build with a snapshot."""
        options = self._config.project
        if history.last() is None:
            return PollResult(PollingResult.BUILD_NOW, message="No previous builds found")

        baseline = load_latest_before(
            (record.root_dir for record in history.builds()),
            max_depth=self._config.sync.history_depth,
        )
        if baseline is None:
            return PollResult(PollingResult.BUILD_NOW, message="No previous project state found")

        try:
            with self.open_session() as session:
                with ProjectState.initialize(session, options.config_path, skip_author_info=True) as project:
                    project.populate(session)
                    change_set = project.compare_baseline(baseline)
        except TransportError as exc:
            LOGGER.error("Polling failed: %s", exc)
            return PollResult(PollingResult.NO_CHANGES, message=str(exc))

        if change_set.change_count > 0:
            message = f"Project contains a total of {change_set.change_count} changes"
            return PollResult(PollingResult.SIGNIFICANT, change_set.change_count, message)
        return PollResult(PollingResult.NO_CHANGES, message="No new changes detected in project")

    def _checkpoint(self, project: ProjectState, session: APISession, build: BuildRecord) -> None:
        revision = project.checkpoint(session, description=f"Pre-build checkpoint for build {build.number}")
        if revision:
            project.reinitialize(session, revision)


__all__ = ["IntegrationService", "CheckoutResult", "PollResult", "PollingResult"]
