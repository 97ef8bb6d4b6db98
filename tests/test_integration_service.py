"""End-to-end checkout and polling against the in-memory CM server."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from cmsync.build import BuildHistory, IntegrationService, PollingResult
from cmsync.changelog import ChangeLogParser
from cmsync.config import CMSyncConfig, resolve_with_precedence
from cmsync.state import SnapshotStore

from conftest import PROJECT, FakeCMServer


def _service(server: FakeCMServer, **overrides: Any) -> IntegrationService:
    cli = {"project.config_path": PROJECT, "project.line_terminator": "unix", **overrides}
    config = resolve_with_precedence(defaults=CMSyncConfig(), cli_overrides=cli)
    return IntegrationService(config, server.transport)


@pytest.fixture
def history(tmp_path: Path) -> BuildHistory:
    return BuildHistory(tmp_path / "job")


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    return tmp_path / "workspace"


def _checkout(service: IntegrationService, history: BuildHistory, workspace: Path, number: int):
    build = history.build(number, create=True)
    log = history.job_dir / f"changelog-{number}.json"
    return service.checkout(build, history, workspace, log)


def test_first_checkout_copies_project_and_records_state(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.add("README", "hello\r\n", author="ann")
    cm_server.add("src/main.c", "int main;\n", author="bo")

    result = _checkout(_service(cm_server), history, workspace, 1)

    assert result.success, result.error
    assert result.first_build
    assert result.sync is not None and result.sync.full_copy
    assert (workspace / "README").read_bytes() == b"hello\n"
    assert (workspace / "src" / "main.c").exists()
    assert SnapshotStore.is_complete(history.build(1).root_dir)
    document = ChangeLogParser().parse_file(result.change_log)
    assert [(entry.path, entry.author) for entry in document.entries] == [
        ("README", "ann"),
        ("src", ""),
        ("src/main.c", "bo"),
    ]
    assert cm_server.connections == cm_server.disconnects == 1


def test_second_checkout_applies_only_changes(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.add("a.txt", "one")
    cm_server.add("b.txt", "two")
    service = _service(cm_server)
    assert _checkout(service, history, workspace, 1).success

    cm_server.add("a.txt", "one v2", revision="1.2", author="dee")
    cm_server.remove("b.txt")
    cm_server.calls.clear()
    result = _checkout(service, history, workspace, 2)

    assert result.success
    assert not result.first_build
    assert [(change.kind.value, change.path) for change in result.change_set] == [
        ("updated", "a.txt"),
        ("deleted", "b.txt"),
    ]
    assert [command.selection for command in cm_server.commands("viewrevision")] == [["a.txt"]]
    assert (workspace / "a.txt").read_text() == "one v2"
    assert not (workspace / "b.txt").exists()
    assert ChangeLogParser().parse_file(result.change_log).entry_for("a.txt").author == "dee"


def test_clean_copy_forces_full_synchronization(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.add("a.txt", "one")
    _checkout(_service(cm_server), history, workspace, 1)
    (workspace / "untracked.txt").write_text("scratch")

    result = _checkout(_service(cm_server, **{"project.clean_copy": True}), history, workspace, 2)

    assert result.success
    assert result.sync is not None and result.sync.full_copy
    assert not (workspace / "untracked.txt").exists()


def test_failed_checkout_keeps_previous_baseline(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.add("a.txt", "one")
    service = _service(cm_server)
    assert _checkout(service, history, workspace, 1).success

    cm_server.add("a.txt", "two", revision="1.2")
    cm_server.fail_on.add("viewrevision")
    failed = _checkout(service, history, workspace, 2)

    assert not failed.success
    assert "viewrevision" in (failed.error or "")
    assert not SnapshotStore.is_complete(history.build(2).root_dir)
    assert not (history.job_dir / "changelog-2.json").exists()
    assert cm_server.connections == cm_server.disconnects == 2

    cm_server.fail_on.clear()
    retried = _checkout(service, history, workspace, 3)
    assert retried.success
    assert [change.path for change in retried.change_set] == ["a.txt"]


def test_unreachable_server_fails_checkout(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.unreachable = True

    result = _checkout(_service(cm_server), history, workspace, 1)

    assert not result.success
    assert not SnapshotStore.is_complete(history.build(1).root_dir)


def test_checkout_without_project_path_fails(cm_server: FakeCMServer, history: BuildHistory, workspace: Path) -> None:
    result = _checkout(_service(cm_server, **{"project.config_path": ""}), history, workspace, 1)

    assert not result.success
    assert cm_server.calls == []


def test_checkpoint_before_build_uses_new_revision(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.add("a.txt", "one")
    service = _service(cm_server, **{"project.checkpoint_before_build": True})

    result = _checkout(service, history, workspace, 1)

    assert result.success
    assert result.revision == "1.2"
    assert len(cm_server.commands("checkpoint")) == 1


def test_build_configuration_skips_checkpoint(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.kind = "build"
    cm_server.add("a.txt", "one")
    service = _service(cm_server, **{"project.checkpoint_before_build": True})

    result = _checkout(service, history, workspace, 1)

    assert result.success
    assert result.revision == "1.1"
    assert cm_server.commands("checkpoint") == []


def test_checksums_are_recorded_when_tracking_workspace_edits(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.add("a.txt", "one\n")
    service = _service(cm_server, **{"project.fetch_changed_workspace_files": True})
    _checkout(service, history, workspace, 1)
    (workspace / "a.txt").write_text("tampered\n")

    result = _checkout(service, history, workspace, 2)

    assert result.success
    assert result.change_set.change_count == 0
    assert result.sync is not None and result.sync.refetched == ["a.txt"]
    assert (workspace / "a.txt").read_text() == "one\n"
    with SnapshotStore(history.build(2).root_dir) as store:
        assert "a.txt" in store.load().checksums()


def test_poll_without_builds_requests_a_build(cm_server: FakeCMServer, history: BuildHistory) -> None:
    outcome = _service(cm_server).poll(history)

    assert outcome.result is PollingResult.BUILD_NOW
    assert cm_server.calls == []


def test_poll_without_recorded_state_requests_a_build(
    cm_server: FakeCMServer, history: BuildHistory
) -> None:
    history.build(1, create=True)

    assert _service(cm_server).poll(history).result is PollingResult.BUILD_NOW


def test_poll_reports_changes_since_last_build(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.add("a.txt", "one")
    service = _service(cm_server)
    _checkout(service, history, workspace, 1)
    cm_server.calls.clear()

    assert service.poll(history).result is PollingResult.NO_CHANGES

    cm_server.add("b.txt", "two")
    cm_server.add("a.txt", "one v2", revision="1.2")
    outcome = service.poll(history)

    assert outcome.result is PollingResult.SIGNIFICANT
    assert outcome.change_count == 2
    assert cm_server.commands("revisioninfo") == []


def test_poll_transport_failure_reports_no_changes(
    cm_server: FakeCMServer, history: BuildHistory, workspace: Path
) -> None:
    cm_server.add("a.txt", "one")
    service = _service(cm_server)
    _checkout(service, history, workspace, 1)
    cm_server.fail_on.add("viewproject")

    outcome = service.poll(history)

    assert outcome.result is PollingResult.NO_CHANGES
    assert "viewproject" in outcome.message
    assert cm_server.connections == cm_server.disconnects


def test_build_environment_describes_the_project(cm_server: FakeCMServer) -> None:
    service = _service(cm_server, **{"server.host": "cm.example.com", "server.user": "builder"})

    assert service.build_environment() == {
        "CM_PROJECT": PROJECT,
        "CM_HOST": "cm.example.com",
        "CM_PORT": "7001",
        "CM_USER": "builder",
    }


def test_build_history_lists_numeric_builds_newest_first(history: BuildHistory) -> None:
    for number in (1, 10, 2):
        history.build(number, create=True)
    (history.builds_dir / "lastSuccessful").mkdir()

    assert [record.number for record in history.builds()] == [10, 2, 1]
    assert [record.number for record in history.previous(10)] == [2, 1]
    assert history.next_number() == 11
