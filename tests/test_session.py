"""Tests for the CM session wrapper."""

from __future__ import annotations

import logging

import pytest

from cmsync.config.models import ServerSettings
from cmsync.session import APISession, Command, TransportError, load_transport_factory

from conftest import FakeCMServer


def test_context_manager_opens_and_terminates(cm_server: FakeCMServer) -> None:
    with APISession(ServerSettings(), cm_server.transport()) as session:
        assert session.connected
        response = session.run_command(Command(name="projectinfo", options={"project": cm_server.project}))
        assert response.first().get("projectName") == cm_server.project

    assert not session.connected
    assert cm_server.connections == 1
    assert cm_server.disconnects == 1


def test_terminate_is_idempotent(cm_server: FakeCMServer) -> None:
    session = APISession(ServerSettings(), cm_server.transport()).open()

    session.terminate()
    session.terminate()

    assert cm_server.disconnects == 1


def test_session_is_released_when_the_block_raises(cm_server: FakeCMServer) -> None:
    with pytest.raises(RuntimeError):
        with APISession(ServerSettings(), cm_server.transport()):
            raise RuntimeError("build aborted")

    assert cm_server.disconnects == 1


def test_non_zero_exit_code_raises_transport_error(session: APISession, cm_server: FakeCMServer) -> None:
    cm_server.fail_on.add("viewproject")

    with pytest.raises(TransportError) as excinfo:
        session.run_command(Command(name="viewproject"))

    assert excinfo.value.exit_code == 128
    assert "viewproject returned exit code 128" in str(excinfo.value)


def test_unreachable_server_raises_transport_error(cm_server: FakeCMServer) -> None:
    cm_server.unreachable = True
    session = APISession(ServerSettings(host="cm.example.com"), cm_server.transport())

    with pytest.raises(TransportError, match="cm.example.com"):
        session.open()
    assert not session.connected


def test_commands_require_an_open_session(cm_server: FakeCMServer) -> None:
    session = APISession(ServerSettings(), cm_server.transport())

    with pytest.raises(TransportError):
        session.run_command(Command(name="projectinfo"))


def test_password_is_never_logged(cm_server: FakeCMServer, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="cmsync.session")
    settings = ServerSettings(user="builder", password="hunter2")

    with APISession(settings, cm_server.transport()) as session:
        session.run_command(Command(name="projectinfo", options={"project": cm_server.project}))

    assert "builder" in caplog.text
    assert "hunter2" not in caplog.text


def test_load_transport_factory_resolves_import_paths() -> None:
    factory = load_transport_factory("conftest:FakeCMServer")

    assert factory is FakeCMServer


@pytest.mark.parametrize("path", ["no-colon", "missing.module:factory", "conftest:nothing_here"])
def test_load_transport_factory_rejects_bad_paths(path: str) -> None:
    with pytest.raises(TransportError):
        load_transport_factory(path)
