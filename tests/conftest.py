"""Shared fixtures: an in-memory CM server and transports talking to it."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator

import pytest

from cmsync.config.models import ServerSettings
from cmsync.session import APISession, Command, Response, WorkItem

PROJECT = "/proj/project.pj"
DEFAULT_TIMESTAMP = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


@dataclass
class FakeMember:
    revision: str
    content: bytes | str
    author: str = "alice"
    timestamp: datetime = DEFAULT_TIMESTAMP
    description: str = ""


class FakeCMServer:
    """Minimal CM server answering the commands cmsync issues."""

    def __init__(self, project: str = PROJECT, kind: str = "normal") -> None:
        self.project = project
        self.kind = kind
        self.revision = "1.1"
        self.members: dict[str, FakeMember] = {}
        self.calls: list[Command] = []
        self.fail_on: set[str] = set()
        self.unreachable = False
        self.connections = 0
        self.disconnects = 0

    def add(
        self,
        name: str,
        content: bytes | str = "",
        *,
        revision: str = "1.1",
        author: str = "alice",
        timestamp: datetime = DEFAULT_TIMESTAMP,
    ) -> None:
        self.members[name] = FakeMember(revision, content, author, timestamp)

    def remove(self, name: str) -> None:
        del self.members[name]

    def commands(self, name: str) -> list[Command]:
        return [command for command in self.calls if command.name == name]

    def transport(self) -> "FakeTransport":
        return FakeTransport(self)

    def handle(self, command: Command) -> Response:
        self.calls.append(command)
        if command.name in self.fail_on:
            return Response(command=command.name, exit_code=128, message=f"{command.name} failed")
        handler = getattr(self, f"_{command.name}")
        return Response(command=command.name, work_items=handler(command))

    def _projectinfo(self, command: Command) -> list[WorkItem]:
        revision = command.options.get("projectRevision", self.revision)
        return [
            WorkItem(
                id=self.project,
                fields={
                    "projectName": self.project,
                    "fullConfigSyntax": self.project,
                    "revision": revision,
                    "projectType": self.kind,
                },
            )
        ]

    def _viewproject(self, command: Command) -> list[WorkItem]:
        return [
            WorkItem(
                id=name,
                model_type="si.Member",
                fields={
                    "name": name,
                    "context": self.project,
                    "memberrev": member.revision,
                    "membertimestamp": member.timestamp,
                    "memberdescription": member.description,
                },
            )
            for name, member in self.members.items()
        ]

    def _checkpoint(self, command: Command) -> list[WorkItem]:
        major, minor = self.revision.split(".")
        self.revision = f"{major}.{int(minor) + 1}"
        return [WorkItem(id=self.project, fields={"resultant": self.revision})]

    def _revisioninfo(self, command: Command) -> list[WorkItem]:
        member = self.members[command.selection[0]]
        return [WorkItem(id=command.selection[0], fields={"author": member.author})]

    def _viewrevision(self, command: Command) -> list[WorkItem]:
        member = self.members[command.selection[0]]
        return [WorkItem(id=command.selection[0], fields={"content": member.content})]


class FakeTransport:
    def __init__(self, server: FakeCMServer) -> None:
        self.server = server

    def connect(self, settings: ServerSettings) -> None:
        if self.server.unreachable:
            raise ConnectionRefusedError("connection refused")
        self.server.connections += 1

    def execute(self, command: Command, *, interim: bool = False) -> Response:
        return self.server.handle(command)

    def disconnect(self) -> None:
        self.server.disconnects += 1


@pytest.fixture
def cm_server() -> FakeCMServer:
    return FakeCMServer()


@pytest.fixture
def session(cm_server: FakeCMServer) -> Iterator[APISession]:
    api = APISession(ServerSettings(user="builder"), cm_server.transport())
    with api:
        yield api
