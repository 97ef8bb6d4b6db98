"""Project kinds, command vocabulary and value parsing helpers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

LOGGER = logging.getLogger(__name__)

PROJECT_INFO = "projectinfo"
VIEW_PROJECT = "viewproject"
CHECKPOINT = "checkpoint"
REVISION_INFO = "revisioninfo"

MEMBER_MODEL = "si.Member"
SUBPROJECT_MODEL = "si.Subproject"
VIEW_FIELDS = ("name", "context", "cpid", "memberrev", "membertimestamp", "memberdescription")

SERVER_TIMESTAMP_FORMAT = "%b %d, %Y %I:%M:%S %p"


class ProjectKind(str, Enum):
    """Closed set of project configuration kinds."""

    NORMAL = "normal"
    VARIANT = "variant"
    BUILD = "build"

    @property
    def can_checkpoint(self) -> bool:
        """Build configurations are frozen revisions and cannot be checkpointed."""
        return self is not ProjectKind.BUILD

    @classmethod
    def parse(cls, value: Any) -> "ProjectKind":
        text = str(value or "").strip().lower()
        for kind in cls:
            if kind.value == text:
                return kind
        LOGGER.warning("Unknown project type %r; treating it as a normal project", value)
        return cls.NORMAL


def parse_timestamp(value: Any) -> datetime:
    """Convert a server timestamp field into an aware ``datetime``.

    Accepts ``datetime`` instances, epoch seconds, ISO-8601 strings and the
    server's ``MMM dd, yyyy h:mm:ss a`` text format. Naive values are UTC.

    Raises:
        ValueError: If the value cannot be interpreted.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            parsed = datetime.strptime(value.strip(), SERVER_TIMESTAMP_FORMAT)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def project_directory(config_path: str) -> PurePosixPath:
    """Return the directory holding the project file named by ``config_path``.

    ``config_path`` may use configuration syntax such as
    ``#/proj/project.pj#b=1.4#s=sub/project.pj``. Revision (``b=``) and
    development path (``d=``) qualifiers do not move the directory; each
    ``s=`` qualifier descends into the subproject's directory.
    """
    segments = config_path.replace("\\", "/").lstrip("#").split("#")
    directory = PurePosixPath(segments[0]).parent
    for segment in segments[1:]:
        key, _, value = segment.partition("=")
        if key == "s" and value:
            directory = directory / PurePosixPath(value).parent
    return directory


__all__ = [
    "ProjectKind",
    "parse_timestamp",
    "project_directory",
    "PROJECT_INFO",
    "VIEW_PROJECT",
    "CHECKPOINT",
    "REVISION_INFO",
    "MEMBER_MODEL",
    "SUBPROJECT_MODEL",
    "VIEW_FIELDS",
]
