"""Build history as seen by the synchronizer."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

BUILDS_DIRNAME = "builds"


@dataclass(frozen=True, slots=True)
class BuildRecord:
    """One build of a job.

    Attributes:
        number: Build number; higher numbers are more recent.
        root_dir: Directory holding the build's metadata.
    """

    number: int
    root_dir: Path

    @property
    def label(self) -> str:
        return str(self.number)


class BuildHistory:
    """Numbered build directories under ``<job_dir>/builds``."""

    def __init__(self, job_dir: Path) -> None:
        self.job_dir = Path(job_dir)
        self.builds_dir = self.job_dir / BUILDS_DIRNAME

    def build(self, number: int, *, create: bool = False) -> BuildRecord:
        """Return the record for build ``number``, optionally creating its directory."""
        if number < 1:
            raise ValueError(f"Build numbers start at 1, got {number}")
        root = self.builds_dir / str(number)
        if create:
            root.mkdir(parents=True, exist_ok=True)
        return BuildRecord(number=number, root_dir=root)

    def builds(self) -> list[BuildRecord]:
        """Return existing builds, most recent first."""
        if not self.builds_dir.is_dir():
            return []
        numbers = [int(child.name) for child in self.builds_dir.iterdir() if child.is_dir() and child.name.isdigit()]
        return [BuildRecord(number=n, root_dir=self.builds_dir / str(n)) for n in sorted(numbers, reverse=True)]

    def previous(self, number: int) -> Iterator[BuildRecord]:
        """Yield builds older than ``number``, most recent first."""
        for record in self.builds():
            if record.number < number:
                yield record

    def last(self) -> Optional[BuildRecord]:
        builds = self.builds()
        return builds[0] if builds else None

    def next_number(self) -> int:
        last = self.last()
        return last.number + 1 if last is not None else 1


__all__ = ["BUILDS_DIRNAME", "BuildRecord", "BuildHistory"]
