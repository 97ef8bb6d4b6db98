"""Content checksums for workspace files."""

from __future__ import annotations

import hashlib
from pathlib import Path

_CHUNK_SIZE = 1024 * 1024


class HashComputer:
    """Compute content digests used to detect out-of-band workspace edits."""

    def __init__(self, algorithm: str = "sha256") -> None:
        hashlib.new(algorithm)
        self.algorithm = algorithm

    def compute(self, path: Path) -> str:
        """Return the hex digest of the file at ``path``.

        Raises:
            OSError: If the file cannot be read.
        """
        digest = hashlib.new(self.algorithm)
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest()

    def compute_bytes(self, data: bytes) -> str:
        return hashlib.new(self.algorithm, data).hexdigest()
