"""Tests for per-build snapshot persistence."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cmsync.state import (
    COMPLETION_MARKER,
    DEFAULT_STORE_DIRNAME,
    MemberRecord,
    MemberType,
    MissingSnapshotError,
    Snapshot,
    SnapshotStore,
    SnapshotStoreError,
    load_latest_before,
)

STAMP = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _snapshot(build_id: str = "1", revision: str = "1.1") -> Snapshot:
    return Snapshot(
        project="/proj/project.pj",
        configuration_path="/proj/project.pj",
        revision=revision,
        build_id=build_id,
        members=[
            MemberRecord(path="src", type=MemberType.DIRECTORY, timestamp=STAMP),
            MemberRecord(
                path="src/b.txt",
                revision="1.2",
                timestamp=STAMP + timedelta(hours=1),
                author="bob",
                member_name="src/b.txt",
                config_path="/proj/project.pj",
            ),
            MemberRecord(path="a.txt", revision="1.1", timestamp=STAMP, description="initial"),
        ],
    )


def _persist(build_root: Path, snapshot: Snapshot) -> None:
    with SnapshotStore(build_root) as store:
        store.persist(snapshot)


def test_persist_and_load_preserve_order_and_fields(tmp_path: Path) -> None:
    snapshot = _snapshot()
    _persist(tmp_path / "1", snapshot)

    with SnapshotStore(tmp_path / "1") as store:
        loaded = store.load()

    assert loaded == snapshot
    assert [member.path for member in loaded.members] == ["src", "src/b.txt", "a.txt"]
    assert loaded.members[1].timestamp == STAMP + timedelta(hours=1)
    assert loaded.members[1].author == "bob"


def test_load_without_completion_marker_is_missing(tmp_path: Path) -> None:
    _persist(tmp_path / "1", _snapshot())
    (tmp_path / "1" / DEFAULT_STORE_DIRNAME / COMPLETION_MARKER).unlink()

    with SnapshotStore(tmp_path / "1") as store:
        with pytest.raises(MissingSnapshotError):
            store.load()


def test_persist_replaces_previous_rows(tmp_path: Path) -> None:
    _persist(tmp_path / "1", _snapshot())
    smaller = Snapshot(project="p", members=[MemberRecord(path="only.txt", revision="2.0")])

    _persist(tmp_path / "1", smaller)

    with SnapshotStore(tmp_path / "1") as store:
        assert [member.path for member in store.load().members] == ["only.txt"]


def test_update_checksums_back_fills_column(tmp_path: Path) -> None:
    _persist(tmp_path / "1", _snapshot())

    with SnapshotStore(tmp_path / "1") as store:
        store.update_checksums({"a.txt": "abc123"})
        loaded = store.load()

    assert loaded.checksums() == {"a.txt": "abc123"}


def test_closed_store_rejects_writes(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "1")

    with pytest.raises(SnapshotStoreError):
        store.persist(_snapshot())


def test_corrupt_database_raises_store_error(tmp_path: Path) -> None:
    directory = tmp_path / "1" / DEFAULT_STORE_DIRNAME
    directory.mkdir(parents=True)
    (directory / "members.db").write_bytes(b"this is not a database" * 100)

    with pytest.raises(SnapshotStoreError):
        SnapshotStore(tmp_path / "1").open()


def test_load_latest_before_skips_builds_without_state(tmp_path: Path) -> None:
    _persist(tmp_path / "1", _snapshot(build_id="1"))
    (tmp_path / "2").mkdir()

    baseline = load_latest_before([tmp_path / "2", tmp_path / "1"])

    assert baseline is not None
    assert baseline.build_id == "1"


def test_load_latest_before_respects_history_depth(tmp_path: Path) -> None:
    _persist(tmp_path / "1", _snapshot(build_id="1"))
    for number in (2, 3):
        (tmp_path / str(number)).mkdir()

    roots = [tmp_path / "3", tmp_path / "2", tmp_path / "1"]

    assert load_latest_before(roots, max_depth=2) is None
    assert load_latest_before(roots, max_depth=3) is not None


def test_load_latest_before_treats_corruption_as_first_build(tmp_path: Path) -> None:
    _persist(tmp_path / "1", _snapshot(build_id="1"))
    (tmp_path / "1" / DEFAULT_STORE_DIRNAME / "members.db").write_bytes(b"garbage" * 500)

    assert load_latest_before([tmp_path / "1"]) is None


def test_snapshot_rejects_duplicate_paths() -> None:
    with pytest.raises(ValueError):
        Snapshot(members=[MemberRecord(path="a.txt"), MemberRecord(path="./a.txt")])


def test_read_only_store_loads_without_modifying_files(tmp_path: Path) -> None:
    _persist(tmp_path / "1", _snapshot(build_id="1"))
    database = tmp_path / "1" / DEFAULT_STORE_DIRNAME / "members.db"
    before = database.read_bytes()
    listing = sorted(path.name for path in database.parent.iterdir())

    with SnapshotStore(tmp_path / "1", read_only=True) as store:
        assert store.load().build_id == "1"
        with pytest.raises(SnapshotStoreError, match="read-only"):
            store.persist(_snapshot(build_id="2"))
        with pytest.raises(SnapshotStoreError, match="read-only"):
            store.update_checksums({"a.txt": "abc"})

    assert database.read_bytes() == before
    assert sorted(path.name for path in database.parent.iterdir()) == listing
    assert SnapshotStore.is_complete(tmp_path / "1")


def test_read_only_store_never_creates_a_database(tmp_path: Path) -> None:
    with pytest.raises(MissingSnapshotError):
        SnapshotStore(tmp_path / "1", read_only=True).open()

    assert not (tmp_path / "1").exists()


def test_load_latest_before_leaves_earlier_stores_untouched(tmp_path: Path) -> None:
    _persist(tmp_path / "1", _snapshot(build_id="1"))
    database = tmp_path / "1" / DEFAULT_STORE_DIRNAME / "members.db"
    before = (database.read_bytes(), database.stat().st_mtime_ns)

    assert load_latest_before([tmp_path / "1"]) is not None

    assert (database.read_bytes(), database.stat().st_mtime_ns) == before
