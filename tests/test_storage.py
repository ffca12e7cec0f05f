from __future__ import annotations

import os
import time
from pathlib import Path

import allure
import pytest

from burns.orchestrator.errors import CorruptRecordError, RecordBusyError
from burns.orchestrator.storage import (
    FileRecordStorage,
    MemoryRecordStorage,
    RecordStorage,
    locked,
    try_locked,
)

pytestmark = [
    allure.epic("Coordination Substrate"),
    allure.feature("Record Storage"),
]


@pytest.fixture(params=["file", "memory"])
def storage(request: pytest.FixtureRequest, tmp_path: Path) -> RecordStorage:
    if request.param == "file":
        return FileRecordStorage(tmp_path / "records")
    return MemoryRecordStorage()


def test_create_is_exclusive(storage: RecordStorage) -> None:
    assert storage.create("TASK-001", {"id": "TASK-001", "n": 1}) is True
    assert storage.create("TASK-001", {"id": "TASK-001", "n": 2}) is False
    assert storage.read("TASK-001") == {"id": "TASK-001", "n": 1}


def test_replace_overwrites_and_read_missing_returns_none(storage: RecordStorage) -> None:
    storage.create("worker-1", {"status": "active"})
    storage.replace("worker-1", {"status": "stopped"})

    assert storage.read("worker-1") == {"status": "stopped"}
    assert storage.read("worker-2") is None


def test_keys_are_sorted_and_skip_guards(storage: RecordStorage) -> None:
    storage.create("TASK-002", {})
    storage.create("TASK-001", {})
    assert storage.try_lock("TASK-002") is True

    assert storage.keys() == ["TASK-001", "TASK-002"]
    storage.unlock("TASK-002")


def test_try_lock_is_exclusive_until_unlocked(storage: RecordStorage) -> None:
    assert storage.try_lock("TASK-001") is True
    assert storage.try_lock("TASK-001") is False
    storage.unlock("TASK-001")
    assert storage.try_lock("TASK-001") is True
    storage.unlock("TASK-001")


def test_try_locked_yields_false_without_waiting(storage: RecordStorage) -> None:
    with try_locked(storage, "TASK-001") as first:
        assert first is True
        with try_locked(storage, "TASK-001") as second:
            assert second is False
    with try_locked(storage, "TASK-001") as again:
        assert again is True


def test_locked_raises_busy_after_wait(storage: RecordStorage) -> None:
    assert storage.try_lock("TASK-001") is True
    with pytest.raises(RecordBusyError):
        with locked(storage, "TASK-001", wait_seconds=0.05):
            pass
    storage.unlock("TASK-001")


def test_invalid_keys_are_rejected(storage: RecordStorage) -> None:
    for key in ("", "../escape", ".hidden", "a/b", "TASK-001.lock"):
        with pytest.raises(ValueError):
            storage.create(key, {})


def test_file_replace_leaves_no_temp_files(tmp_path: Path) -> None:
    storage = FileRecordStorage(tmp_path)
    storage.create("TASK-001", {"v": 0})
    for value in range(5):
        storage.replace("TASK-001", {"v": value})

    assert sorted(path.name for path in tmp_path.iterdir()) == ["TASK-001.json"]
    assert storage.read("TASK-001") == {"v": 4}


def test_file_guard_is_shared_between_instances(tmp_path: Path) -> None:
    first = FileRecordStorage(tmp_path)
    second = FileRecordStorage(tmp_path)

    assert first.try_lock("TASK-001") is True
    assert second.try_lock("TASK-001") is False
    first.unlock("TASK-001")
    assert second.try_lock("TASK-001") is True
    second.unlock("TASK-001")


def test_file_unlock_by_non_owner_keeps_guard(tmp_path: Path) -> None:
    owner = FileRecordStorage(tmp_path)
    intruder = FileRecordStorage(tmp_path)
    assert owner.try_lock("TASK-001") is True

    intruder.unlock("TASK-001")

    assert (tmp_path / "TASK-001.lock").exists()
    owner.unlock("TASK-001")
    assert not (tmp_path / "TASK-001.lock").exists()


def test_file_stale_guard_is_broken(tmp_path: Path) -> None:
    storage = FileRecordStorage(tmp_path, guard_stale_seconds=5)
    guard = tmp_path / "TASK-001.lock"
    guard.write_text("crashed-holder\n", "utf-8")
    old = time.time() - 60
    os.utime(guard, (old, old))

    assert storage.try_lock("TASK-001") is True
    storage.unlock("TASK-001")
    assert not guard.exists()


def test_file_fresh_guard_is_respected(tmp_path: Path) -> None:
    storage = FileRecordStorage(tmp_path, guard_stale_seconds=30)
    (tmp_path / "TASK-001.lock").write_text("live-holder\n", "utf-8")

    assert storage.try_lock("TASK-001") is False


def test_file_corrupt_record_raises(tmp_path: Path) -> None:
    storage = FileRecordStorage(tmp_path)
    (tmp_path / "TASK-001.json").write_text("{not json", "utf-8")

    with pytest.raises(CorruptRecordError):
        storage.read("TASK-001")
