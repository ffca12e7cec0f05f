"""Record storage backends for task and agent records.

Every record is an independently addressable JSON document keyed by id. Writers
follow copy-modify-atomic-replace; readers never lock. Mutual exclusion is per
record: a guard acquired with an atomic create-if-absent primitive, so there is no
global lock and no process holds anything longer than one read-decide-write step.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from burns.orchestrator.errors import CorruptRecordError, RecordBusyError

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_RECORD_SUFFIX = ".json"
_GUARD_SUFFIX = ".lock"


class RecordStorage(Protocol):
    """Namespace of JSON records with per-record ownership guards."""

    def read(self, key: str) -> dict[str, Any] | None:
        """Return the record or None when it does not exist."""

    def create(self, key: str, payload: dict[str, Any]) -> bool:
        """Create the record if absent. Returns False when the key exists."""

    def replace(self, key: str, payload: dict[str, Any]) -> None:
        """Atomically overwrite the record."""

    def keys(self) -> list[str]:
        """Sorted record keys."""

    def try_lock(self, key: str) -> bool:
        """Acquire the record guard without blocking."""

    def unlock(self, key: str) -> None:
        """Release a guard acquired with try_lock."""


class FileRecordStorage:
    """One `<key>.json` file per record inside a directory."""

    def __init__(self, root_dir: Path, *, guard_stale_seconds: float = 30.0) -> None:
        self.root_dir = root_dir
        self.guard_stale_seconds = guard_stale_seconds
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._tokens: dict[tuple[str, int], str] = {}
        self._tokens_lock = threading.Lock()

    def record_path(self, key: str) -> Path:
        validate_key(key)
        return self.root_dir / f"{key}{_RECORD_SUFFIX}"

    def read(self, key: str) -> dict[str, Any] | None:
        path = self.record_path(key)
        try:
            text = path.read_text("utf-8")
        except FileNotFoundError:
            return None
        return _decode(text, source=str(path))

    def create(self, key: str, payload: dict[str, Any]) -> bool:
        target = self.record_path(key)
        temp_path = self._write_temp(key, payload)
        try:
            os.link(temp_path, target)
        except FileExistsError:
            return False
        finally:
            temp_path.unlink(missing_ok=True)
        return True

    def replace(self, key: str, payload: dict[str, Any]) -> None:
        target = self.record_path(key)
        temp_path = self._write_temp(key, payload)
        try:
            os.replace(temp_path, target)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    def keys(self) -> list[str]:
        return sorted(
            path.name[: -len(_RECORD_SUFFIX)]
            for path in self.root_dir.glob(f"*{_RECORD_SUFFIX}")
            if not path.name.startswith(".")
        )

    def try_lock(self, key: str) -> bool:
        validate_key(key)
        guard = self.root_dir / f"{key}{_GUARD_SUFFIX}"
        token = uuid4().hex
        for _ in range(2):
            try:
                fd = os.open(guard, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._break_stale_guard(guard):
                    continue
                return False
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(f"{token} pid={os.getpid()} at={time.time():.3f}\n")
            with self._tokens_lock:
                self._tokens[(key, threading.get_ident())] = token
            return True
        return False

    def unlock(self, key: str) -> None:
        guard = self.root_dir / f"{key}{_GUARD_SUFFIX}"
        with self._tokens_lock:
            token = self._tokens.pop((key, threading.get_ident()), None)
        try:
            content = guard.read_text("utf-8")
        except FileNotFoundError:
            logger.warning("Guard %s vanished before release", guard)
            return
        if token is None or not content.startswith(token):
            logger.warning("Guard %s is owned by another holder; leaving it in place", guard)
            return
        guard.unlink(missing_ok=True)

    def _break_stale_guard(self, guard: Path) -> bool:
        try:
            age = time.time() - guard.stat().st_mtime
        except FileNotFoundError:
            return True
        if age < self.guard_stale_seconds:
            return False

        aside = guard.with_name(f".{guard.name}.{uuid4().hex}.broken")
        try:
            os.rename(guard, aside)
        except FileNotFoundError:
            return True
        try:
            aside_age = time.time() - aside.stat().st_mtime
            if aside_age < self.guard_stale_seconds:
                # Lost a race with another breaker: put the fresh guard back.
                try:
                    os.link(aside, guard)
                except FileExistsError:
                    pass
                return False
        finally:
            aside.unlink(missing_ok=True)
        logger.warning("Broke stale guard %s (age %.1fs)", guard, age)
        return True

    def _write_temp(self, key: str, payload: dict[str, Any]) -> Path:
        temp_path = self.root_dir / f".{key}.{uuid4().hex}.tmp"
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        return temp_path


class MemoryRecordStorage:
    """In-process storage with one lock per key, used by tests and dry runs."""

    def __init__(self) -> None:
        self._records: dict[str, str] = {}
        self._guards: dict[str, threading.Lock] = {}
        self._mutex = threading.Lock()

    def read(self, key: str) -> dict[str, Any] | None:
        with self._mutex:
            text = self._records.get(key)
        if text is None:
            return None
        return _decode(text, source=f"memory:{key}")

    def create(self, key: str, payload: dict[str, Any]) -> bool:
        validate_key(key)
        encoded = json.dumps(payload, ensure_ascii=False)
        with self._mutex:
            if key in self._records:
                return False
            self._records[key] = encoded
        return True

    def replace(self, key: str, payload: dict[str, Any]) -> None:
        validate_key(key)
        encoded = json.dumps(payload, ensure_ascii=False)
        with self._mutex:
            self._records[key] = encoded

    def keys(self) -> list[str]:
        with self._mutex:
            return sorted(self._records)

    def try_lock(self, key: str) -> bool:
        with self._mutex:
            guard = self._guards.setdefault(key, threading.Lock())
        return guard.acquire(blocking=False)

    def unlock(self, key: str) -> None:
        with self._mutex:
            guard = self._guards[key]
        guard.release()


@contextmanager
def try_locked(storage: RecordStorage, key: str) -> Iterator[bool]:
    """Hold the record guard for the block if it is free; never waits."""

    acquired = storage.try_lock(key)
    try:
        yield acquired
    finally:
        if acquired:
            storage.unlock(key)


@contextmanager
def locked(
    storage: RecordStorage,
    key: str,
    *,
    wait_seconds: float,
    poll_seconds: float = 0.01,
) -> Iterator[None]:
    """Hold the record guard for the block, polling up to `wait_seconds`."""

    deadline = time.monotonic() + max(0.0, wait_seconds)
    while not storage.try_lock(key):
        if time.monotonic() >= deadline:
            raise RecordBusyError(f"Record {key} is busy (waited {wait_seconds:.1f}s)")
        time.sleep(poll_seconds)
    try:
        yield
    finally:
        storage.unlock(key)


def validate_key(key: str) -> None:
    if not _KEY_PATTERN.match(key) or key.endswith((_RECORD_SUFFIX, _GUARD_SUFFIX)):
        raise ValueError(f"Invalid record key: {key!r}")


def _decode(text: str, *, source: str) -> dict[str, Any]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        raise CorruptRecordError(f"Cannot decode record {source}: {error}") from error
    if not isinstance(payload, dict):
        raise CorruptRecordError(f"Expected JSON object in {source}")
    return payload
