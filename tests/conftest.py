"""Shared test fixtures."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from burns.orchestrator.agents import AgentRegistry
from burns.orchestrator.storage import MemoryRecordStorage
from burns.orchestrator.tasks import TaskStore

SRC_DIR = Path(__file__).resolve().parents[1] / "src"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def task_store(clock: FakeClock) -> TaskStore:
    return TaskStore(MemoryRecordStorage(), now=clock, guard_wait_seconds=1.0)


@pytest.fixture()
def agent_registry(task_store: TaskStore, clock: FakeClock) -> AgentRegistry:
    return AgentRegistry(
        MemoryRecordStorage(),
        task_store=task_store,
        now=clock,
        pid=4242,
        guard_wait_seconds=1.0,
    )


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop BURNS_* variables inherited from the developer shell."""

    for name in list(os.environ):
        if name.startswith("BURNS_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def child_pythonpath(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make `python -m burns...` importable in child processes without an install."""

    existing = os.environ.get("PYTHONPATH")
    value = str(SRC_DIR) if not existing else f"{SRC_DIR}{os.pathsep}{existing}"
    monkeypatch.setenv("PYTHONPATH", value)
