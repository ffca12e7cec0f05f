"""Append-only plain-text logs: the run progress log and per-agent logs."""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from burns.orchestrator.models import Task, to_iso, utc_now

PROGRESS_HEADER = "# Burns Progress Log"


class ProgressLog:
    """Human-facing progress file with one entry per completed task."""

    def __init__(self, path: Path, *, now: Callable[[], datetime] = utc_now) -> None:
        self.path = path
        self._now = now
        self._lock = threading.Lock()

    def initialize(self) -> None:
        if self.path.exists():
            return
        self._append(f"{PROGRESS_HEADER}\nStarted: {to_iso(self._now())}\n---\n")

    def record_completion(self, task: Task, *, agent_id: str) -> None:
        self._append(
            f"\n## {to_iso(self._now())} - {task.task_id}\n"
            f"- Completed by: {agent_id}\n"
            f"- Title: {task.title}\n"
            "---\n",
        )

    def record_note(self, title: str, *lines: str) -> None:
        body = "".join(f"- {line}\n" for line in lines)
        self._append(f"\n## {to_iso(self._now())} - {title}\n{body}---\n")

    def read(self) -> str:
        try:
            return self.path.read_text("utf-8")
        except FileNotFoundError:
            return ""

    def _append(self, text: str) -> None:
        with self._lock:
            append_text(self.path, text)


class AgentLogBook:
    """`<logs_dir>/<agent-id>.log` files with timestamped lines."""

    def __init__(self, logs_dir: Path, *, now: Callable[[], datetime] = utc_now) -> None:
        self.logs_dir = logs_dir
        self._now = now

    def log(self, agent_id: str, message: str) -> None:
        append_text(self.path_for(agent_id), f"[{to_iso(self._now())}] {message}\n")

    def path_for(self, agent_id: str) -> Path:
        return self.logs_dir / f"{agent_id}.log"

    def transcript_path(self, agent_id: str) -> Path:
        return self.logs_dir / f"{agent_id}.out"

    def read(self, agent_id: str) -> str:
        try:
            return self.path_for(agent_id).read_text("utf-8")
        except FileNotFoundError:
            return ""


def append_text(path: Path, text: str) -> None:
    """Append and fsync so entries survive a crash of the writing process."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text)
        handle.flush()
        os.fsync(handle.fileno())
