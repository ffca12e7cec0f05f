"""Executor interface: the external capability that performs actual work."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

PROMPT_SEPARATOR = "\n\n---\n\n"


class ExecutorRole(str, Enum):
    """Role the executor is invoked in; selects instructions and signal grammar."""

    EXECUTIVE = "executive"
    PLANNER = "planner"
    WORKER = "worker"


@dataclass(slots=True)
class ExecutorRequest:
    """Inputs for one blocking executor invocation."""

    role: ExecutorRole
    agent_id: str
    context: str
    instructions: str
    timeout_seconds: int
    transcript_path: Path | None = None
    heartbeat: Callable[[], None] | None = None
    heartbeat_interval_seconds: float = 30.0

    @property
    def prompt(self) -> str:
        return f"{self.context}{PROMPT_SEPARATOR}{self.instructions}"


@dataclass(slots=True)
class ExecutorResult:
    """Unstructured text output plus process metadata."""

    output: str
    exit_code: int = 0
    timed_out: bool = False


class Executor(Protocol):
    """Protocol implemented by executor adapters."""

    def run(self, request: ExecutorRequest) -> ExecutorResult:
        """Perform the work described by the request and return its output."""
