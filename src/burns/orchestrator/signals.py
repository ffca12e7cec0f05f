"""Signal tokens emitted by executor output, parsed into tagged results.

A token looks like `<burns>TASK_COMPLETE:TASK-001</burns>`. Output is free-form
text from a non-deterministic tool, so parsing never assumes well-formed input:
anything without a recognized token maps to an explicit UNRECOGNIZED variant.
When several tokens are present the first kind in precedence order wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

SIGNAL_TAG = "burns"

_TOKEN_PATTERN = re.compile(rf"<{SIGNAL_TAG}>(.*?)</{SIGNAL_TAG}>", re.DOTALL)


class WorkerSignalKind(str, Enum):
    COMPLETE = "TASK_COMPLETE"
    FAILED = "TASK_FAILED"
    NO_TASKS = "NO_TASKS"
    UNRECOGNIZED = "UNRECOGNIZED"


class ExecutiveSignalKind(str, Enum):
    COMPLETE = "COMPLETE"
    STUCK = "STUCK"
    SPAWN_PLANNER = "SPAWN_PLANNER"
    TERMINATE_PLANNER = "TERMINATE_PLANNER"
    CONTINUE = "CONTINUE"
    UNRECOGNIZED = "UNRECOGNIZED"


class PlannerSignalKind(str, Enum):
    PLANNING_DONE = "PLANNING_DONE"
    AREA_COMPLETE = "AREA_COMPLETE"
    NEED_CLARIFICATION = "NEED_CLARIFICATION"
    UNRECOGNIZED = "UNRECOGNIZED"


@dataclass(frozen=True, slots=True)
class WorkerSignal:
    kind: WorkerSignalKind
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ExecutiveSignal:
    kind: ExecutiveSignalKind
    argument: str | None = None


@dataclass(frozen=True, slots=True)
class PlannerSignal:
    kind: PlannerSignalKind
    argument: str | None = None


def extract_tokens(output: str) -> list[str]:
    """All delimited tokens in order of appearance, whitespace-trimmed."""

    return [match.strip() for match in _TOKEN_PATTERN.findall(output or "")]


def format_token(token: str) -> str:
    return f"<{SIGNAL_TAG}>{token}</{SIGNAL_TAG}>"


def parse_worker_signal(output: str, *, task_id: str) -> WorkerSignal:
    """Interpret worker output. Completion and failure must name `task_id`."""

    tokens = extract_tokens(output)
    if f"{WorkerSignalKind.COMPLETE.value}:{task_id}" in tokens:
        return WorkerSignal(WorkerSignalKind.COMPLETE)

    failed_prefix = f"{WorkerSignalKind.FAILED.value}:{task_id}"
    for token in tokens:
        if token == failed_prefix:
            return WorkerSignal(WorkerSignalKind.FAILED, reason=None)
        if token.startswith(f"{failed_prefix}:"):
            reason = token[len(failed_prefix) + 1 :].strip()
            return WorkerSignal(WorkerSignalKind.FAILED, reason=reason or None)

    if WorkerSignalKind.NO_TASKS.value in tokens:
        return WorkerSignal(WorkerSignalKind.NO_TASKS)
    return WorkerSignal(WorkerSignalKind.UNRECOGNIZED)


def parse_executive_signal(output: str) -> ExecutiveSignal:
    tokens = extract_tokens(output)
    if ExecutiveSignalKind.COMPLETE.value in tokens:
        return ExecutiveSignal(ExecutiveSignalKind.COMPLETE)
    if ExecutiveSignalKind.STUCK.value in tokens:
        return ExecutiveSignal(ExecutiveSignalKind.STUCK)
    for kind in (ExecutiveSignalKind.SPAWN_PLANNER, ExecutiveSignalKind.TERMINATE_PLANNER):
        argument = _first_argument(tokens, kind.value)
        if argument:
            return ExecutiveSignal(kind, argument=argument)
    if ExecutiveSignalKind.CONTINUE.value in tokens:
        return ExecutiveSignal(ExecutiveSignalKind.CONTINUE)
    return ExecutiveSignal(ExecutiveSignalKind.UNRECOGNIZED)


def parse_planner_signal(output: str) -> PlannerSignal:
    tokens = extract_tokens(output)
    if PlannerSignalKind.PLANNING_DONE.value in tokens:
        return PlannerSignal(PlannerSignalKind.PLANNING_DONE)
    if PlannerSignalKind.AREA_COMPLETE.value in tokens:
        return PlannerSignal(PlannerSignalKind.AREA_COMPLETE)
    question = _first_argument(tokens, PlannerSignalKind.NEED_CLARIFICATION.value)
    if question:
        return PlannerSignal(PlannerSignalKind.NEED_CLARIFICATION, argument=question)
    return PlannerSignal(PlannerSignalKind.UNRECOGNIZED)


def _first_argument(tokens: list[str], name: str) -> str | None:
    prefix = f"{name}:"
    for token in tokens:
        if token.startswith(prefix):
            argument = token[len(prefix) :].strip()
            if argument:
                return argument
    return None
