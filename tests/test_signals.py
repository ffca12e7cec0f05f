from __future__ import annotations

import allure
import pytest

from burns.orchestrator.signals import (
    ExecutiveSignal,
    ExecutiveSignalKind,
    PlannerSignal,
    PlannerSignalKind,
    WorkerSignal,
    WorkerSignalKind,
    extract_tokens,
    format_token,
    parse_executive_signal,
    parse_planner_signal,
    parse_worker_signal,
)

pytestmark = [
    allure.epic("Swarm Scheduling"),
    allure.feature("Signal Parsing"),
]


def test_extract_tokens_trims_and_keeps_order() -> None:
    output = "noise <burns> CONTINUE </burns> more\n<burns>STUCK</burns>"

    assert extract_tokens(output) == ["CONTINUE", "STUCK"]
    assert extract_tokens("") == []
    assert format_token("NO_TASKS") == "<burns>NO_TASKS</burns>"


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("done <burns>TASK_COMPLETE:TASK-001</burns>", WorkerSignal(WorkerSignalKind.COMPLETE)),
        (
            "<burns>TASK_FAILED:TASK-001:tests keep failing</burns>",
            WorkerSignal(WorkerSignalKind.FAILED, reason="tests keep failing"),
        ),
        ("<burns>TASK_FAILED:TASK-001</burns>", WorkerSignal(WorkerSignalKind.FAILED)),
        ("<burns>NO_TASKS</burns>", WorkerSignal(WorkerSignalKind.NO_TASKS)),
        ("I finished TASK-001", WorkerSignal(WorkerSignalKind.UNRECOGNIZED)),
        ("TASK_COMPLETE:TASK-001", WorkerSignal(WorkerSignalKind.UNRECOGNIZED)),
    ],
)
def test_parse_worker_signal(output: str, expected: WorkerSignal) -> None:
    assert parse_worker_signal(output, task_id="TASK-001") == expected


def test_worker_completion_for_another_task_is_ignored() -> None:
    output = "<burns>TASK_COMPLETE:TASK-002</burns>"

    assert parse_worker_signal(output, task_id="TASK-001").kind is WorkerSignalKind.UNRECOGNIZED
    assert parse_worker_signal(output, task_id="TASK-0").kind is WorkerSignalKind.UNRECOGNIZED


def test_worker_completion_wins_over_failure() -> None:
    output = (
        "<burns>TASK_FAILED:TASK-001:first try</burns>\n"
        "<burns>TASK_COMPLETE:TASK-001</burns>\n"
        "<burns>NO_TASKS</burns>"
    )

    assert parse_worker_signal(output, task_id="TASK-001").kind is WorkerSignalKind.COMPLETE


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("<burns>COMPLETE</burns>", ExecutiveSignal(ExecutiveSignalKind.COMPLETE)),
        ("<burns>STUCK</burns>", ExecutiveSignal(ExecutiveSignalKind.STUCK)),
        (
            "<burns>SPAWN_PLANNER:backend api</burns>",
            ExecutiveSignal(ExecutiveSignalKind.SPAWN_PLANNER, argument="backend api"),
        ),
        (
            "<burns>TERMINATE_PLANNER:planner-2</burns>",
            ExecutiveSignal(ExecutiveSignalKind.TERMINATE_PLANNER, argument="planner-2"),
        ),
        ("<burns>CONTINUE</burns>", ExecutiveSignal(ExecutiveSignalKind.CONTINUE)),
        ("<burns>SPAWN_PLANNER:</burns>", ExecutiveSignal(ExecutiveSignalKind.UNRECOGNIZED)),
        ("all good, keep going", ExecutiveSignal(ExecutiveSignalKind.UNRECOGNIZED)),
    ],
)
def test_parse_executive_signal(output: str, expected: ExecutiveSignal) -> None:
    assert parse_executive_signal(output) == expected


def test_executive_precedence() -> None:
    output = (
        "<burns>CONTINUE</burns><burns>SPAWN_PLANNER:docs</burns>"
        "<burns>STUCK</burns><burns>COMPLETE</burns>"
    )
    assert parse_executive_signal(output).kind is ExecutiveSignalKind.COMPLETE

    output = "<burns>CONTINUE</burns><burns>TERMINATE_PLANNER:planner-1</burns>"
    assert parse_executive_signal(output).kind is ExecutiveSignalKind.TERMINATE_PLANNER


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("<burns>PLANNING_DONE</burns>", PlannerSignal(PlannerSignalKind.PLANNING_DONE)),
        ("<burns>AREA_COMPLETE</burns>", PlannerSignal(PlannerSignalKind.AREA_COMPLETE)),
        (
            "<burns>NEED_CLARIFICATION:Which database?</burns>",
            PlannerSignal(PlannerSignalKind.NEED_CLARIFICATION, argument="Which database?"),
        ),
        ("<burns>NEED_CLARIFICATION:  </burns>", PlannerSignal(PlannerSignalKind.UNRECOGNIZED)),
        ("created three tasks", PlannerSignal(PlannerSignalKind.UNRECOGNIZED)),
    ],
)
def test_parse_planner_signal(output: str, expected: PlannerSignal) -> None:
    assert parse_planner_signal(output) == expected


def test_planner_done_wins_over_clarification() -> None:
    output = "<burns>NEED_CLARIFICATION:why?</burns><burns>PLANNING_DONE</burns>"

    assert parse_planner_signal(output).kind is PlannerSignalKind.PLANNING_DONE
