"""Role instruction documents and per-role context builders.

The executor receives `context + "\n\n---\n\n" + instructions`. Context is
rebuilt from live task and agent state for every invocation; instructions are
fixed per role and can be overridden with `<prompts_dir>/<role>.md`.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from burns.orchestrator.executor.base import ExecutorRole
from burns.orchestrator.models import Agent, Task, TaskCounts
from burns.orchestrator.signals import format_token

EXECUTIVE_INSTRUCTIONS = f"""\
# Executive

You supervise a swarm of planners and workers building the project above.
Review the task counts, the task list and the active agents, then decide what
happens next. Do not write code yourself.

Finish your answer with exactly one signal:

- {format_token("COMPLETE")} when every project goal is met.
- {format_token("STUCK")} when no further progress is possible without a human.
- {format_token("SPAWN_PLANNER:<area>")} when an area of the project has no tasks yet.
- {format_token("TERMINATE_PLANNER:<agent-id>")} when a planner is no longer useful.
- {format_token("CONTINUE")} when workers should keep going.
"""

PLANNER_INSTRUCTIONS = f"""\
# Planner

Break your assigned area into small, independently verifiable tasks. Read the
existing tasks first and never duplicate one.

Create each task with the `burns` command line, for example:

    burns tasks create --id <next id> --title "Short title" \\
        --description "What to build" --created-by <your agent id> \\
        --priority 1 --depends-on TASK-001 --criterion "Tests pass"

Use `burns tasks next-id` to get a fresh id for every task. Dependencies must
only reference existing tasks and must never form a cycle.

Finish your answer with exactly one signal:

- {format_token("PLANNING_DONE")} after creating the tasks for your area.
- {format_token("AREA_COMPLETE")} when the area needs no further tasks.
- {format_token("NEED_CLARIFICATION:<question>")} when you cannot plan without an answer.
"""

WORKER_INSTRUCTIONS = f"""\
# Worker

Implement the task above on its branch. Satisfy every acceptance criterion,
run the relevant checks and commit your work.

Finish your answer with exactly one signal naming the task id:

- {format_token("TASK_COMPLETE:<task-id>")} when the task is done.
- {format_token("TASK_FAILED:<task-id>:<reason>")} when you could not finish it.
- {format_token("NO_TASKS")} when there is nothing for you to do.
"""

BUILTIN_INSTRUCTIONS: dict[ExecutorRole, str] = {
    ExecutorRole.EXECUTIVE: EXECUTIVE_INSTRUCTIONS,
    ExecutorRole.PLANNER: PLANNER_INSTRUCTIONS,
    ExecutorRole.WORKER: WORKER_INSTRUCTIONS,
}


def load_instructions(role: ExecutorRole, *, prompts_dir: Path | None = None) -> str:
    """Instruction document for a role, preferring `<prompts_dir>/<role>.md`."""

    if prompts_dir is not None:
        override = prompts_dir / f"{role.value}.md"
        if override.is_file():
            return override.read_text("utf-8")
    return BUILTIN_INSTRUCTIONS[role]


def executive_context(
    *,
    agent_id: str,
    project: dict[str, Any],
    counts: TaskCounts,
    tasks: Iterable[Task],
    agents: Iterable[Agent],
) -> str:
    return "\n".join(
        [
            "# Current State",
            "",
            f"Role: {ExecutorRole.EXECUTIVE.value}",
            f"Agent ID: {agent_id}",
            "",
            "## Project",
            _dump(project),
            "",
            "## Task Counts",
            _dump(counts.to_dict()),
            "",
            "## Task Details",
            _dump([task_summary(task) for task in tasks]),
            "",
            "## Active Agents",
            _dump([agent_summary(agent) for agent in agents]),
            "",
        ],
    )


def planner_context(
    *,
    agent_id: str,
    area: str,
    project: dict[str, Any],
    tasks: Iterable[Task],
    next_task_id: str,
) -> str:
    return "\n".join(
        [
            "# Planning Context",
            "",
            f"Role: {ExecutorRole.PLANNER.value}",
            f"Agent ID: {agent_id}",
            "",
            "## Your Assignment",
            f"Area: {area}",
            f"Next task id: {next_task_id}",
            "",
            "## Project Goals",
            _dump(project),
            "",
            "## Existing Tasks",
            _dump([task_summary(task) for task in tasks]),
            "",
        ],
    )


def worker_context(*, agent_id: str, task: Task, project_summary: dict[str, Any]) -> str:
    return "\n".join(
        [
            "# Your Task",
            "",
            f"Role: {ExecutorRole.WORKER.value}",
            f"Agent ID: {agent_id}",
            f"Task ID: {task.task_id}",
            f"Branch: {task.branch}",
            "",
            "## Task Details",
            _dump(task.to_record()),
            "",
            "## Project Info",
            _dump(project_summary),
            "",
        ],
    )


def task_summary(task: Task) -> dict[str, Any]:
    return {
        "id": task.task_id,
        "title": task.title,
        "status": task.status.value,
        "priority": task.priority,
        "assignedTo": task.assigned_to,
    }


def agent_summary(agent: Agent) -> dict[str, Any]:
    return {
        "id": agent.agent_id,
        "type": agent.agent_type.value,
        "status": agent.status.value,
        "currentTask": agent.current_task,
        "tasksCompleted": agent.tasks_completed,
    }


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)
