"""CLI entrypoint for burns."""

import sys
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from burns import __version__
from burns.config import ConfigurationError
from burns.logging_setup import configure_logging
from burns.orchestrator.controllers import (
    AgentCleanupCommand,
    AgentListCommand,
    OrchestratorCliController,
    RunCommand,
    StateCommand,
    TaskCreateCommand,
    TaskListCommand,
    TaskReleaseCommand,
    TaskShowCommand,
)
from burns.orchestrator.errors import StoreError
from burns.orchestrator.executor.cli_executor import SUPPORTED_TOOLS
from burns.orchestrator.models import AgentType, TaskStatus

click.rich_click.USE_MARKDOWN = True
CONFIGURATION_ERROR_EXIT_CODE = 3
CONTROLLER = OrchestratorCliController()

STATE_DIR_HELP = "State directory holding tasks/, agents/, logs/ (default: BURNS_STATE_DIR or state)."


@click.group()
@click.version_option(version=__version__, prog_name="burns")
@click.option(
    "--log-level",
    default=None,
    help="Logging level (default: BURNS_LOG_LEVEL or INFO).",
)
def burns(log_level: str | None) -> None:
    """Executive / planner / worker swarm driving CLI coding agents.

    Exit codes of `burns run`: **0** goals achieved, **1** cycle budget exhausted,
    **2** stuck (human intervention needed), **3** configuration error.
    """

    try:
        configure_logging(log_level)
    except ValueError as error:
        raise click.BadParameter(str(error), param_hint="--log-level") from error


@burns.command("run")
@click.option(
    "--tool",
    default=None,
    help=f"Executor tool: {', '.join(SUPPORTED_TOOLS)} (default: BURNS_TOOL or amp).",
)
@click.option("--workers", type=int, default=None, help="Parallel workers per cycle (default 4).")
@click.option(
    "--exec-interval",
    type=int,
    default=None,
    help="Run the executive every N cycles (default 10).",
)
@click.option("--max-cycles", type=int, default=None, help="Cycle budget (default 100).")
@click.option(
    "--project",
    "project_file",
    type=click.Path(path_type=Path),
    default=None,
    help="Project config JSON (default: <state-dir>/project.json).",
)
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help=STATE_DIR_HELP)
def run(  # noqa: PLR0913
    tool: str | None,
    workers: int | None,
    exec_interval: int | None,
    max_cycles: int | None,
    project_file: Path | None,
    state_dir: Path | None,
) -> None:
    """Run scheduler cycles until the project is complete, stuck, or out of budget."""

    try:
        result = CONTROLLER.run(
            RunCommand(
                state_dir=state_dir,
                tool=tool,
                workers=workers,
                exec_interval=exec_interval,
                max_cycles=max_cycles,
                project_file=project_file,
            ),
        )
    except ConfigurationError as error:
        click.echo(f"Configuration error: {error}", err=True)
        sys.exit(CONFIGURATION_ERROR_EXIT_CODE)
    _emit_lines(result.lines)
    sys.exit(result.exit_code)


@burns.group()
def tasks() -> None:
    """Task queue commands."""


@tasks.command("list")
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help=STATE_DIR_HELP)
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Only tasks with this status.",
)
def tasks_list(state_dir: Path | None, status: str | None) -> None:
    """List tasks by priority, then id."""

    _emit_lines(
        _or_fail(
            lambda: CONTROLLER.list_tasks(TaskListCommand(state_dir=state_dir, status=status)),
        ),
    )


@tasks.command("show")
@click.argument("task_id")
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help=STATE_DIR_HELP)
def tasks_show(task_id: str, state_dir: Path | None) -> None:
    """Show one task record."""

    _emit_lines(
        _or_fail(
            lambda: CONTROLLER.show_task(TaskShowCommand(state_dir=state_dir, task_id=task_id)),
        ),
    )


@tasks.command("create")
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help=STATE_DIR_HELP)
@click.option("--id", "task_id", default=None, help="Task id (default: next TASK-NNN).")
@click.option("--title", required=True, help="Short task title.")
@click.option("--description", default="", help="What has to be built.")
@click.option("--created-by", default="operator", show_default=True, help="Creating agent id.")
@click.option("--priority", type=int, default=1, show_default=True, help="Lower runs first.")
@click.option(
    "--depends-on",
    "dependencies",
    multiple=True,
    help="Id of a task that must complete first. Can be repeated.",
)
@click.option(
    "--criterion",
    "acceptance_criteria",
    multiple=True,
    help="Acceptance criterion. Can be repeated.",
)
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Retry budget (default: BURNS_DEFAULT_MAX_ATTEMPTS or 3).",
)
def tasks_create(  # noqa: PLR0913
    state_dir: Path | None,
    task_id: str | None,
    title: str,
    description: str,
    created_by: str,
    priority: int,
    dependencies: tuple[str, ...],
    acceptance_criteria: tuple[str, ...],
    max_attempts: int | None,
) -> None:
    """Create a pending task."""

    _emit_lines(
        _or_fail(
            lambda: CONTROLLER.create_task(
                TaskCreateCommand(
                    state_dir=state_dir,
                    task_id=task_id,
                    title=title,
                    description=description,
                    created_by=created_by,
                    priority=priority,
                    dependencies=dependencies,
                    acceptance_criteria=acceptance_criteria,
                    max_attempts=max_attempts,
                ),
            ),
        ),
    )


@tasks.command("release")
@click.argument("task_id")
@click.option("--reason", default=None, help="Reason recorded on the task.")
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help=STATE_DIR_HELP)
def tasks_release(task_id: str, reason: str | None, state_dir: Path | None) -> None:
    """Release a held task back to the queue (consumes its attempt)."""

    _emit_lines(
        _or_fail(
            lambda: CONTROLLER.release_task(
                TaskReleaseCommand(state_dir=state_dir, task_id=task_id, reason=reason),
            ),
        ),
    )


@tasks.command("next-id")
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help=STATE_DIR_HELP)
def tasks_next_id(state_dir: Path | None) -> None:
    """Print the next free task id."""

    _emit_lines(_or_fail(lambda: CONTROLLER.next_task_id(StateCommand(state_dir=state_dir))))


@burns.group()
def agents() -> None:
    """Agent registry commands."""


@agents.command("list")
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help=STATE_DIR_HELP)
@click.option(
    "--type",
    "agent_type",
    type=click.Choice([agent_type.value for agent_type in AgentType], case_sensitive=False),
    default=None,
    help="Only agents of this type.",
)
def agents_list(state_dir: Path | None, agent_type: str | None) -> None:
    """List registered agents."""

    _emit_lines(
        _or_fail(
            lambda: CONTROLLER.list_agents(
                AgentListCommand(state_dir=state_dir, agent_type=agent_type),
            ),
        ),
    )


@agents.command("cleanup")
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help=STATE_DIR_HELP)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Heartbeat silence that marks an agent stale (default: BURNS_STALE_TIMEOUT_SECONDS).",
)
def agents_cleanup(state_dir: Path | None, timeout_seconds: float | None) -> None:
    """Mark silent agents stale and release their tasks."""

    _emit_lines(
        _or_fail(
            lambda: CONTROLLER.cleanup_agents(
                AgentCleanupCommand(state_dir=state_dir, timeout_seconds=timeout_seconds),
            ),
        ),
    )


@burns.command("status")
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help=STATE_DIR_HELP)
def status(state_dir: Path | None) -> None:
    """Show task counts and active agents per type."""

    _emit_lines(_or_fail(lambda: CONTROLLER.status(StateCommand(state_dir=state_dir))))


def _or_fail(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (StoreError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    burns()
