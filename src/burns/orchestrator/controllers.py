"""Controllers for swarm CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from burns.config import ProjectConfig, Settings
from burns.orchestrator.agents import AgentRegistry
from burns.orchestrator.errors import TaskAlreadyExistsError
from burns.orchestrator.executor.cli_executor import CliExecutor
from burns.orchestrator.models import AgentStatus, AgentType, Task, TaskCreate, TaskStatus
from burns.orchestrator.progress import AgentLogBook, ProgressLog
from burns.orchestrator.scheduler import Scheduler
from burns.orchestrator.storage import FileRecordStorage
from burns.orchestrator.tasks import TaskStore

logger = logging.getLogger(__name__)

AUTO_ID_ATTEMPTS = 20


@dataclass(slots=True)
class RunCommand:
    """CLI input for a full scheduler run."""

    state_dir: Path | None
    tool: str | None = None
    workers: int | None = None
    exec_interval: int | None = None
    max_cycles: int | None = None
    project_file: Path | None = None


@dataclass(slots=True)
class RunCommandResult:
    lines: list[str]
    exit_code: int


@dataclass(slots=True)
class StateCommand:
    """CLI input for commands that only need the state directory."""

    state_dir: Path | None


@dataclass(slots=True)
class TaskListCommand:
    state_dir: Path | None
    status: str | None = None


@dataclass(slots=True)
class TaskShowCommand:
    state_dir: Path | None
    task_id: str


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI input for task creation by planners or operators."""

    state_dir: Path | None
    title: str
    task_id: str | None = None
    description: str = ""
    created_by: str = "operator"
    priority: int = 1
    dependencies: tuple[str, ...] = ()
    acceptance_criteria: tuple[str, ...] = ()
    max_attempts: int | None = None


@dataclass(slots=True)
class TaskReleaseCommand:
    state_dir: Path | None
    task_id: str
    reason: str | None = None


@dataclass(slots=True)
class AgentListCommand:
    state_dir: Path | None
    agent_type: str | None = None


@dataclass(slots=True)
class AgentCleanupCommand:
    state_dir: Path | None
    timeout_seconds: float | None = None


@dataclass(slots=True)
class Stores:
    tasks: TaskStore
    agents: AgentRegistry


class OrchestratorCliController:
    """Coordinates run, task and agent CLI operations."""

    def run(self, command: RunCommand) -> RunCommandResult:
        """Run the scheduler. Configuration errors surface before any state is written."""

        settings = Settings.from_env(state_dir=command.state_dir)
        if command.tool is not None:
            settings.executor.tool = command.tool.strip().lower()
        if command.workers is not None:
            settings.scheduler.max_workers = command.workers
        if command.exec_interval is not None:
            settings.scheduler.exec_interval = command.exec_interval
        if command.max_cycles is not None:
            settings.scheduler.max_cycles = command.max_cycles
        if command.project_file is not None:
            settings.project_file = command.project_file
        settings.validate()
        project = ProjectConfig.load(settings.resolved_project_file)

        logger.info(
            "Tool: %s, workers: %d, executive interval: %d, max cycles: %d, project: %s",
            settings.executor.tool,
            settings.scheduler.max_workers,
            settings.scheduler.exec_interval,
            settings.scheduler.max_cycles,
            settings.resolved_project_file,
        )
        stores = _stores(settings)
        store_settings = settings.store
        scheduler = Scheduler(
            tasks=stores.tasks,
            agents=stores.agents,
            executor=CliExecutor(
                command_template=settings.executor.command_template,
                scratch_dir=store_settings.logs_dir,
                tool=settings.executor.tool,
                extra_env={"BURNS_STATE_DIR": str(store_settings.state_dir.resolve())},
            ),
            progress=ProgressLog(store_settings.progress_file),
            agent_logs=AgentLogBook(store_settings.logs_dir),
            settings=settings.scheduler,
            project=project,
            executor_timeout_seconds=settings.executor.timeout_seconds,
            heartbeat_interval_seconds=settings.executor.heartbeat_interval_seconds,
            prompts_dir=settings.executor.prompts_dir,
        )
        result = scheduler.run()
        counts = stores.tasks.counts()
        return RunCommandResult(
            lines=[
                f"Run finished: outcome={result.outcome.value} cycles={result.cycles}",
                f"Reason: {result.reason}",
                "Tasks: "
                + " ".join(f"{name}={value}" for name, value in counts.to_dict().items()),
                f"Progress log: {store_settings.progress_file}",
            ],
            exit_code=result.exit_code,
        )

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        stores = _stores(Settings.from_env(state_dir=command.state_dir))
        status_filter = _parse_status(command.status)
        tasks = stores.tasks.list(status=status_filter)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} status={task.status.value} priority={task.priority} "
                f"attempts={task.attempts}/{task.max_attempts} "
                f"assigned={task.assigned_to or '-'} title={task.title}",
            )
        return lines

    def show_task(self, command: TaskShowCommand) -> list[str]:
        stores = _stores(Settings.from_env(state_dir=command.state_dir))
        return _task_details(stores.tasks.get(command.task_id))

    def create_task(self, command: TaskCreateCommand) -> list[str]:
        stores = _stores(Settings.from_env(state_dir=command.state_dir))
        payload = TaskCreate(
            task_id=command.task_id or stores.tasks.next_task_id(),
            title=command.title,
            description=command.description,
            created_by=command.created_by,
            priority=command.priority,
            dependencies=command.dependencies,
            acceptance_criteria=command.acceptance_criteria,
            max_attempts=command.max_attempts,
        )
        if command.task_id is not None:
            task = stores.tasks.create(payload)
        else:
            task = _create_with_next_id(stores.tasks, payload)

        missing = [dep for dep in task.dependencies if stores.tasks.find(dep) is None]
        lines = [f"Task created: {task.task_id} status={task.status.value} branch={task.branch}"]
        if missing:
            lines.append(f"Warning: unknown dependencies: {', '.join(missing)}")
        return lines

    def release_task(self, command: TaskReleaseCommand) -> list[str]:
        stores = _stores(Settings.from_env(state_dir=command.state_dir))
        outcome = stores.tasks.release(command.task_id, error=command.reason)
        task = stores.tasks.get(command.task_id)
        return [f"Task {task.task_id}: {outcome.value} (status={task.status.value})"]

    def next_task_id(self, command: StateCommand) -> list[str]:
        stores = _stores(Settings.from_env(state_dir=command.state_dir))
        return [stores.tasks.next_task_id()]

    def list_agents(self, command: AgentListCommand) -> list[str]:
        stores = _stores(Settings.from_env(state_dir=command.state_dir))
        agent_type = AgentType(command.agent_type.strip().lower()) if command.agent_type else None
        agents = stores.agents.list(agent_type)

        lines = [f"Agents: {len(agents)}"]
        for agent in agents:
            lines.append(
                f"  {agent.agent_id} type={agent.agent_type.value} status={agent.status.value} "
                f"task={agent.current_task or '-'} completed={agent.tasks_completed} "
                f"failed={agent.tasks_failed} heartbeat={agent.last_heartbeat.isoformat()}",
            )
        return lines

    def cleanup_agents(self, command: AgentCleanupCommand) -> list[str]:
        settings = Settings.from_env(state_dir=command.state_dir)
        timeout = (
            command.timeout_seconds
            if command.timeout_seconds is not None
            else settings.scheduler.stale_timeout_seconds
        )
        report = _stores(settings).agents.cleanup(timeout)
        return [
            f"Stale agents: {', '.join(report.stale_agents) or '-'}",
            f"Released tasks: {', '.join(report.released_tasks) or '-'}",
        ]

    def status(self, command: StateCommand) -> list[str]:
        stores = _stores(Settings.from_env(state_dir=command.state_dir))
        counts = stores.tasks.counts()
        lines = [
            f"Tasks: total={counts.total} "
            + " ".join(f"{name}={value}" for name, value in counts.to_dict().items()),
            f"All terminal: {'yes' if stores.tasks.all_terminal() else 'no'}",
        ]
        active = [
            agent for agent in stores.agents.list() if agent.status is AgentStatus.ACTIVE
        ]
        lines.append(
            "Active agents: "
            + " ".join(
                f"{agent_type.value}={sum(1 for a in active if a.agent_type is agent_type)}"
                for agent_type in AgentType
            ),
        )
        return lines


def _stores(settings: Settings) -> Stores:
    store = settings.store
    tasks = TaskStore(
        FileRecordStorage(store.tasks_dir, guard_stale_seconds=store.guard_stale_seconds),
        default_max_attempts=store.default_max_attempts,
        claim_order=store.claim_order,
        guard_wait_seconds=store.guard_wait_seconds,
    )
    agents = AgentRegistry(
        FileRecordStorage(store.agents_dir, guard_stale_seconds=store.guard_stale_seconds),
        task_store=tasks,
        guard_wait_seconds=store.guard_wait_seconds,
    )
    return Stores(tasks=tasks, agents=agents)


def _create_with_next_id(tasks: TaskStore, payload: TaskCreate) -> Task:
    """Create under the next free id, moving on when a concurrent planner took it."""

    for _ in range(AUTO_ID_ATTEMPTS):
        try:
            return tasks.create(payload)
        except TaskAlreadyExistsError:
            payload.task_id = tasks.next_task_id()
    raise TaskAlreadyExistsError(payload.task_id)


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _task_details(task: Task) -> list[str]:
    lines = [
        f"Task: {task.task_id}",
        f"Title: {task.title}",
        f"Status: {task.status.value}",
        f"Priority: {task.priority}",
        f"Assigned to: {task.assigned_to or '-'}",
        f"Created by: {task.created_by}",
        f"Branch: {task.branch}",
        f"Attempts: {task.attempts}/{task.max_attempts}",
        f"Dependencies: {', '.join(task.dependencies) or '-'}",
        f"Error: {task.error or '-'}",
        f"Created: {task.created_at.isoformat()}",
        f"Updated: {task.updated_at.isoformat()}",
    ]
    if task.description:
        lines.append(f"Description: {task.description}")
    for criterion in task.acceptance_criteria:
        lines.append(f"  - {criterion}")
    return lines
