"""Cycle scheduler: executive checks, bounded worker fan-out, stale recovery."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from burns.config import ProjectConfig, SchedulerSettings
from burns.orchestrator.agents import AgentRegistry
from burns.orchestrator.errors import (
    AgentNotFoundError,
    AssignmentMismatchError,
    InvalidTransitionError,
    StoreError,
)
from burns.orchestrator.executor.base import Executor, ExecutorRequest, ExecutorRole
from burns.orchestrator.executor.cli_executor import ExecutorRunError
from burns.orchestrator.models import (
    AgentStatus,
    AgentType,
    ReleaseOutcome,
    Task,
    TaskStatus,
)
from burns.orchestrator.progress import AgentLogBook, ProgressLog
from burns.orchestrator.prompts import (
    executive_context,
    load_instructions,
    planner_context,
    worker_context,
)
from burns.orchestrator.signals import (
    ExecutiveSignal,
    ExecutiveSignalKind,
    PlannerSignal,
    PlannerSignalKind,
    WorkerSignal,
    WorkerSignalKind,
    parse_executive_signal,
    parse_planner_signal,
    parse_worker_signal,
)
from burns.orchestrator.tasks import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_PLANNER_AREA = "general"


class RunOutcome(str, Enum):
    """Terminal states of a scheduler run."""

    SUCCESS = "success"
    BUDGET_EXHAUSTED = "budget_exhausted"
    STUCK = "stuck"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    RunOutcome.SUCCESS: 0,
    RunOutcome.BUDGET_EXHAUSTED: 1,
    RunOutcome.STUCK: 2,
}

_OUTCOME_TITLES = {
    RunOutcome.SUCCESS: "PROJECT COMPLETE",
    RunOutcome.BUDGET_EXHAUSTED: "MAX CYCLES REACHED",
    RunOutcome.STUCK: "PROJECT STUCK - human intervention needed",
}


@dataclass(slots=True)
class RunResult:
    outcome: RunOutcome
    cycles: int
    reason: str

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code


class WorkerUnitResult(str, Enum):
    """How one worker unit ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    RELEASED = "released"
    IDLE = "idle"
    LOST = "lost"
    ERROR = "error"


@dataclass(slots=True)
class CycleSummary:
    """Aggregate worker counters for one fan-out."""

    spawned: int = 0
    completed: int = 0
    failed: int = 0
    released: int = 0
    idle: int = 0
    lost: int = 0
    errors: int = 0

    def add(self, result: WorkerUnitResult) -> None:
        self.spawned += 1
        if result is WorkerUnitResult.ERROR:
            self.errors += 1
        else:
            setattr(self, result.value, getattr(self, result.value) + 1)


@dataclass(slots=True)
class PlannerReport:
    agent_id: str
    area: str
    signal: PlannerSignal


@dataclass(slots=True)
class PlannerHandle:
    """Tracks a planner launched by the executive; observed on later cycles."""

    agent_id: str
    area: str
    report: PlannerReport | None = None
    error: BaseException | None = None
    _thread: threading.Thread | None = field(default=None, repr=False)

    def start(self, target: Callable[[], PlannerReport]) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(target,),
            name=f"burns-{self.agent_id}",
            daemon=True,
        )
        self._thread.start()

    @property
    def done(self) -> bool:
        return self._thread is not None and not self._thread.is_alive()

    def join(self, timeout: float | None = None) -> bool:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.done

    def _run(self, target: Callable[[], PlannerReport]) -> None:
        try:
            self.report = target()
        except Exception as error:
            logger.exception("Planner %s (area: %s) crashed", self.agent_id, self.area)
            self.error = error


class Scheduler:
    """Drives cycles over the task store, agent registry and executor."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskStore,
        agents: AgentRegistry,
        executor: Executor,
        progress: ProgressLog,
        agent_logs: AgentLogBook,
        settings: SchedulerSettings,
        project: ProjectConfig | None = None,
        executor_timeout_seconds: int = 3_600,
        heartbeat_interval_seconds: float = 30.0,
        prompts_dir: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.tasks = tasks
        self.agents = agents
        self.executor = executor
        self.progress = progress
        self.agent_logs = agent_logs
        self.settings = settings
        self.project = project or ProjectConfig()
        self.executor_timeout_seconds = executor_timeout_seconds
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self._instructions = {
            role: load_instructions(role, prompts_dir=prompts_dir) for role in ExecutorRole
        }
        self._sleep = sleep
        self._planners: list[PlannerHandle] = []
        self._unrecognized_executive = 0

    @property
    def planners(self) -> list[PlannerHandle]:
        return list(self._planners)

    def run(self) -> RunResult:
        """Run cycles until success, stuck, or the cycle budget runs out."""

        self.progress.initialize()
        self._report_dependency_cycles()
        logger.info(
            "Starting run: workers=%d exec_interval=%d max_cycles=%d",
            self.settings.max_workers,
            self.settings.exec_interval,
            self.settings.max_cycles,
        )
        try:
            result = self._loop()
        finally:
            self._shutdown_planners()
        return self._finish(result)

    def run_executive(self, cycle: int) -> RunResult | None:
        """One synchronous executive step. Returns a result when the run must end."""

        agent_id = self.agents.register_next(AgentType.EXECUTIVE).agent_id
        self.agent_logs.log(agent_id, "Starting executive review")
        try:
            context = executive_context(
                agent_id=agent_id,
                project=self.project.document,
                counts=self.tasks.counts(),
                tasks=self.tasks.list(),
                agents=[
                    agent
                    for agent in self.agents.list()
                    if agent.status is AgentStatus.ACTIVE
                ],
            )
            output = self._invoke(ExecutorRole.EXECUTIVE, agent_id, context)
        finally:
            self.agents.deregister(agent_id)
        signal = parse_executive_signal(output)
        self.agent_logs.log(agent_id, f"Executive signal: {signal.kind.value}")
        return self._apply_executive_signal(signal, agent_id=agent_id, cycle=cycle)

    def run_planner(self, area: str) -> PlannerReport:
        """Register a planner for `area` and run it synchronously."""

        agent_id = self.agents.register_next(AgentType.PLANNER, area).agent_id
        return self._plan(agent_id, area)

    def spawn_planner(self, area: str) -> PlannerHandle:
        """Start a planner in the background and track it with a handle."""

        agent_id = self.agents.register_next(AgentType.PLANNER, area).agent_id
        handle = PlannerHandle(agent_id=agent_id, area=area)
        handle.start(lambda: self._plan(agent_id, area))
        self._planners.append(handle)
        logger.info("Spawned planner %s for area: %s", agent_id, area)
        return handle

    def run_workers(self, count: int) -> CycleSummary:
        """Fan out `count` worker units and wait for every one of them."""

        results = [WorkerUnitResult.ERROR] * count
        threads = [
            threading.Thread(
                target=self._worker_thread,
                args=(results, index),
                name=f"burns-worker-slot-{index + 1}",
            )
            for index in range(count)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        summary = CycleSummary()
        for result in results:
            summary.add(result)
        logger.info(
            "Workers done: spawned=%d completed=%d failed=%d released=%d idle=%d "
            "lost=%d errors=%d",
            summary.spawned,
            summary.completed,
            summary.failed,
            summary.released,
            summary.idle,
            summary.lost,
            summary.errors,
        )
        return summary

    def run_worker_unit(self) -> WorkerUnitResult:
        """Register, claim one task, invoke the executor, commit the outcome."""

        agent_id = self.agents.register_next(AgentType.WORKER).agent_id
        self.agent_logs.log(agent_id, "Worker starting")
        task_id: str | None = None
        try:
            task_id = self.tasks.claim(agent_id)
            if task_id is None:
                self.agent_logs.log(agent_id, "No tasks available")
                return WorkerUnitResult.IDLE

            self.agents.set_current_task(agent_id, task_id)
            self.agent_logs.log(agent_id, f"Claimed task: {task_id}")
            task = self.tasks.update_status(
                task_id,
                TaskStatus.IN_PROGRESS,
                expected_agent=agent_id,
            )
            signal = self._invoke_worker(agent_id, task)
            return self._commit_worker_signal(agent_id, task, signal)
        except Exception:
            if task_id is not None:
                self._release_after_error(agent_id, task_id)
            raise
        finally:
            self.agents.set_current_task(agent_id, None)
            self.agents.deregister(agent_id)

    def end_cycle(self) -> None:
        """Recover work from stale agents, then pause before the next cycle."""

        try:
            report = self.agents.cleanup(self.settings.stale_timeout_seconds)
        except StoreError:
            logger.exception("Stale agent cleanup failed; retrying next cycle")
        else:
            if report.stale_agents:
                logger.warning(
                    "Stale agents: %s; released tasks: %s",
                    ", ".join(report.stale_agents),
                    ", ".join(report.released_tasks) or "none",
                )
        if self.settings.cycle_delay_seconds > 0:
            self._sleep(self.settings.cycle_delay_seconds)

    def _loop(self) -> RunResult:
        settings = self.settings
        if self.tasks.count() == 0:
            logger.info("No tasks found. Running initial planner")
            self.run_planner(DEFAULT_PLANNER_AREA)

        for cycle in range(1, settings.max_cycles + 1):
            logger.info("Cycle %d of %d", cycle, settings.max_cycles)
            self._collect_planners()

            if cycle == 1 or cycle % settings.exec_interval == 0:
                decision = self.run_executive(cycle)
                if decision is not None:
                    return decision

            counts = self.tasks.counts()
            if counts.pending == 0 and counts.in_progress == 0:
                if self.tasks.all_terminal():
                    return RunResult(RunOutcome.SUCCESS, cycle, "All tasks are terminal")
                logger.info("No pending tasks. Running planner")
                self.run_planner(DEFAULT_PLANNER_AREA)
            else:
                worker_count = min(settings.max_workers, counts.pending)
                if worker_count:
                    logger.info("Spawning %d workers", worker_count)
                    self.run_workers(worker_count)
            self.end_cycle()

        return RunResult(
            RunOutcome.BUDGET_EXHAUSTED,
            settings.max_cycles,
            f"Max cycles ({settings.max_cycles}) reached",
        )

    def _apply_executive_signal(
        self,
        signal: ExecutiveSignal,
        *,
        agent_id: str,
        cycle: int,
    ) -> RunResult | None:
        if signal.kind is ExecutiveSignalKind.UNRECOGNIZED:
            self._unrecognized_executive += 1
            logger.warning(
                "Executive %s produced no recognized signal (%d in a row)",
                agent_id,
                self._unrecognized_executive,
            )
            self.progress.record_note(
                "Unrecognized executive output",
                f"Agent: {agent_id}",
                f"Cycle: {cycle}",
                f"Consecutive: {self._unrecognized_executive}",
            )
            limit = self.settings.executive_unrecognized_limit
            if limit > 0 and self._unrecognized_executive >= limit:
                return RunResult(
                    RunOutcome.STUCK,
                    cycle,
                    f"Executive produced no recognized signal {limit} times in a row",
                )
            return None

        self._unrecognized_executive = 0
        if signal.kind is ExecutiveSignalKind.COMPLETE:
            return RunResult(RunOutcome.SUCCESS, cycle, f"Executive {agent_id} declared COMPLETE")
        if signal.kind is ExecutiveSignalKind.STUCK:
            return RunResult(RunOutcome.STUCK, cycle, f"Executive {agent_id} declared STUCK")
        if signal.kind is ExecutiveSignalKind.SPAWN_PLANNER and signal.argument:
            self.spawn_planner(signal.argument)
        elif signal.kind is ExecutiveSignalKind.TERMINATE_PLANNER and signal.argument:
            self._terminate_planner(signal.argument)
        return None

    def _terminate_planner(self, agent_id: str) -> None:
        try:
            stopped = self.agents.deregister(agent_id)
        except (AgentNotFoundError, ValueError):
            logger.warning("Executive asked to terminate unknown agent %s", agent_id)
            return
        if stopped:
            self.agent_logs.log(agent_id, "Terminated by executive")

    def _plan(self, agent_id: str, area: str) -> PlannerReport:
        self.agent_logs.log(agent_id, f"Starting planning for area: {area}")
        context = planner_context(
            agent_id=agent_id,
            area=area,
            project=self.project.document,
            tasks=self.tasks.list(),
            next_task_id=self.tasks.next_task_id(),
        )
        output = self._invoke(ExecutorRole.PLANNER, agent_id, context)
        signal = parse_planner_signal(output)

        if signal.kind is PlannerSignalKind.PLANNING_DONE:
            logger.info("Planner %s: planning complete for %s", agent_id, area)
            self.agent_logs.log(agent_id, f"Planning complete for area: {area}")
        elif signal.kind is PlannerSignalKind.AREA_COMPLETE:
            logger.info("Planner %s: area %s is already complete", agent_id, area)
            self.agent_logs.log(agent_id, f"Area already complete: {area}")
            self.agents.deregister(agent_id)
        elif signal.kind is PlannerSignalKind.NEED_CLARIFICATION:
            logger.warning("Planner %s needs clarification: %s", agent_id, signal.argument)
            self.agent_logs.log(agent_id, f"Needs clarification: {signal.argument}")
            self.progress.record_note(
                "Clarification needed",
                f"Planner: {agent_id}",
                f"Area: {area}",
                f"Question: {signal.argument}",
            )
        else:
            logger.warning("Planner %s produced no recognized signal", agent_id)
            self.agent_logs.log(agent_id, "No planner signal")
        return PlannerReport(agent_id=agent_id, area=area, signal=signal)

    def _collect_planners(self) -> None:
        for handle in [handle for handle in self._planners if handle.done]:
            self._planners.remove(handle)
            if handle.error is not None:
                self.progress.record_note(
                    "Planner failed",
                    f"Planner: {handle.agent_id}",
                    f"Area: {handle.area}",
                    f"Error: {handle.error}",
                )
            elif handle.report is not None:
                logger.info(
                    "Planner %s (area: %s) finished: %s",
                    handle.agent_id,
                    handle.area,
                    handle.report.signal.kind.value,
                )

    def _shutdown_planners(self) -> None:
        if not self._planners:
            return
        deadline = time.monotonic() + self.settings.planner_join_seconds
        for handle in self._planners:
            handle.join(max(0.0, deadline - time.monotonic()))
        self._collect_planners()
        for handle in self._planners:
            logger.warning(
                "Planner %s (area: %s) still running at shutdown",
                handle.agent_id,
                handle.area,
            )

    def _worker_thread(self, results: list[WorkerUnitResult], index: int) -> None:
        try:
            results[index] = self.run_worker_unit()
        except Exception:
            logger.exception("Worker unit %d crashed", index + 1)
            results[index] = WorkerUnitResult.ERROR

    def _invoke_worker(self, agent_id: str, task: Task) -> WorkerSignal:
        context = worker_context(
            agent_id=agent_id,
            task=task,
            project_summary=self.project.summary,
        )
        output = self._invoke(ExecutorRole.WORKER, agent_id, context)
        return parse_worker_signal(output, task_id=task.task_id)

    def _commit_worker_signal(
        self,
        agent_id: str,
        task: Task,
        signal: WorkerSignal,
    ) -> WorkerUnitResult:
        task_id = task.task_id
        if signal.kind is WorkerSignalKind.COMPLETE:
            try:
                completed = self.tasks.update_status(
                    task_id,
                    TaskStatus.COMPLETED,
                    expected_agent=agent_id,
                )
            except (AssignmentMismatchError, InvalidTransitionError) as error:
                logger.warning("Worker %s lost task %s: %s", agent_id, task_id, error)
                self.agent_logs.log(agent_id, f"Lost task before completion: {task_id}")
                return WorkerUnitResult.LOST
            self.agents.mark_completed(agent_id)
            self.agent_logs.log(agent_id, f"Completed task: {task_id}")
            self.progress.record_completion(completed, agent_id=agent_id)
            return WorkerUnitResult.COMPLETED

        if signal.kind is WorkerSignalKind.FAILED:
            reason = signal.reason or "Worker reported failure"
            self.agents.mark_failed(agent_id)
            self.agent_logs.log(agent_id, f"Failed task: {task_id} - {reason}")
            outcome = self.tasks.release(task_id, error=reason, expected_agent=agent_id)
            return (
                WorkerUnitResult.LOST
                if outcome is ReleaseOutcome.NOT_HELD
                else WorkerUnitResult.FAILED
            )

        if signal.kind is WorkerSignalKind.NO_TASKS:
            self.agent_logs.log(agent_id, f"Reported no tasks while holding: {task_id}")
            outcome = self.tasks.release(
                task_id,
                error="Worker reported NO_TASKS",
                expected_agent=agent_id,
            )
            return (
                WorkerUnitResult.LOST
                if outcome is ReleaseOutcome.NOT_HELD
                else WorkerUnitResult.IDLE
            )

        self.agent_logs.log(agent_id, f"No completion signal for: {task_id}")
        outcome = self.tasks.release(
            task_id,
            error="No completion signal",
            expected_agent=agent_id,
        )
        return (
            WorkerUnitResult.LOST
            if outcome is ReleaseOutcome.NOT_HELD
            else WorkerUnitResult.RELEASED
        )

    def _release_after_error(self, agent_id: str, task_id: str) -> None:
        try:
            self.tasks.release(task_id, error="Worker unit error", expected_agent=agent_id)
        except StoreError:
            logger.exception("Could not release %s after worker %s crashed", task_id, agent_id)

    def _invoke(self, role: ExecutorRole, agent_id: str, context: str) -> str:
        request = ExecutorRequest(
            role=role,
            agent_id=agent_id,
            context=context,
            instructions=self._instructions[role],
            timeout_seconds=self.executor_timeout_seconds,
            transcript_path=self.agent_logs.transcript_path(agent_id),
            heartbeat=self._heartbeat_for(agent_id),
            heartbeat_interval_seconds=self.heartbeat_interval_seconds,
        )
        try:
            result = self.executor.run(request)
        except ExecutorRunError as error:
            logger.warning("Executor failed for %s: %s", agent_id, error)
            self.agent_logs.log(agent_id, f"Executor error: {error}")
            return ""
        if result.timed_out:
            self.agent_logs.log(
                agent_id,
                f"Executor timed out after {self.executor_timeout_seconds}s",
            )
        return result.output

    def _heartbeat_for(self, agent_id: str) -> Callable[[], None]:
        def beat() -> None:
            try:
                if not self.agents.heartbeat(agent_id):
                    logger.warning("Agent %s is no longer active", agent_id)
            except StoreError as error:
                logger.warning("Heartbeat for %s failed: %s", agent_id, error)

        return beat

    def _report_dependency_cycles(self) -> None:
        cycle = self.tasks.find_dependency_cycle()
        if cycle is None:
            return
        chain = " -> ".join(cycle)
        logger.warning("Dependency cycle detected: %s", chain)
        self.progress.record_note("Dependency cycle detected", f"Tasks: {chain}")

    def _finish(self, result: RunResult) -> RunResult:
        self.progress.record_note(
            _OUTCOME_TITLES[result.outcome],
            f"Cycle: {result.cycles} of {self.settings.max_cycles}",
            f"Reason: {result.reason}",
        )
        if result.outcome is RunOutcome.SUCCESS:
            logger.info("Run finished at cycle %d: %s", result.cycles, result.reason)
        else:
            logger.warning("Run finished at cycle %d: %s", result.cycles, result.reason)
        return result
