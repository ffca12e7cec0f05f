"""Persistent task queue with atomic claiming and bounded retry."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from datetime import datetime

from burns.orchestrator.errors import (
    AssignmentMismatchError,
    InvalidTransitionError,
    TaskAlreadyExistsError,
    TaskNotFoundError,
)
from burns.orchestrator.models import (
    ACTIVE_TASK_STATUSES,
    ClaimOrder,
    ReleaseOutcome,
    Task,
    TaskCounts,
    TaskCreate,
    TaskStatus,
    utc_now,
)
from burns.orchestrator.storage import RecordStorage, locked, try_locked

logger = logging.getLogger(__name__)

TASK_ID_PREFIX = "TASK-"
MAX_ATTEMPTS_ERROR = "Max attempts exceeded"

_TASK_NUMBER = re.compile(rf"^{TASK_ID_PREFIX}(\d+)$")
_UPDATABLE_STATUSES = frozenset(
    {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.FAILED},
)


class TaskStore:
    """Task queue facade over one record namespace.

    Claiming is lock-free at the queue level: candidates are scanned without any
    guard, and ownership is transferred by a compare-and-swap on the task status
    performed under that task's own record guard. Losing the guard race simply
    moves the caller on to the next eligible candidate.
    """

    def __init__(
        self,
        storage: RecordStorage,
        *,
        default_max_attempts: int = 3,
        claim_order: ClaimOrder = ClaimOrder.ID,
        guard_wait_seconds: float = 10.0,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        if default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")
        self._storage = storage
        self.default_max_attempts = default_max_attempts
        self.claim_order = claim_order
        self.guard_wait_seconds = guard_wait_seconds
        self._now = now

    def create(self, payload: TaskCreate) -> Task:
        """Create a pending task, rejecting duplicate ids."""

        task_id = payload.task_id.strip()
        if not task_id:
            raise ValueError("Task id must be non-empty")
        if not payload.title.strip():
            raise ValueError(f"Task {task_id} needs a title")
        max_attempts = (
            payload.max_attempts
            if payload.max_attempts is not None
            else self.default_max_attempts
        )
        if max_attempts < 1:
            raise ValueError(f"Task {task_id} max_attempts must be >= 1")
        dependencies = _dedupe(dep.strip() for dep in payload.dependencies)
        if task_id in dependencies:
            raise ValueError(f"Task {task_id} cannot depend on itself")

        now = self._now()
        task = Task(
            task_id=task_id,
            title=payload.title.strip(),
            description=payload.description,
            status=TaskStatus.PENDING,
            priority=payload.priority,
            assigned_to=None,
            created_by=payload.created_by,
            dependencies=dependencies,
            acceptance_criteria=list(payload.acceptance_criteria),
            branch=payload.branch or f"burns/{task_id.lower()}",
            attempts=0,
            max_attempts=max_attempts,
            created_at=now,
            updated_at=now,
        )
        if not self._storage.create(task_id, task.to_record()):
            raise TaskAlreadyExistsError(task_id)
        logger.info("Created task %s: %s", task_id, task.title)
        return task

    def claim(self, agent_id: str) -> str | None:
        """Claim one eligible pending task for `agent_id`.

        Returns None when nothing is eligible; that is a normal outcome.
        """

        tasks = self._load_all()
        statuses = {task.task_id: task.status for task in tasks}
        for candidate in self._claim_candidates(tasks):
            # Completed is terminal, so eligibility seen here cannot be revoked.
            if not _dependencies_met(candidate, statuses):
                continue
            with try_locked(self._storage, candidate.task_id) as acquired:
                if not acquired:
                    logger.debug("Lost claim race for %s (%s)", candidate.task_id, agent_id)
                    continue
                current = self._read(candidate.task_id)
                if current is None or not _is_claimable(current):
                    continue
                current.status = TaskStatus.CLAIMED
                current.assigned_to = agent_id
                current.attempts += 1
                current.error = None
                current.updated_at = self._now()
                self._storage.replace(current.task_id, current.to_record())
            logger.info(
                "Agent %s claimed %s (attempt %d/%d)",
                agent_id,
                current.task_id,
                current.attempts,
                current.max_attempts,
            )
            return current.task_id
        return None

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        error: str | None = None,
        *,
        expected_agent: str | None = None,
    ) -> Task:
        """Move a held task to in_progress, completed or failed."""

        if status not in _UPDATABLE_STATUSES:
            raise InvalidTransitionError(
                f"Cannot set task {task_id} to {status.value} via update_status",
            )
        with locked(self._storage, task_id, wait_seconds=self.guard_wait_seconds):
            task = self._require(task_id)
            if task.status not in ACTIVE_TASK_STATUSES:
                raise InvalidTransitionError(
                    f"Task {task_id} is {task.status.value}; "
                    f"only claimed or in_progress tasks can become {status.value}",
                )
            if expected_agent is not None and task.assigned_to != expected_agent:
                raise AssignmentMismatchError(
                    f"Task {task_id} is assigned to {task.assigned_to}, not {expected_agent}",
                )
            task.status = status
            if status is not TaskStatus.IN_PROGRESS:
                task.assigned_to = None
            if error is not None:
                task.error = error
            task.updated_at = self._now()
            self._storage.replace(task_id, task.to_record())
        logger.info("Task %s -> %s", task_id, status.value)
        return task

    def release(
        self,
        task_id: str,
        *,
        error: str | None = None,
        expected_agent: str | None = None,
    ) -> ReleaseOutcome:
        """Give a held task back to the queue, or fail it when retries are spent."""

        with locked(self._storage, task_id, wait_seconds=self.guard_wait_seconds):
            task = self._require(task_id)
            if task.status not in ACTIVE_TASK_STATUSES:
                logger.info("Task %s is %s; nothing to release", task_id, task.status.value)
                return ReleaseOutcome.NOT_HELD
            if expected_agent is not None and task.assigned_to != expected_agent:
                logger.info(
                    "Task %s is held by %s, not %s; nothing to release",
                    task_id,
                    task.assigned_to,
                    expected_agent,
                )
                return ReleaseOutcome.NOT_HELD

            task.assigned_to = None
            task.updated_at = self._now()
            if task.attempts >= task.max_attempts:
                task.status = TaskStatus.FAILED
                task.error = f"{MAX_ATTEMPTS_ERROR}: {error}" if error else MAX_ATTEMPTS_ERROR
                outcome = ReleaseOutcome.EXHAUSTED
            else:
                task.status = TaskStatus.PENDING
                if error is not None:
                    task.error = error
                outcome = ReleaseOutcome.RELEASED
            self._storage.replace(task_id, task.to_record())

        if outcome is ReleaseOutcome.EXHAUSTED:
            logger.warning("Task %s failed after %d attempts", task_id, task.max_attempts)
        else:
            logger.info(
                "Task %s released (attempt %d of %d)",
                task_id,
                task.attempts,
                task.max_attempts,
            )
        return outcome

    def get(self, task_id: str) -> Task:
        return self._require(task_id)

    def find(self, task_id: str) -> Task | None:
        return self._read(task_id)

    def list(self, status: TaskStatus | None = None) -> list[Task]:
        """Tasks in display order (priority, then id)."""

        tasks = [
            task for task in self._load_all() if status is None or task.status is status
        ]
        return sorted(tasks, key=lambda task: (task.priority, task.task_id))

    def counts(self) -> TaskCounts:
        counts = TaskCounts()
        for task in self._load_all():
            counts.add(task.status)
        return counts

    def count(self) -> int:
        return len(self._storage.keys())

    def all_terminal(self) -> bool:
        """True when no task is pending, claimed or in progress."""

        return self.counts().open == 0

    def next_task_id(self) -> str:
        highest = 0
        for key in self._storage.keys():
            match = _TASK_NUMBER.match(key)
            if match is not None:
                highest = max(highest, int(match.group(1)))
        return f"{TASK_ID_PREFIX}{highest + 1:03d}"

    def find_dependency_cycle(self) -> list[str] | None:
        """Return one dependency cycle as a list of ids, or None for a DAG."""

        graph = {task.task_id: task.dependencies for task in self._load_all()}
        visiting: list[str] = []
        state: dict[str, int] = {}

        def visit(node: str) -> list[str] | None:
            state[node] = 1
            visiting.append(node)
            for dep in graph.get(node, ()):
                if state.get(dep) == 1:
                    return [*visiting[visiting.index(dep) :], dep]
                if dep in graph and dep not in state:
                    found = visit(dep)
                    if found is not None:
                        return found
            visiting.pop()
            state[node] = 2
            return None

        for node in sorted(graph):
            if node not in state:
                found = visit(node)
                if found is not None:
                    return found
        return None

    def _claim_candidates(self, tasks: Iterable[Task]) -> list[Task]:
        pending = [task for task in tasks if _is_claimable(task)]
        if self.claim_order is ClaimOrder.PRIORITY:
            return sorted(pending, key=lambda task: (task.priority, task.task_id))
        return sorted(pending, key=lambda task: task.task_id)

    def _load_all(self) -> list[Task]:
        tasks: list[Task] = []
        for key in self._storage.keys():
            task = self._read(key)
            if task is not None:
                tasks.append(task)
        return tasks

    def _read(self, task_id: str) -> Task | None:
        record = self._storage.read(task_id)
        if record is None:
            return None
        return Task.from_record(record)

    def _require(self, task_id: str) -> Task:
        task = self._read(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task


def _is_claimable(task: Task) -> bool:
    return task.status is TaskStatus.PENDING and task.attempts < task.max_attempts


def _dependencies_met(task: Task, statuses: dict[str, TaskStatus]) -> bool:
    return all(statuses.get(dep) is TaskStatus.COMPLETED for dep in task.dependencies)


def _dedupe(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result
