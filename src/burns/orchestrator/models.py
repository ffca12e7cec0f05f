"""Domain models for the task queue and agent registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    CLAIMED = "claimed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_TASK_STATUSES = frozenset({TaskStatus.CLAIMED, TaskStatus.IN_PROGRESS})
OPEN_TASK_STATUSES = frozenset({TaskStatus.PENDING, *ACTIVE_TASK_STATUSES})


class AgentType(str, Enum):
    """Roles an agent identity can be registered under."""

    EXECUTIVE = "executive"
    PLANNER = "planner"
    WORKER = "worker"


class AgentStatus(str, Enum):
    """Agent liveness states. STOPPED and STALE are terminal and exclusive."""

    ACTIVE = "active"
    STOPPED = "stopped"
    STALE = "stale"


class ClaimOrder(str, Enum):
    """Candidate scan order used by TaskStore.claim."""

    ID = "id"
    PRIORITY = "priority"


class ReleaseOutcome(str, Enum):
    """Result of releasing a claimed task."""

    RELEASED = "released"
    EXHAUSTED = "exhausted"
    NOT_HELD = "not_held"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a task."""

    task_id: str
    title: str
    description: str = ""
    created_by: str = "operator"
    priority: int = 1
    dependencies: tuple[str, ...] = ()
    acceptance_criteria: tuple[str, ...] = ()
    branch: str | None = None
    max_attempts: int | None = None


@dataclass(slots=True)
class Task:
    """One persisted unit of work."""

    task_id: str
    title: str
    description: str
    status: TaskStatus
    priority: int
    assigned_to: str | None
    created_by: str
    dependencies: list[str]
    acceptance_criteria: list[str]
    branch: str
    attempts: int
    max_attempts: int
    created_at: datetime
    updated_at: datetime
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status not in OPEN_TASK_STATUSES

    def to_record(self) -> dict[str, Any]:
        """Serialize to the on-disk record layout."""

        record: dict[str, Any] = {
            "id": self.task_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority,
            "assignedTo": self.assigned_to,
            "createdBy": self.created_by,
            "dependencies": list(self.dependencies),
            "acceptanceCriteria": list(self.acceptance_criteria),
            "branch": self.branch,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }
        if self.error is not None:
            record["error"] = self.error
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Task:
        return cls(
            task_id=str(record["id"]),
            title=str(record.get("title", "")),
            description=str(record.get("description", "")),
            status=TaskStatus(record["status"]),
            priority=int(record.get("priority", 1)),
            assigned_to=record.get("assignedTo"),
            created_by=str(record.get("createdBy", "")),
            dependencies=[str(dep) for dep in record.get("dependencies", [])],
            acceptance_criteria=[str(item) for item in record.get("acceptanceCriteria", [])],
            branch=str(record.get("branch", "")),
            attempts=int(record.get("attempts", 0)),
            max_attempts=int(record.get("maxAttempts", 3)),
            created_at=from_iso(record["createdAt"]),
            updated_at=from_iso(record["updatedAt"]),
            error=record.get("error"),
        )


@dataclass(slots=True)
class TaskCounts:
    """Task totals per status."""

    pending: int = 0
    claimed: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.claimed + self.in_progress + self.completed + self.failed

    @property
    def open(self) -> int:
        return self.pending + self.claimed + self.in_progress

    def add(self, status: TaskStatus) -> None:
        setattr(self, status.value, getattr(self, status.value) + 1)

    def to_dict(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "claimed": self.claimed,
            "in_progress": self.in_progress,
            "completed": self.completed,
            "failed": self.failed,
        }


@dataclass(slots=True)
class Agent:
    """One registered execution identity."""

    agent_id: str
    agent_type: AgentType
    status: AgentStatus
    area: str | None
    current_task: str | None
    tasks_completed: int
    tasks_failed: int
    started_at: datetime
    last_heartbeat: datetime
    pid: int
    stopped_at: datetime | None = None

    def to_record(self) -> dict[str, Any]:
        """Serialize to the on-disk record layout."""

        record: dict[str, Any] = {
            "id": self.agent_id,
            "type": self.agent_type.value,
            "status": self.status.value,
            "area": self.area or "",
            "currentTask": self.current_task,
            "tasksCompleted": self.tasks_completed,
            "tasksFailed": self.tasks_failed,
            "startedAt": to_iso(self.started_at),
            "lastHeartbeat": to_iso(self.last_heartbeat),
            "pid": self.pid,
        }
        if self.stopped_at is not None:
            record["stoppedAt"] = to_iso(self.stopped_at)
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Agent:
        stopped_at = record.get("stoppedAt")
        return cls(
            agent_id=str(record["id"]),
            agent_type=AgentType(record["type"]),
            status=AgentStatus(record["status"]),
            area=record.get("area") or None,
            current_task=record.get("currentTask"),
            tasks_completed=int(record.get("tasksCompleted", 0)),
            tasks_failed=int(record.get("tasksFailed", 0)),
            started_at=from_iso(record["startedAt"]),
            last_heartbeat=from_iso(record["lastHeartbeat"]),
            pid=int(record.get("pid", 0)),
            stopped_at=from_iso(stopped_at) if stopped_at else None,
        )


@dataclass(slots=True)
class CleanupReport:
    """Outcome of one staleness sweep."""

    stale_agents: list[str] = field(default_factory=list)
    released_tasks: list[str] = field(default_factory=list)


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def from_iso(value: str) -> datetime:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
