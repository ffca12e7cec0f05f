"""Error taxonomy for task and agent record stores."""

from __future__ import annotations


class StoreError(RuntimeError):
    """Base class for record store failures."""


class TaskNotFoundError(StoreError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class TaskAlreadyExistsError(StoreError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} already exists")
        self.task_id = task_id


class AgentNotFoundError(StoreError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent {agent_id} not found")
        self.agent_id = agent_id


class AgentAlreadyExistsError(StoreError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent {agent_id} already exists")
        self.agent_id = agent_id


class InvalidTransitionError(StoreError):
    """Requested status change is not allowed from the current status."""


class AssignmentMismatchError(StoreError):
    """Caller does not hold the assignment it claims to hold."""


class RecordBusyError(StoreError):
    """Per-record guard could not be acquired within the wait budget."""


class CorruptRecordError(StoreError):
    """Record exists but cannot be decoded."""
