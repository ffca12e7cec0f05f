"""Agent liveness registry with heartbeat-based staleness recovery."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable
from datetime import datetime, timedelta

from burns.orchestrator.errors import (
    AgentAlreadyExistsError,
    AgentNotFoundError,
    StoreError,
    TaskNotFoundError,
)
from burns.orchestrator.models import (
    Agent,
    AgentStatus,
    AgentType,
    CleanupReport,
    ReleaseOutcome,
    utc_now,
)
from burns.orchestrator.storage import RecordStorage, locked
from burns.orchestrator.tasks import TaskStore

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Registry of executive, planner and worker identities.

    Records are never deleted. An agent ends either `stopped` (clean
    deregistration) or `stale` (heartbeat silence noticed by `cleanup`).
    """

    def __init__(
        self,
        storage: RecordStorage,
        *,
        task_store: TaskStore,
        guard_wait_seconds: float = 10.0,
        now: Callable[[], datetime] = utc_now,
        pid: int | None = None,
    ) -> None:
        self._storage = storage
        self._tasks = task_store
        self.guard_wait_seconds = guard_wait_seconds
        self._now = now
        self._pid = pid if pid is not None else os.getpid()

    def register(
        self,
        agent_type: AgentType,
        agent_id: str,
        area: str | None = None,
    ) -> Agent:
        """Create an active agent record under an explicit id."""

        agent = self._new_agent(agent_type, agent_id, area)
        if not self._storage.create(agent_id, agent.to_record()):
            raise AgentAlreadyExistsError(agent_id)
        logger.info("Registered agent %s (%s)", agent_id, agent_type.value)
        return agent

    def register_next(
        self,
        agent_type: AgentType,
        area: str | None = None,
        *,
        max_tries: int = 100,
    ) -> Agent:
        """Register under the next free `<type>-N` id."""

        for _ in range(max_tries):
            agent_id = self.next_id(agent_type)
            agent = self._new_agent(agent_type, agent_id, area)
            if self._storage.create(agent_id, agent.to_record()):
                logger.info("Registered agent %s (%s)", agent_id, agent_type.value)
                return agent
        raise AgentAlreadyExistsError(f"{agent_type.value}-*")

    def next_id(self, agent_type: AgentType) -> str:
        pattern = re.compile(rf"^{re.escape(agent_type.value)}-(\d+)$")
        highest = 0
        for key in self._storage.keys():
            match = pattern.match(key)
            if match is not None:
                highest = max(highest, int(match.group(1)))
        return f"{agent_type.value}-{highest + 1}"

    def heartbeat(self, agent_id: str) -> bool:
        """Refresh lastHeartbeat. Returns False when the agent is no longer active."""

        def touch(agent: Agent) -> bool:
            if agent.status is not AgentStatus.ACTIVE:
                return False
            agent.last_heartbeat = self._now()
            return True

        return self._mutate(agent_id, touch)

    def set_current_task(self, agent_id: str, task_id: str | None) -> bool:
        def assign(agent: Agent) -> bool:
            if agent.status is not AgentStatus.ACTIVE:
                return False
            agent.current_task = task_id
            agent.last_heartbeat = self._now()
            return True

        return self._mutate(agent_id, assign)

    def mark_completed(self, agent_id: str) -> Agent:
        def bump(agent: Agent) -> bool:
            agent.tasks_completed += 1
            agent.current_task = None
            return True

        self._mutate(agent_id, bump)
        return self.get(agent_id)

    def mark_failed(self, agent_id: str) -> Agent:
        def bump(agent: Agent) -> bool:
            agent.tasks_failed += 1
            agent.current_task = None
            return True

        self._mutate(agent_id, bump)
        return self.get(agent_id)

    def deregister(self, agent_id: str) -> bool:
        """Stop an active agent. A stale agent keeps its stale status."""

        def stop(agent: Agent) -> bool:
            if agent.status is not AgentStatus.ACTIVE:
                return False
            agent.status = AgentStatus.STOPPED
            agent.stopped_at = self._now()
            return True

        stopped = self._mutate(agent_id, stop)
        if stopped:
            logger.info("Deregistered agent %s", agent_id)
        else:
            logger.info("Agent %s was already inactive; left as is", agent_id)
        return stopped

    def get(self, agent_id: str) -> Agent:
        agent = self.find(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def find(self, agent_id: str) -> Agent | None:
        record = self._storage.read(agent_id)
        if record is None:
            return None
        return Agent.from_record(record)

    def list(self, agent_type: AgentType | None = None) -> list[Agent]:
        agents: list[Agent] = []
        for key in self._storage.keys():
            agent = self.find(key)
            if agent is None:
                continue
            if agent_type is None or agent.agent_type is agent_type:
                agents.append(agent)
        return agents

    def count_active(self, agent_type: AgentType) -> int:
        return sum(1 for agent in self.list(agent_type) if agent.status is AgentStatus.ACTIVE)

    def find_stale(self, timeout_seconds: float) -> list[Agent]:
        cutoff = self._now() - timedelta(seconds=timeout_seconds)
        return [
            agent
            for agent in self.list()
            if agent.status is AgentStatus.ACTIVE and agent.last_heartbeat < cutoff
        ]

    def cleanup(self, timeout_seconds: float) -> CleanupReport:
        """Mark silent agents stale and release the tasks they were holding.

        The active -> stale transition is a compare-and-swap under the agent
        guard, and the release only succeeds while the task is still assigned
        to the stale agent, so concurrent sweepers release each orphaned task
        at most once. A stale agent keeps its `currentTask` until the release
        goes through; a release that fails on a busy or unreadable task record
        is retried by the next sweep.
        """

        report = CleanupReport()
        for candidate in self.find_stale(timeout_seconds):
            cutoff = self._now() - timedelta(seconds=timeout_seconds)

            def mark_stale(agent: Agent, cutoff: datetime = cutoff) -> bool:
                if agent.status is not AgentStatus.ACTIVE or agent.last_heartbeat >= cutoff:
                    return False
                agent.status = AgentStatus.STALE
                return True

            if self._mutate(candidate.agent_id, mark_stale):
                report.stale_agents.append(candidate.agent_id)
                logger.warning("Marked agent %s as stale", candidate.agent_id)

        for agent in self.list():
            if agent.status is AgentStatus.STALE and agent.current_task is not None:
                self._release_orphan(agent.agent_id, agent.current_task, report)
        return report

    def _release_orphan(self, agent_id: str, task_id: str, report: CleanupReport) -> None:
        try:
            outcome = self._tasks.release(
                task_id,
                error=f"Agent {agent_id} went stale",
                expected_agent=agent_id,
            )
        except TaskNotFoundError:
            logger.warning("Stale agent %s referenced missing task %s", agent_id, task_id)
        except StoreError as error:
            logger.warning(
                "Could not release task %s from stale agent %s: %s",
                task_id,
                agent_id,
                error,
            )
            return
        else:
            if outcome is not ReleaseOutcome.NOT_HELD:
                report.released_tasks.append(task_id)
                logger.warning(
                    "Released task %s from stale agent %s (%s)",
                    task_id,
                    agent_id,
                    outcome.value,
                )

        def forget(agent: Agent) -> bool:
            if agent.status is not AgentStatus.STALE or agent.current_task != task_id:
                return False
            agent.current_task = None
            return True

        self._mutate(agent_id, forget)

    def _new_agent(self, agent_type: AgentType, agent_id: str, area: str | None) -> Agent:
        now = self._now()
        return Agent(
            agent_id=agent_id,
            agent_type=agent_type,
            status=AgentStatus.ACTIVE,
            area=area or None,
            current_task=None,
            tasks_completed=0,
            tasks_failed=0,
            started_at=now,
            last_heartbeat=now,
            pid=self._pid,
        )

    def _mutate(self, agent_id: str, mutator: Callable[[Agent], bool]) -> bool:
        with locked(self._storage, agent_id, wait_seconds=self.guard_wait_seconds):
            agent = self.get(agent_id)
            if not mutator(agent):
                return False
            self._storage.replace(agent_id, agent.to_record())
            return True
