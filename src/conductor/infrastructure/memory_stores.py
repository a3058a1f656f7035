"""In-memory task and agent stores.

Each method completes its mutation without awaiting, so on a single event
loop every single-record transition is atomic. Records are copied on the way
in and out so callers never share state with the store.
"""

from datetime import timedelta
from typing import Any

from conductor.domain.models import (
    AgentMetrics,
    AgentStatus,
    BackgroundTask,
    OrchestratedAgent,
    TaskCheckpoint,
    TaskPriority,
    TaskStatus,
    utcnow,
)
from conductor.domain.ports.agent_store import AgentStore
from conductor.domain.ports.task_store import TaskStore


class InMemoryTaskStore(TaskStore):
    """Task store backed by dictionaries."""

    def __init__(self) -> None:
        self._tasks: dict[str, BackgroundTask] = {}
        self._checkpoints: dict[str, TaskCheckpoint] = {}

    async def save(self, task: BackgroundTask) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def get(self, task_id: str) -> BackgroundTask | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def get_all(self) -> list[BackgroundTask]:
        return [t.model_copy(deep=True) for t in self._tasks.values()]

    async def get_by_status(self, status: TaskStatus) -> list[BackgroundTask]:
        return [t.model_copy(deep=True) for t in self._tasks.values() if t.status == status]

    async def get_queued_tasks(self, limit: int | None = None) -> list[BackgroundTask]:
        queued = sorted(
            (t for t in self._tasks.values() if t.status == TaskStatus.QUEUED),
            key=lambda t: (t.priority.rank, t.created_at),
        )
        if limit is not None:
            queued = queued[:limit]
        return [t.model_copy(deep=True) for t in queued]

    async def get_overnight_eligible(self, priority_threshold: TaskPriority) -> list[BackgroundTask]:
        return [
            t
            for t in await self.get_queued_tasks()
            if t.overnight_eligible and t.priority.rank <= priority_threshold.rank
        ]

    async def get_by_agent(self, agent_id: str) -> list[BackgroundTask]:
        return [
            t.model_copy(deep=True)
            for t in self._tasks.values()
            if t.assigned_agent_id == agent_id
        ]

    async def count_by_status(self, status: TaskStatus) -> int:
        return sum(1 for t in self._tasks.values() if t.status == status)

    async def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        error: str | None = None,
        result: Any = None,
    ) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return
        now = utcnow()
        task.status = status
        task.updated_at = now
        if status == TaskStatus.RUNNING:
            task.started_at = now
            task.completed_at = None
        elif status.is_terminal:
            task.completed_at = now
        if error is not None:
            task.error = error
        if result is not None:
            task.result = result

    async def update_progress(self, task_id: str, progress: int) -> None:
        task = self._tasks.get(task_id)
        if task is not None:
            task.progress = max(0, min(100, int(progress)))
            task.updated_at = utcnow()

    async def assign_to_agent(self, task_id: str, agent_id: str | None) -> None:
        task = self._tasks.get(task_id)
        if task is not None:
            task.assigned_agent_id = agent_id
            task.updated_at = utcnow()

    async def increment_retry(self, task_id: str) -> None:
        task = self._tasks.get(task_id)
        if task is not None:
            task.retry_count += 1
            task.updated_at = utcnow()

    async def save_checkpoint(self, checkpoint: TaskCheckpoint) -> None:
        self._checkpoints[checkpoint.task_id] = checkpoint.model_copy(deep=True)

    async def get_checkpoint(self, task_id: str) -> TaskCheckpoint | None:
        checkpoint = self._checkpoints.get(task_id)
        return checkpoint.model_copy(deep=True) if checkpoint else None

    async def delete_checkpoint(self, task_id: str) -> bool:
        return self._checkpoints.pop(task_id, None) is not None

    async def get_timed_out_tasks(self, timeout_ms: float) -> list[BackgroundTask]:
        cutoff = utcnow() - timedelta(milliseconds=timeout_ms)
        return [
            t.model_copy(deep=True)
            for t in self._tasks.values()
            if t.status == TaskStatus.RUNNING and t.started_at is not None and t.started_at < cutoff
        ]

    async def delete(self, task_id: str) -> bool:
        self._checkpoints.pop(task_id, None)
        return self._tasks.pop(task_id, None) is not None


class InMemoryAgentStore(AgentStore):
    """Agent store backed by dictionaries."""

    def __init__(self) -> None:
        self._agents: dict[str, OrchestratedAgent] = {}
        self._metrics: dict[str, AgentMetrics] = {}

    async def save(self, agent: OrchestratedAgent) -> None:
        self._agents[agent.id] = agent.model_copy(deep=True)
        if agent.id not in self._metrics:
            self._metrics[agent.id] = AgentMetrics(agent_id=agent.id)

    async def get(self, agent_id: str) -> OrchestratedAgent | None:
        agent = self._agents.get(agent_id)
        return agent.model_copy(deep=True) if agent else None

    async def get_all(self) -> list[OrchestratedAgent]:
        return [a.model_copy(deep=True) for a in self._agents.values()]

    async def get_by_status(self, status: AgentStatus) -> list[OrchestratedAgent]:
        return [a.model_copy(deep=True) for a in self._agents.values() if a.status == status]

    async def get_sub_agents(self, parent_agent_id: str) -> list[OrchestratedAgent]:
        return [
            a.model_copy(deep=True)
            for a in self._agents.values()
            if a.parent_agent_id == parent_agent_id
        ]

    async def get_idle_agents(self, idle_timeout_ms: float) -> list[OrchestratedAgent]:
        cutoff = utcnow() - timedelta(milliseconds=idle_timeout_ms)
        return [
            a.model_copy(deep=True)
            for a in self._agents.values()
            if a.status == AgentStatus.IDLE and a.last_active_at < cutoff
        ]

    async def count_active(self) -> int:
        return sum(1 for a in self._agents.values() if a.status != AgentStatus.TERMINATED)

    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        current_task: str | None = None,
        termination_reason: str | None = None,
    ) -> None:
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        now = utcnow()
        agent.status = status
        agent.current_task = current_task
        agent.last_active_at = now
        if status == AgentStatus.TERMINATED:
            agent.terminated_at = now
            agent.termination_reason = termination_reason

    async def touch(self, agent_id: str) -> None:
        agent = self._agents.get(agent_id)
        if agent is not None:
            agent.last_active_at = utcnow()

    async def attach_sub_agent(self, parent_agent_id: str, sub_agent_id: str) -> None:
        parent = self._agents.get(parent_agent_id)
        if parent is not None and sub_agent_id not in parent.sub_agent_ids:
            parent.sub_agent_ids.append(sub_agent_id)

    async def detach_sub_agent(self, parent_agent_id: str, sub_agent_id: str) -> None:
        parent = self._agents.get(parent_agent_id)
        if parent is not None and sub_agent_id in parent.sub_agent_ids:
            parent.sub_agent_ids.remove(sub_agent_id)

    async def get_metrics(self, agent_id: str) -> AgentMetrics | None:
        metrics = self._metrics.get(agent_id)
        return metrics.model_copy() if metrics else None

    async def update_metrics(self, agent_id: str, updates: dict[str, Any]) -> None:
        existing = self._metrics.get(agent_id)
        if existing is not None:
            self._metrics[agent_id] = existing.model_copy(update=updates)

    async def delete(self, agent_id: str) -> bool:
        self._metrics.pop(agent_id, None)
        return self._agents.pop(agent_id, None) is not None
