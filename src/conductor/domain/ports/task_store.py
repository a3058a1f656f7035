"""Abstract durable store for background tasks and their checkpoints."""

from abc import ABC, abstractmethod
from typing import Any

from conductor.domain.models import BackgroundTask, TaskCheckpoint, TaskPriority, TaskStatus


class TaskStore(ABC):
    """Durable state for background tasks.

    Implementations must apply each single-task mutation atomically: a status
    change observed by one caller is never interleaved with another caller's
    change to the same task. ``get_timed_out_tasks`` must only return tasks
    that are RUNNING at the moment of the query.

    Reads return copies; mutating a returned task has no effect on the store.
    """

    @abstractmethod
    async def save(self, task: BackgroundTask) -> None:
        """Insert or replace a task."""

    @abstractmethod
    async def get(self, task_id: str) -> BackgroundTask | None:
        """Get a task by id, None if unknown."""

    @abstractmethod
    async def get_all(self) -> list[BackgroundTask]:
        pass

    @abstractmethod
    async def get_by_status(self, status: TaskStatus) -> list[BackgroundTask]:
        pass

    @abstractmethod
    async def get_queued_tasks(self, limit: int | None = None) -> list[BackgroundTask]:
        """Queued tasks ordered by priority (critical first), then creation time."""

    @abstractmethod
    async def get_overnight_eligible(self, priority_threshold: TaskPriority) -> list[BackgroundTask]:
        """Queued overnight-eligible tasks at or above the threshold, in queue order."""

    @abstractmethod
    async def get_by_agent(self, agent_id: str) -> list[BackgroundTask]:
        """Tasks assigned to an agent."""

    @abstractmethod
    async def count_by_status(self, status: TaskStatus) -> int:
        pass

    @abstractmethod
    async def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        error: str | None = None,
        result: Any = None,
    ) -> None:
        """Set the status of a task.

        RUNNING stamps ``started_at``; terminal statuses stamp ``completed_at``.
        ``error`` and ``result`` are stored when given.
        """

    @abstractmethod
    async def update_progress(self, task_id: str, progress: int) -> None:
        pass

    @abstractmethod
    async def assign_to_agent(self, task_id: str, agent_id: str | None) -> None:
        pass

    @abstractmethod
    async def increment_retry(self, task_id: str) -> None:
        pass

    @abstractmethod
    async def save_checkpoint(self, checkpoint: TaskCheckpoint) -> None:
        """Store a checkpoint, replacing the task's previous one."""

    @abstractmethod
    async def get_checkpoint(self, task_id: str) -> TaskCheckpoint | None:
        pass

    @abstractmethod
    async def delete_checkpoint(self, task_id: str) -> bool:
        pass

    @abstractmethod
    async def get_timed_out_tasks(self, timeout_ms: float) -> list[BackgroundTask]:
        """RUNNING tasks whose ``started_at`` is older than ``timeout_ms``."""

    @abstractmethod
    async def delete(self, task_id: str) -> bool:
        pass
