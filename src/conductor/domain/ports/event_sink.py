"""Abstract publish contract for orchestration signals."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class OrchestrationEvent(str, Enum):
    """Names of the signals emitted by the engine."""

    TASK_QUEUED = "task:queued"
    TASK_STARTED = "task:started"
    TASK_PROGRESS = "task:progress"
    TASK_CHECKPOINTED = "task:checkpointed"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"
    TASK_RETRIED = "task:retried"
    TASK_CANCELLED = "task:cancelled"
    TASK_PAUSED = "task:paused"
    TASK_RESUMED = "task:resumed"
    TASK_TIMEOUT = "task:timeout"

    AGENT_SPAWNED = "agent:spawned"
    AGENT_STATUS_CHANGED = "agent:status-changed"
    AGENT_TERMINATED = "agent:terminated"
    AGENT_ERROR = "agent:error"

    SUB_AGENT_CREATED = "sub-agent:created"
    SUB_AGENT_COMPLETED = "sub-agent:completed"
    SUB_AGENT_FAILED = "sub-agent:failed"

    GOAL_CREATED = "goal:created"
    GOAL_UPDATED = "goal:updated"
    PLAN_CREATED = "plan:created"
    PLAN_REPLANNED = "plan:replanned"


class EventSink(ABC):
    """Receiver of engine signals.

    ``emit`` is synchronous and must not raise; consumers that do slow work
    should hand the payload off to their own machinery.
    """

    @abstractmethod
    def emit(self, event: OrchestrationEvent, payload: dict[str, Any]) -> None:
        pass
