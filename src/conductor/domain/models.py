"""Core domain models for Conductor."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class PersonaType(str, Enum):
    DEVELOPER = "developer"
    MARKETING = "marketing"
    RESEARCH = "research"
    BUSINESS = "business"
    CUSTOM = "custom"


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------


class TaskStatus(str, Enum):
    """Background task lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"  # Resumable back to QUEUED
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class TaskPriority(str, Enum):
    """Dispatch priority, CRITICAL first."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort key, lower dispatches first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.NORMAL: 2,
    TaskPriority.LOW: 3,
}


class BackgroundTask(BaseModel):
    """A unit of background work in the task queue.

    Attributes:
        name: Handler key; tasks whose name has no registered handler stay queued
        progress: Percentage reported by the handler (0-100)
        assigned_agent_id: Agent nominally executing the task (optional)
        error: Last error text, retained once the task is permanently failed
    """

    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    priority: TaskPriority = TaskPriority.NORMAL
    status: TaskStatus = TaskStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    assigned_agent_id: str | None = None
    required_persona_type: PersonaType | None = None
    overnight_eligible: bool = False
    estimated_duration_minutes: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class TaskCheckpoint(BaseModel):
    """Resumable snapshot of a task's progress."""

    task_id: str
    step: int = Field(ge=0)
    total_steps: int = Field(ge=0)
    state: dict[str, Any] = Field(default_factory=dict)
    saved_at: datetime = Field(default_factory=utcnow)


class TaskResult(BaseModel):
    """Outcome returned by a task handler."""

    success: bool
    result: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, result: Any = None) -> "TaskResult":
        return cls(success=True, result=result)

    @classmethod
    def failed(cls, error: str) -> "TaskResult":
        return cls(success=False, error=error)


# ---------------------------------------------------------------------------
# Personas and agents
# ---------------------------------------------------------------------------


class ModelTier(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    POWERFUL = "powerful"


class ModelSettings(BaseModel):
    """Language model settings carried by a persona."""

    tier: ModelTier = ModelTier.BALANCED
    model_id: str = "claude-3-sonnet"
    max_tokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    model_config = ConfigDict(protected_namespaces=())


class AgentPersona(BaseModel):
    """Template describing an agent's capabilities, model settings and constraints."""

    id: str
    name: str
    type: PersonaType
    description: str = ""
    system_prompt: str = ""
    llm_settings: ModelSettings = Field(default_factory=ModelSettings)
    capabilities: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    tone: str | None = None


class PersonaOverride(BaseModel):
    """Caller-supplied changes applied on top of a resolved persona.

    Every field is optional. ``id`` is accepted but never applied, see
    ``conductor.domain.personas.apply_persona_override``.
    """

    id: str | None = None
    name: str | None = None
    type: PersonaType | None = None
    description: str | None = None
    system_prompt: str | None = None
    llm_settings: dict[str, Any] | None = None
    capabilities: list[str] | None = None
    constraints: list[str] | None = None
    tone: str | None = None


class AgentStatus(str, Enum):
    """Agent lifecycle states."""

    IDLE = "idle"
    WORKING = "working"
    WAITING = "waiting"
    ERROR = "error"
    TERMINATED = "terminated"


class OrchestratedAgent(BaseModel):
    """Lifecycle-managed logical worker.

    Agents are bookkeeping records, not execution isolates.
    """

    id: str
    persona_id: str
    persona: AgentPersona
    status: AgentStatus = AgentStatus.IDLE
    current_task: str | None = None
    channel_id: str | None = None
    parent_agent_id: str | None = None
    sub_agent_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)
    terminated_at: datetime | None = None
    termination_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminated(self) -> bool:
        return self.status == AgentStatus.TERMINATED


class AgentMetrics(BaseModel):
    """Per-agent counters; average_response_time_ms is a running weighted mean."""

    agent_id: str
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    messages_sent: int = 0
    messages_received: int = 0
    average_response_time_ms: float = 0.0
    errors: int = 0


# ---------------------------------------------------------------------------
# Goals and plans
# ---------------------------------------------------------------------------


class GoalPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class GoalStatus(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Goal(BaseModel):
    """High-level desired outcome submitted for decomposition."""

    id: str = Field(default_factory=new_id)
    description: str
    constraints: list[str] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    priority: GoalPriority = GoalPriority.NORMAL
    deadline: datetime | None = None
    status: GoalStatus = GoalStatus.PENDING
    parent_goal_id: str | None = None  # Set only by re-planning
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class StepStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    SKIPPED = "skipped"


class PlanStep(BaseModel):
    """Single step of a plan; depends_on only references earlier steps."""

    id: str = Field(default_factory=new_id)
    order: int = Field(ge=0)
    description: str
    tool_name: str | None = None
    tool_arguments: dict[str, Any] | None = None
    depends_on: list[str] = Field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)


class PlanStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class Plan(BaseModel):
    """Ordered, dependency-annotated steps for a goal.

    Plans are regenerated wholesale on re-plan and never edited in place.
    """

    id: str = Field(default_factory=new_id)
    goal_id: str
    steps: list[PlanStep] = Field(default_factory=list)
    status: PlanStatus = PlanStatus.PENDING
    current_step_index: int = 0
    estimated_duration_ms: int = 0
    complexity: int = Field(default=1, ge=1, le=10)
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ToolDefinition(BaseModel):
    """A tool the planner may assign to a step."""

    name: str
    description: str = ""
    parameters: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Spawning
# ---------------------------------------------------------------------------


class SpawnRequest(BaseModel):
    """Request to spawn a top-level agent."""

    id: str | None = None
    persona_id: str | None = None
    persona_type: PersonaType | None = None
    channel_id: str | None = None
    initial_task: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Sub-agents
# ---------------------------------------------------------------------------


class SubAgentTask(BaseModel):
    """One child in a batch sub-agent request."""

    task: str
    persona_id: str | None = None
    persona_type: PersonaType | None = None
    persona_override: PersonaOverride | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubAgentRequest(SubAgentTask):
    """Request to spawn a child agent under a parent."""

    parent_agent_id: str
    channel_id: str | None = None


class SubAgentResult(BaseModel):
    """Outcome reported when a sub-agent finishes its task."""

    success: bool
    output: Any = None
    error: str | None = None
    duration_ms: float = Field(default=0.0, ge=0)
