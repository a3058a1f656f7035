"""Domain models for Conductor."""

from conductor.domain.models import (
    AgentMetrics,
    AgentPersona,
    AgentStatus,
    BackgroundTask,
    Goal,
    GoalPriority,
    GoalStatus,
    ModelSettings,
    OrchestratedAgent,
    PersonaOverride,
    PersonaType,
    Plan,
    PlanStatus,
    PlanStep,
    StepStatus,
    SubAgentRequest,
    SubAgentResult,
    SubAgentTask,
    TaskCheckpoint,
    TaskPriority,
    TaskResult,
    TaskStatus,
    ToolDefinition,
)
from conductor.domain.personas import apply_persona_override

__all__ = [
    "AgentMetrics",
    "AgentPersona",
    "AgentStatus",
    "BackgroundTask",
    "Goal",
    "GoalPriority",
    "GoalStatus",
    "ModelSettings",
    "OrchestratedAgent",
    "PersonaOverride",
    "PersonaType",
    "Plan",
    "PlanStatus",
    "PlanStep",
    "StepStatus",
    "SubAgentRequest",
    "SubAgentResult",
    "SubAgentTask",
    "TaskCheckpoint",
    "TaskPriority",
    "TaskResult",
    "TaskStatus",
    "ToolDefinition",
    "apply_persona_override",
]
