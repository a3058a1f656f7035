"""Ports for collaborators the engine depends on but does not implement."""

from conductor.domain.ports.agent_store import AgentStore
from conductor.domain.ports.event_sink import EventSink, OrchestrationEvent
from conductor.domain.ports.persona_registry import PersonaRegistry
from conductor.domain.ports.planning_llm import PlanningLLM
from conductor.domain.ports.task_store import TaskStore

__all__ = [
    "AgentStore",
    "EventSink",
    "OrchestrationEvent",
    "PersonaRegistry",
    "PlanningLLM",
    "TaskStore",
]
