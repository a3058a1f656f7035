"""Application layer for Conductor."""

from conductor.application.agent_lifecycle import AgentLifecycleManager
from conductor.application.deadline_queue import DeadlineQueue
from conductor.application.orchestrator import Orchestrator
from conductor.application.sub_agent_factory import SubAgentFactory

__all__ = [
    "AgentLifecycleManager",
    "DeadlineQueue",
    "Orchestrator",
    "SubAgentFactory",
]
