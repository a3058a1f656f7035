"""Abstract durable store for orchestrated agents and their metrics."""

from abc import ABC, abstractmethod
from typing import Any

from conductor.domain.models import AgentMetrics, AgentStatus, OrchestratedAgent


class AgentStore(ABC):
    """Durable state for agents.

    ``save`` initialises metrics for an agent the first time it is stored.
    ``attach_sub_agent``/``detach_sub_agent`` update a parent's ordered
    ``sub_agent_ids`` atomically so concurrent spawns and terminations never
    lose an entry. Reads return copies.
    """

    @abstractmethod
    async def save(self, agent: OrchestratedAgent) -> None:
        pass

    @abstractmethod
    async def get(self, agent_id: str) -> OrchestratedAgent | None:
        pass

    @abstractmethod
    async def get_all(self) -> list[OrchestratedAgent]:
        pass

    @abstractmethod
    async def get_by_status(self, status: AgentStatus) -> list[OrchestratedAgent]:
        pass

    @abstractmethod
    async def get_sub_agents(self, parent_agent_id: str) -> list[OrchestratedAgent]:
        """Agents whose ``parent_agent_id`` is the given parent."""

    @abstractmethod
    async def get_idle_agents(self, idle_timeout_ms: float) -> list[OrchestratedAgent]:
        """IDLE agents whose ``last_active_at`` is older than ``idle_timeout_ms``."""

    @abstractmethod
    async def count_active(self) -> int:
        """Number of agents that are not terminated."""

    @abstractmethod
    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        current_task: str | None = None,
        termination_reason: str | None = None,
    ) -> None:
        """Set status, refresh ``last_active_at``.

        TERMINATED stamps ``terminated_at`` and stores ``termination_reason``.
        """

    @abstractmethod
    async def touch(self, agent_id: str) -> None:
        """Refresh ``last_active_at``."""

    @abstractmethod
    async def attach_sub_agent(self, parent_agent_id: str, sub_agent_id: str) -> None:
        pass

    @abstractmethod
    async def detach_sub_agent(self, parent_agent_id: str, sub_agent_id: str) -> None:
        pass

    @abstractmethod
    async def get_metrics(self, agent_id: str) -> AgentMetrics | None:
        pass

    @abstractmethod
    async def update_metrics(self, agent_id: str, updates: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def delete(self, agent_id: str) -> bool:
        """Remove the agent record and its metrics."""
