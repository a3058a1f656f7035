"""Top-level agent spawning under a global concurrency cap."""

import asyncio
from uuid import uuid4

from conductor.application.agent_lifecycle import AgentLifecycleManager
from conductor.domain.models import AgentPersona, OrchestratedAgent, SpawnRequest
from conductor.domain.ports.persona_registry import PersonaRegistry
from conductor.infrastructure.config import SpawnerConfig
from conductor.infrastructure.exceptions import (
    AgentAlreadyExistsError,
    AgentCapacityError,
    PersonaNotFoundError,
)
from conductor.infrastructure.logger import get_logger

logger = get_logger(__name__)


class AgentSpawner:
    """Spawns top-level agents through the lifecycle manager.

    At most ``max_concurrent_agents`` agents may be active at once. The cap
    counts every non-terminated agent in the store, sub-agents included.
    """

    def __init__(
        self,
        lifecycle: AgentLifecycleManager,
        personas: PersonaRegistry,
        config: SpawnerConfig | None = None,
    ):
        self.lifecycle = lifecycle
        self.personas = personas
        self.config = config or SpawnerConfig()
        self._lock = asyncio.Lock()

    @property
    def max_concurrent_agents(self) -> int:
        return self.config.max_concurrent_agents

    async def spawn(self, request: SpawnRequest | None = None) -> OrchestratedAgent:
        """Spawn one agent, optionally putting it straight to work.

        Raises:
            AgentCapacityError: If max_concurrent_agents agents are active
            PersonaNotFoundError: If the persona cannot be resolved
            AgentAlreadyExistsError: If a live agent already uses request.id
        """
        request = request or SpawnRequest()
        async with self._lock:
            active = await self.lifecycle.store.count_active()
            if active >= self.max_concurrent_agents:
                logger.warning(
                    "agent_spawn_limit_reached",
                    active=active,
                    limit=self.max_concurrent_agents,
                )
                raise AgentCapacityError(self.max_concurrent_agents)

            persona = self._resolve_persona(request)
            return await self._spawn(request, persona)

    async def spawn_multiple(self, requests: list[SpawnRequest]) -> list[OrchestratedAgent]:
        """Spawn a batch of agents, all or nothing.

        Capacity, personas and explicit ids are checked for the whole batch
        before the first agent is created.

        Raises:
            AgentCapacityError: If the batch exceeds the free slots
            PersonaNotFoundError: If any persona cannot be resolved
            AgentAlreadyExistsError: If an explicit id is taken or repeated
        """
        async with self._lock:
            available = await self._available_slots()
            if len(requests) > available:
                logger.warning(
                    "agent_spawn_batch_rejected",
                    requested=len(requests),
                    available=available,
                )
                raise AgentCapacityError(
                    self.max_concurrent_agents, requested=len(requests), available=available
                )

            resolved = [(request, self._resolve_persona(request)) for request in requests]

            seen: set[str] = set()
            for request in requests:
                if request.id is None:
                    continue
                existing = await self.lifecycle.get_agent(request.id)
                if request.id in seen or (existing is not None and not existing.is_terminated):
                    raise AgentAlreadyExistsError(request.id)
                seen.add(request.id)

            return [await self._spawn(request, persona) for request, persona in resolved]

    async def terminate_all_agents(self, reason: str = "System shutdown") -> int:
        """Terminate every active agent; returns how many were terminated.

        Sub-agents fall with their parents, so the count covers only agents
        terminated directly by this call.
        """
        count = 0
        for agent in await self.lifecycle.get_active_agents():
            if await self.lifecycle.terminate(agent.id, reason):
                count += 1
        logger.info("all_agents_terminated", count=count, reason=reason)
        return count

    async def get_active_count(self) -> int:
        return await self.lifecycle.store.count_active()

    async def get_available_slots(self) -> int:
        return await self._available_slots()

    async def can_spawn(self) -> bool:
        return await self._available_slots() > 0

    async def _available_slots(self) -> int:
        return max(0, self.max_concurrent_agents - await self.lifecycle.store.count_active())

    def _resolve_persona(self, request: SpawnRequest) -> AgentPersona:
        if request.persona_id:
            persona = self.personas.get(request.persona_id)
            missing = request.persona_id
        else:
            persona_type = request.persona_type or self.config.default_persona_type
            persona = self.personas.get_by_type(persona_type)
            missing = persona_type.value

        if persona is None:
            raise PersonaNotFoundError(missing)
        return persona

    async def _spawn(self, request: SpawnRequest, persona: AgentPersona) -> OrchestratedAgent:
        agent_id = request.id or f"agent-{uuid4().hex[:8]}"
        agent = await self.lifecycle.create_agent(
            agent_id,
            persona,
            channel_id=request.channel_id,
            metadata=request.metadata,
        )
        if request.initial_task:
            working = await self.lifecycle.set_working(agent_id, request.initial_task)
            if working is not None:
                agent = working
        return agent
