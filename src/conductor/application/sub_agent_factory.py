"""Bounded creation of child agents under a parent."""

import asyncio
from uuid import uuid4

from conductor.application.agent_lifecycle import AgentLifecycleManager
from conductor.domain.models import (
    AgentPersona,
    OrchestratedAgent,
    SubAgentRequest,
    SubAgentResult,
    SubAgentTask,
)
from conductor.domain.personas import apply_persona_override
from conductor.domain.ports.event_sink import EventSink, OrchestrationEvent
from conductor.domain.ports.persona_registry import PersonaRegistry
from conductor.infrastructure.config import SubAgentConfig
from conductor.infrastructure.event_sinks import NullEventSink
from conductor.infrastructure.exceptions import (
    AgentNotActiveError,
    AgentNotFoundError,
    PersonaNotFoundError,
    SubAgentCapacityError,
)
from conductor.infrastructure.logger import get_logger

logger = get_logger(__name__)


class SubAgentFactory:
    """Spawns sub-agents through the lifecycle manager.

    A parent holds at most ``max_sub_agents_per_parent`` live children.
    Capacity checks and creation run under one lock so concurrent requests
    for the same parent cannot overshoot the cap.
    """

    def __init__(
        self,
        lifecycle: AgentLifecycleManager,
        personas: PersonaRegistry,
        config: SubAgentConfig | None = None,
        events: EventSink | None = None,
    ):
        """Initialize sub-agent factory.

        Args:
            lifecycle: Lifecycle manager that owns the created agents
            personas: Registry used to resolve child personas
            config: Factory configuration (defaults if omitted)
            events: Sink for emitted signals
        """
        self.lifecycle = lifecycle
        self.personas = personas
        self.config = config or SubAgentConfig()
        self.events = events or NullEventSink()
        self._lock = asyncio.Lock()

    @property
    def max_per_parent(self) -> int:
        return self.config.max_sub_agents_per_parent

    async def create_sub_agent(self, request: SubAgentRequest) -> OrchestratedAgent:
        """Create one child agent working on ``request.task``.

        Raises:
            AgentNotFoundError: If the parent does not exist
            AgentNotActiveError: If the parent is terminated
            SubAgentCapacityError: If the parent has no free slot
            PersonaNotFoundError: If the persona cannot be resolved
        """
        async with self._lock:
            parent = await self._get_live_parent(request.parent_agent_id)

            if len(parent.sub_agent_ids) >= self.max_per_parent:
                logger.warning(
                    "sub_agent_capacity_reached",
                    parent_agent_id=parent.id,
                    limit=self.max_per_parent,
                )
                raise SubAgentCapacityError(parent.id, self.max_per_parent)

            persona = self._resolve_persona(request)
            return await self._spawn(parent, request, persona, request.channel_id)

    async def create_sub_agents(
        self, parent_agent_id: str, tasks: list[SubAgentTask]
    ) -> list[OrchestratedAgent]:
        """Create a batch of children, all or nothing.

        The whole batch is checked against the parent's remaining capacity
        and every persona is resolved before the first child is created.

        Raises:
            AgentNotFoundError: If the parent does not exist
            AgentNotActiveError: If the parent is terminated
            SubAgentCapacityError: If the batch exceeds the free slots
            PersonaNotFoundError: If any persona cannot be resolved
        """
        async with self._lock:
            parent = await self._get_live_parent(parent_agent_id)

            available = max(0, self.max_per_parent - len(parent.sub_agent_ids))
            if len(tasks) > available:
                logger.warning(
                    "sub_agent_batch_rejected",
                    parent_agent_id=parent.id,
                    requested=len(tasks),
                    available=available,
                )
                raise SubAgentCapacityError(
                    parent.id, self.max_per_parent, requested=len(tasks), available=available
                )

            resolved = [(task, self._resolve_persona(task)) for task in tasks]

            children = []
            for task, persona in resolved:
                children.append(await self._spawn(parent, task, persona, parent.channel_id))
            return children

    async def complete_sub_agent(self, sub_agent_id: str, result: SubAgentResult) -> bool:
        """Feed a sub-agent's task outcome back into lifecycle bookkeeping.

        Returns:
            False if the sub-agent is unknown or already terminated
        """
        agent = await self.lifecycle.get_agent(sub_agent_id)
        if agent is None or agent.is_terminated:
            return False

        await self.lifecycle.record_task_completion(sub_agent_id, result.success, result.duration_ms)

        payload = {
            "agent_id": sub_agent_id,
            "parent_agent_id": agent.parent_agent_id,
            "duration_ms": result.duration_ms,
        }
        if result.success:
            logger.info("sub_agent_completed", agent_id=sub_agent_id, duration_ms=result.duration_ms)
            self.events.emit(OrchestrationEvent.SUB_AGENT_COMPLETED, {**payload, "output": result.output})
        else:
            logger.warning("sub_agent_failed", agent_id=sub_agent_id, error=result.error)
            self.events.emit(OrchestrationEvent.SUB_AGENT_FAILED, {**payload, "error": result.error})

        if self.config.auto_terminate:
            reason = "Task completed" if result.success else "Task failed"
            await self.lifecycle.terminate(sub_agent_id, reason)
        else:
            await self.lifecycle.set_idle(sub_agent_id)
        return True

    async def terminate_all_sub_agents(self, parent_agent_id: str, reason: str = "Parent cleanup") -> int:
        """Terminate every live child of a parent; returns how many were terminated."""
        count = 0
        for child in await self.get_sub_agents(parent_agent_id):
            if await self.lifecycle.terminate(child.id, reason):
                count += 1
        if count:
            logger.info("sub_agents_terminated", parent_agent_id=parent_agent_id, count=count)
        return count

    async def get_sub_agents(self, parent_agent_id: str) -> list[OrchestratedAgent]:
        """Live children of a parent."""
        children = await self.lifecycle.store.get_sub_agents(parent_agent_id)
        return [c for c in children if not c.is_terminated]

    async def remaining_capacity(self, parent_agent_id: str) -> int:
        parent = await self.lifecycle.get_agent(parent_agent_id)
        if parent is None or parent.is_terminated:
            return 0
        live = await self.lifecycle.prune_sub_agents(parent_agent_id)
        return max(0, self.max_per_parent - len(live))

    async def can_create_sub_agent(self, parent_agent_id: str) -> bool:
        return await self.remaining_capacity(parent_agent_id) > 0

    async def _get_live_parent(self, parent_agent_id: str) -> OrchestratedAgent:
        parent = await self.lifecycle.get_agent(parent_agent_id)
        if parent is None:
            raise AgentNotFoundError(parent_agent_id)
        if parent.is_terminated:
            raise AgentNotActiveError(parent_agent_id)
        # Slots held by deleted or terminated children are released here
        parent.sub_agent_ids = await self.lifecycle.prune_sub_agents(parent.id)
        return parent

    def _resolve_persona(self, task: SubAgentTask) -> AgentPersona:
        """Resolve by explicit id, then by type, then the default type; apply the override."""
        if task.persona_id:
            persona = self.personas.get(task.persona_id)
            missing = task.persona_id
        else:
            persona_type = task.persona_type or self.config.default_persona_type
            persona = self.personas.get_by_type(persona_type)
            missing = persona_type.value

        if persona is None:
            raise PersonaNotFoundError(missing)
        return apply_persona_override(persona, task.persona_override)

    async def _spawn(
        self,
        parent: OrchestratedAgent,
        task: SubAgentTask,
        persona: AgentPersona,
        channel_id: str | None,
    ) -> OrchestratedAgent:
        child_id = f"{parent.id}-sub-{uuid4().hex[:8]}"

        await self.lifecycle.create_agent(
            child_id,
            persona,
            channel_id=channel_id or parent.channel_id,
            parent_agent_id=parent.id,
            metadata={**task.metadata, "task": task.task},
        )
        await self.lifecycle.store.attach_sub_agent(parent.id, child_id)
        parent.sub_agent_ids.append(child_id)

        child = await self.lifecycle.set_working(child_id, task.task)

        logger.info(
            "sub_agent_created",
            agent_id=child_id,
            parent_agent_id=parent.id,
            persona_id=persona.id,
        )
        self.events.emit(
            OrchestrationEvent.SUB_AGENT_CREATED,
            {
                "agent_id": child_id,
                "parent_agent_id": parent.id,
                "persona_id": persona.id,
                "task": task.task,
            },
        )
        # set_working only returns None for a terminated child
        return child or await self.lifecycle.get_agent(child_id)
