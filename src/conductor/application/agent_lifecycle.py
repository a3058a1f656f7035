"""Agent lifecycle supervision.

Owns the agent state machine, hierarchical (cascading) termination, idle
expiry and per-agent metrics. Idle expiry is double layered: a periodic
sweep over the store and one deadline per idle agent in a DeadlineQueue.
Both go through the same expiry path, which is a no-op for an agent that
is already terminated or no longer idle.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from conductor.application.deadline_queue import DeadlineQueue
from conductor.domain.models import (
    AgentMetrics,
    AgentPersona,
    AgentStatus,
    OrchestratedAgent,
    utcnow,
)
from conductor.domain.ports.agent_store import AgentStore
from conductor.domain.ports.event_sink import EventSink, OrchestrationEvent
from conductor.infrastructure.config import LifecycleConfig
from conductor.infrastructure.event_sinks import NullEventSink
from conductor.infrastructure.exceptions import (
    AgentAlreadyExistsError,
    InvalidTransitionError,
)
from conductor.infrastructure.logger import get_logger

logger = get_logger(__name__)

IDLE_TIMEOUT_REASON = "Idle timeout"

OutstandingWorkPredicate = Callable[[str], Awaitable[bool]]

# Allowed edges besides "same status" and the universal -> ERROR / -> TERMINATED
_TRANSITIONS: dict[AgentStatus, set[AgentStatus]] = {
    AgentStatus.IDLE: {AgentStatus.WORKING},
    AgentStatus.WORKING: {AgentStatus.IDLE, AgentStatus.WAITING},
    AgentStatus.WAITING: {AgentStatus.WORKING, AgentStatus.IDLE},
    AgentStatus.ERROR: {AgentStatus.IDLE},
    AgentStatus.TERMINATED: set(),
}


def is_valid_transition(current: AgentStatus, requested: AgentStatus) -> bool:
    """Check an edge of the agent state machine."""
    if current == AgentStatus.TERMINATED:
        return False
    if requested in (current, AgentStatus.ERROR, AgentStatus.TERMINATED):
        return True
    return requested in _TRANSITIONS[current]


async def _no_outstanding_work(agent_id: str) -> bool:
    return False


class AgentLifecycleManager:
    """Creates, transitions, supervises and terminates agents."""

    def __init__(
        self,
        store: AgentStore,
        config: LifecycleConfig | None = None,
        events: EventSink | None = None,
        has_outstanding_work: OutstandingWorkPredicate | None = None,
    ):
        """Initialize lifecycle manager.

        Args:
            store: Agent store
            config: Lifecycle configuration (defaults if omitted)
            events: Sink for emitted signals
            has_outstanding_work: Predicate gating auto-termination when an
                agent returns to idle; defaults to "never has work"
        """
        self.store = store
        self.config = config or LifecycleConfig()
        self.events = events or NullEventSink()
        self.has_outstanding_work = has_outstanding_work or _no_outstanding_work
        self.deadlines = DeadlineQueue(self._on_idle_deadline)
        self._sweep_task: asyncio.Task | None = None

    @property
    def idle_timeout_s(self) -> float:
        return self.config.idle_timeout_ms / 1000

    # ------------------------------------------------------------------
    # Supervision loops
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the idle sweep and the per-agent deadline loop."""
        await self.deadlines.start()
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._idle_sweep_loop())
            logger.info(
                "lifecycle_supervision_started",
                idle_timeout_ms=self.config.idle_timeout_ms,
                check_interval_ms=self.config.idle_check_interval_ms,
            )

    async def stop(self) -> None:
        await self.deadlines.stop()
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None
        logger.info("lifecycle_supervision_stopped")

    async def _idle_sweep_loop(self) -> None:
        """Background task that terminates agents idle past the timeout."""
        try:
            while True:
                await asyncio.sleep(self.config.idle_check_interval_ms / 1000)
                try:
                    await self.check_idle_agents()
                except Exception as e:
                    logger.error("idle_sweep_error", error=str(e))
        except asyncio.CancelledError:
            logger.debug("idle_sweep_cancelled")
            raise

    async def check_idle_agents(self) -> list[str]:
        """Terminate every agent idle longer than idle_timeout_ms.

        Returns:
            Ids of the agents terminated by this sweep
        """
        stale = await self.store.get_idle_agents(self.config.idle_timeout_ms)
        terminated = [agent.id for agent in stale if await self._expire(agent.id)]
        if terminated:
            logger.info("idle_agents_terminated", count=len(terminated), agent_ids=terminated)
        return terminated

    async def _on_idle_deadline(self, agent_id: str) -> None:
        await self._expire(agent_id)

    async def _expire(self, agent_id: str) -> bool:
        """Shared expiry path for the sweep and the deadline queue."""
        agent = await self.store.get(agent_id)
        if agent is None or agent.status != AgentStatus.IDLE:
            return False

        idle_for = (utcnow() - agent.last_active_at).total_seconds()
        if idle_for < self.idle_timeout_s:
            # Activity since the deadline was armed
            self.deadlines.schedule(agent_id, self.idle_timeout_s - idle_for)
            return False

        return await self.terminate(agent_id, IDLE_TIMEOUT_REASON)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_agent(
        self,
        agent_id: str,
        persona: AgentPersona,
        channel_id: str | None = None,
        parent_agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OrchestratedAgent:
        """Register a new idle agent and arm its idle deadline.

        A terminated agent's id may be reused; its record and metrics are
        replaced.

        Raises:
            AgentAlreadyExistsError: If a live agent already uses the id
        """
        existing = await self.store.get(agent_id)
        if existing is not None:
            if not existing.is_terminated:
                raise AgentAlreadyExistsError(agent_id)
            await self.store.delete(agent_id)

        agent = OrchestratedAgent(
            id=agent_id,
            persona_id=persona.id,
            persona=persona.model_copy(deep=True),
            status=AgentStatus.IDLE,
            channel_id=channel_id,
            parent_agent_id=parent_agent_id,
            metadata=metadata or {},
        )
        await self.store.save(agent)
        self.deadlines.schedule(agent_id, self.idle_timeout_s)

        logger.info(
            "agent_spawned",
            agent_id=agent_id,
            persona_id=persona.id,
            parent_agent_id=parent_agent_id,
        )
        self.events.emit(
            OrchestrationEvent.AGENT_SPAWNED,
            {
                "agent_id": agent_id,
                "persona_id": persona.id,
                "persona_type": persona.type.value,
                "parent_agent_id": parent_agent_id,
                "channel_id": channel_id,
            },
        )
        return agent

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def update_status(
        self,
        agent_id: str,
        status: AgentStatus,
        current_task: str | None = None,
    ) -> OrchestratedAgent | None:
        """Apply a status transition.

        Args:
            agent_id: Agent to transition
            status: Requested status
            current_task: Task the agent is working on, cleared when None

        Returns:
            The updated agent, or None if the agent is unknown or terminated

        Raises:
            InvalidTransitionError: If the edge is not allowed
        """
        agent = await self.store.get(agent_id)
        if agent is None or agent.is_terminated:
            return None

        if status == AgentStatus.TERMINATED:
            await self.terminate(agent_id, "Terminated")
            return await self.store.get(agent_id)

        previous = agent.status
        if not is_valid_transition(previous, status):
            raise InvalidTransitionError(agent_id, previous.value, status.value)

        await self.store.update_status(agent_id, status, current_task=current_task)

        if status == AgentStatus.IDLE:
            self.deadlines.schedule(agent_id, self.idle_timeout_s)
        else:
            self.deadlines.cancel(agent_id)

        logger.debug(
            "agent_status_changed",
            agent_id=agent_id,
            previous_status=previous.value,
            status=status.value,
            current_task=current_task,
        )
        self.events.emit(
            OrchestrationEvent.AGENT_STATUS_CHANGED,
            {
                "agent_id": agent_id,
                "previous_status": previous.value,
                "status": status.value,
                "current_task": current_task,
            },
        )

        if (
            status == AgentStatus.IDLE
            and previous == AgentStatus.WORKING
            and self.config.auto_terminate_on_completion
            and not await self.has_outstanding_work(agent_id)
        ):
            await self.terminate(agent_id, "Task completed")

        return await self.store.get(agent_id)

    async def set_working(self, agent_id: str, task: str) -> OrchestratedAgent | None:
        return await self.update_status(agent_id, AgentStatus.WORKING, current_task=task)

    async def set_idle(self, agent_id: str) -> OrchestratedAgent | None:
        return await self.update_status(agent_id, AgentStatus.IDLE)

    async def set_waiting(self, agent_id: str, task: str | None = None) -> OrchestratedAgent | None:
        return await self.update_status(agent_id, AgentStatus.WAITING, current_task=task)

    async def set_error(self, agent_id: str, error: str) -> OrchestratedAgent | None:
        """Move the agent to ERROR, count the error and emit it."""
        agent = await self.update_status(agent_id, AgentStatus.ERROR)
        if agent is None:
            return None

        metrics = await self.store.get_metrics(agent_id)
        if metrics is not None:
            await self.store.update_metrics(agent_id, {"errors": metrics.errors + 1})

        logger.warning("agent_error", agent_id=agent_id, error=error)
        self.events.emit(OrchestrationEvent.AGENT_ERROR, {"agent_id": agent_id, "error": error})
        return agent

    async def touch(self, agent_id: str) -> bool:
        """Record activity; an idle agent's deadline restarts."""
        agent = await self.store.get(agent_id)
        if agent is None or agent.is_terminated:
            return False
        await self.store.touch(agent_id)
        if agent.status == AgentStatus.IDLE:
            self.deadlines.schedule(agent_id, self.idle_timeout_s)
        return True

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    async def terminate(self, agent_id: str, reason: str = "Terminated") -> bool:
        """Terminate an agent and, depth first, all of its sub-agents.

        Returns:
            False if the agent is unknown or already terminated
        """
        agent = await self.store.get(agent_id)
        if agent is None or agent.is_terminated:
            return False

        for sub_agent_id in list(agent.sub_agent_ids):
            if not await self.terminate(sub_agent_id, reason):
                # Record gone or already terminated; drop the stale reference
                await self.store.detach_sub_agent(agent_id, sub_agent_id)

        if agent.parent_agent_id:
            await self.store.detach_sub_agent(agent.parent_agent_id, agent_id)

        self.deadlines.cancel(agent_id)
        await self.store.update_status(agent_id, AgentStatus.TERMINATED, termination_reason=reason)

        logger.info(
            "agent_terminated",
            agent_id=agent_id,
            reason=reason,
            parent_agent_id=agent.parent_agent_id,
        )
        self.events.emit(
            OrchestrationEvent.AGENT_TERMINATED,
            {
                "agent_id": agent_id,
                "reason": reason,
                "parent_agent_id": agent.parent_agent_id,
            },
        )
        return True

    async def force_terminate(self, agent_id: str, reason: str = "Force terminated") -> bool:
        """Delete the agent record outright, without cascade bookkeeping.

        Intended for orphan cleanup. The agent is detached from its parent so
        the slot is freed; its own sub-agents are left untouched.
        """
        agent = await self.store.get(agent_id)
        self.deadlines.cancel(agent_id)
        deleted = await self.store.delete(agent_id)
        if deleted and agent is not None and agent.parent_agent_id:
            await self.store.detach_sub_agent(agent.parent_agent_id, agent_id)
        if deleted:
            logger.warning("agent_force_terminated", agent_id=agent_id, reason=reason)
            self.events.emit(
                OrchestrationEvent.AGENT_TERMINATED,
                {"agent_id": agent_id, "reason": reason, "forced": True},
            )
        return deleted

    async def prune_sub_agents(self, agent_id: str) -> list[str]:
        """Detach sub_agent_ids whose record is gone or terminated.

        Returns:
            The ids of the live sub-agents that remain attached
        """
        agent = await self.store.get(agent_id)
        if agent is None:
            return []

        live = []
        for sub_agent_id in agent.sub_agent_ids:
            child = await self.store.get(sub_agent_id)
            if child is None or child.is_terminated:
                await self.store.detach_sub_agent(agent_id, sub_agent_id)
                logger.debug("stale_sub_agent_detached", agent_id=agent_id, sub_agent_id=sub_agent_id)
            else:
                live.append(sub_agent_id)
        return live

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def record_task_completion(
        self, agent_id: str, success: bool, duration_ms: float
    ) -> AgentMetrics | None:
        """Count a finished task and fold its duration into the running mean."""
        metrics = await self.store.get_metrics(agent_id)
        if metrics is None:
            return None

        total = metrics.total_tasks + 1
        average = (metrics.average_response_time_ms * metrics.total_tasks + duration_ms) / total
        await self.store.update_metrics(
            agent_id,
            {
                "total_tasks": total,
                "successful_tasks": metrics.successful_tasks + (1 if success else 0),
                "failed_tasks": metrics.failed_tasks + (0 if success else 1),
                "average_response_time_ms": average,
            },
        )
        return await self.store.get_metrics(agent_id)

    async def record_message(self, agent_id: str, sent: bool = True) -> AgentMetrics | None:
        """Count a message sent by (or delivered to) the agent."""
        metrics = await self.store.get_metrics(agent_id)
        if metrics is None:
            return None
        if sent:
            await self.store.update_metrics(agent_id, {"messages_sent": metrics.messages_sent + 1})
        else:
            await self.store.update_metrics(
                agent_id, {"messages_received": metrics.messages_received + 1}
            )
        await self.touch(agent_id)
        return await self.store.get_metrics(agent_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_agent(self, agent_id: str) -> OrchestratedAgent | None:
        return await self.store.get(agent_id)

    async def get_all_agents(self) -> list[OrchestratedAgent]:
        return await self.store.get_all()

    async def get_active_agents(self) -> list[OrchestratedAgent]:
        return [a for a in await self.store.get_all() if not a.is_terminated]

    async def get_metrics(self, agent_id: str) -> AgentMetrics | None:
        return await self.store.get_metrics(agent_id)
