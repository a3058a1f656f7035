"""Orchestrator context owning every engine component."""

from conductor.application.agent_lifecycle import AgentLifecycleManager
from conductor.application.agent_spawner import AgentSpawner
from conductor.application.sub_agent_factory import SubAgentFactory
from conductor.domain.models import BackgroundTask, Plan, TaskPriority, TaskStatus, ToolDefinition
from conductor.domain.ports.agent_store import AgentStore
from conductor.domain.ports.event_sink import EventSink
from conductor.domain.ports.persona_registry import PersonaRegistry
from conductor.domain.ports.planning_llm import PlanningLLM
from conductor.domain.ports.task_store import TaskStore
from conductor.infrastructure.config import Config
from conductor.infrastructure.event_sinks import LoggingEventSink
from conductor.infrastructure.exceptions import QueueFullError
from conductor.infrastructure.logger import get_logger
from conductor.infrastructure.memory_stores import InMemoryAgentStore, InMemoryTaskStore
from conductor.infrastructure.persona_registry import InMemoryPersonaRegistry
from conductor.services.goal_planner import GoalPlanner
from conductor.services.task_queue_service import TaskQueue

logger = get_logger(__name__)


class Orchestrator:
    """Wires the task queue, agent lifecycle, spawners and the goal planner.

    All engine state hangs off one instance; there is no module-level
    registry. Use ``Orchestrator.build`` for the in-memory defaults.
    """

    def __init__(
        self,
        config: Config,
        queue: TaskQueue,
        lifecycle: AgentLifecycleManager,
        spawner: AgentSpawner,
        factory: SubAgentFactory,
        planner: GoalPlanner,
        events: EventSink,
    ):
        self.config = config
        self.queue = queue
        self.lifecycle = lifecycle
        self.spawner = spawner
        self.factory = factory
        self.planner = planner
        self.events = events
        self._running = False

    @classmethod
    def build(
        cls,
        config: Config | None = None,
        task_store: TaskStore | None = None,
        agent_store: AgentStore | None = None,
        personas: PersonaRegistry | None = None,
        llm: PlanningLLM | None = None,
        tools: list[ToolDefinition] | None = None,
        events: EventSink | None = None,
    ) -> "Orchestrator":
        """Construct every component, defaulting to in-memory collaborators.

        The lifecycle manager's outstanding-work check is wired to the queue,
        so an agent with non-terminal assigned tasks is never auto-terminated.
        """
        config = config or Config()
        events = events or LoggingEventSink()

        queue = TaskQueue(task_store or InMemoryTaskStore(), config.queue, events)
        lifecycle = AgentLifecycleManager(
            agent_store or InMemoryAgentStore(),
            config.lifecycle,
            events,
            has_outstanding_work=queue.has_outstanding_work,
        )
        personas = personas or InMemoryPersonaRegistry()
        spawner = AgentSpawner(lifecycle, personas, config.spawner)
        factory = SubAgentFactory(lifecycle, personas, config.sub_agents, events)
        planner = GoalPlanner(config.planner, llm=llm, tools=tools, events=events)

        return cls(config, queue, lifecycle, spawner, factory, planner, events)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start queue dispatch and idle supervision."""
        if self._running:
            return
        await self.queue.start()
        await self.lifecycle.start()
        self._running = True
        logger.info("orchestrator_started")

    async def stop(self) -> None:
        if not self._running:
            return
        await self.queue.stop()
        await self.lifecycle.stop()
        self._running = False
        logger.info("orchestrator_stopped")

    async def __aenter__(self) -> "Orchestrator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def enqueue_plan(
        self,
        plan: Plan,
        task_name: str,
        priority: TaskPriority = TaskPriority.NORMAL,
        agent_id: str | None = None,
    ) -> list[BackgroundTask]:
        """Queue one task per plan step, in step order.

        Task metadata carries the plan, goal and step ids plus the step's
        dependency ids and tool. Either every step is queued or none is.

        Raises:
            QueueFullError: If the queue cannot hold all of the plan's steps
        """
        queued = await self.queue.store.count_by_status(TaskStatus.QUEUED)
        if queued + len(plan.steps) > self.config.queue.max_queue_size:
            logger.warning(
                "plan_rejected_queue_full",
                plan_id=plan.id,
                steps=len(plan.steps),
                queued=queued,
            )
            raise QueueFullError(self.config.queue.max_queue_size)

        tasks = []
        for step in sorted(plan.steps, key=lambda s: s.order):
            tasks.append(
                await self.queue.enqueue(
                    task_name,
                    description=step.description,
                    priority=priority,
                    max_retries=step.max_retries,
                    assigned_agent_id=agent_id,
                    metadata={
                        "plan_id": plan.id,
                        "goal_id": plan.goal_id,
                        "step_id": step.id,
                        "step_order": step.order,
                        "depends_on": list(step.depends_on),
                        "tool_name": step.tool_name,
                        "tool_arguments": step.tool_arguments,
                    },
                )
            )

        logger.info("plan_enqueued", plan_id=plan.id, task_count=len(tasks))
        return tasks
