"""Exception hierarchy for the orchestration engine."""


class ConductorError(Exception):
    """Base exception for all Conductor errors."""

    pass


class ConfigurationError(ConductorError):
    """Configuration could not be loaded or is inconsistent."""

    pass


class CapacityError(ConductorError):
    """An operation would exceed a configured bound.

    Capacity errors are raised at the call site that would cross the limit.
    Nothing is queued or partially applied when one is raised.

    Attributes:
        limit: The configured bound that was hit
    """

    def __init__(self, message: str, limit: int):
        super().__init__(message)
        self.limit = limit


class QueueFullError(CapacityError):
    """Task queue already holds max_queue_size queued tasks."""

    def __init__(self, limit: int):
        super().__init__(f"Task queue is full ({limit} tasks)", limit)


class SubAgentCapacityError(CapacityError):
    """Parent agent has no free sub-agent slots for the request.

    Attributes:
        parent_agent_id: Parent whose slots are exhausted
        requested: Number of sub-agents requested
        available: Number of free slots at the time of the request
    """

    def __init__(self, parent_agent_id: str, limit: int, requested: int = 1, available: int = 0):
        if requested == 1:
            message = (
                f"Agent '{parent_agent_id}' has reached the maximum of {limit} sub-agents"
            )
        else:
            message = (
                f"Cannot create {requested} sub-agents for '{parent_agent_id}'. "
                f"Only {available} slots available."
            )
        super().__init__(message, limit)
        self.parent_agent_id = parent_agent_id
        self.requested = requested
        self.available = available


class AgentCapacityError(CapacityError):
    """Spawning would exceed max_concurrent_agents active agents.

    Attributes:
        requested: Number of agents asked for
        available: Free slots at the time of the request
    """

    def __init__(self, limit: int, requested: int = 1, available: int = 0):
        if requested == 1:
            message = f"Maximum concurrent agents reached ({limit})"
        else:
            message = f"Cannot spawn {requested} agents. Only {available} slots available."
        super().__init__(message, limit)
        self.requested = requested
        self.available = available


class ReferentialError(ConductorError):
    """An operation referenced an id that does not exist."""

    entity = "Entity"

    def __init__(self, entity_id: str, message: str | None = None):
        super().__init__(message or f"{self.entity} '{entity_id}' not found")
        self.entity_id = entity_id


class TaskNotFoundError(ReferentialError):
    entity = "Task"


class AgentNotFoundError(ReferentialError):
    entity = "Agent"


class PersonaNotFoundError(ReferentialError):
    entity = "Persona"


class GoalNotFoundError(ReferentialError):
    entity = "Goal"


class AgentAlreadyExistsError(ConductorError):
    """A live agent with the same id is already registered."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent '{agent_id}' already exists")
        self.agent_id = agent_id


class AgentNotActiveError(ConductorError):
    """The agent is terminated and cannot take part in the operation."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent '{agent_id}' is terminated")
        self.agent_id = agent_id


class InvalidTransitionError(ConductorError):
    """Raised when a status change is not an edge of the state machine.

    Attributes:
        current: Status the record is in
        requested: Status that was requested
    """

    def __init__(self, entity_id: str, current: str, requested: str):
        super().__init__(f"Invalid transition for '{entity_id}': {current} -> {requested}")
        self.entity_id = entity_id
        self.current = current
        self.requested = requested


class PlanValidationError(ConductorError):
    """A plan failed validation with at least one error-level issue.

    Attributes:
        issues: The error-level issues
    """

    def __init__(self, plan_id: str, issues: list):
        messages = "; ".join(issue.message for issue in issues)
        super().__init__(f"Plan '{plan_id}' failed validation: {messages}")
        self.plan_id = plan_id
        self.issues = issues
