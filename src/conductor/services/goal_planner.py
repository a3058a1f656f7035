"""Goal to plan decomposition.

With LLM planning enabled the planner prompts the model, parses its answer
with ``parse_plan_response`` and validates the materialized plan. Any
failure on that path (model error, unparseable answer, invalid plan) falls
back to ``generate_simple_plan``, a one-step plan built from the goal text.
Planning itself never raises.
"""

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from conductor.domain.models import (
    Goal,
    GoalPriority,
    GoalStatus,
    Plan,
    PlanStep,
    StepStatus,
    ToolDefinition,
    utcnow,
)
from conductor.domain.ports.event_sink import EventSink, OrchestrationEvent
from conductor.domain.ports.planning_llm import PlanningLLM
from conductor.infrastructure.config import PlannerConfig
from conductor.infrastructure.event_sinks import NullEventSink
from conductor.infrastructure.exceptions import InvalidTransitionError, PlanValidationError
from conductor.infrastructure.logger import get_logger
from conductor.services.plan_parser import ParsedPlan, RawPlanStep, parse_plan_response
from conductor.services.plan_validator import PlanValidator

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_MIN_TOKEN_LENGTH = 3

_TERMINAL_GOAL_STATUSES = {GoalStatus.COMPLETED, GoalStatus.FAILED, GoalStatus.CANCELLED}

PLAN_SOURCE_LLM = "llm"
PLAN_SOURCE_SIMPLE = "simple"


class ReplanFeedback(BaseModel):
    """Why the previous plan is being replaced."""

    failure_reason: str
    additional_context: str | None = None


class ReplanResult(BaseModel):
    new_goal: Goal
    new_plan: Plan


def tokenize(text: str) -> set[str]:
    """Lowercase word tokens of at least three characters."""
    return {t for t in _TOKEN_RE.findall(text.lower()) if len(t) >= _MIN_TOKEN_LENGTH}


class GoalPlanner:
    """Decomposes goals into dependency-annotated plans."""

    def __init__(
        self,
        config: PlannerConfig | None = None,
        llm: PlanningLLM | None = None,
        tools: list[ToolDefinition] | None = None,
        events: EventSink | None = None,
    ):
        """Initialize goal planner.

        Args:
            config: Planner configuration (defaults if omitted)
            llm: Model used for LLM planning; without one every plan is simple
            tools: Tools the planner may assign to steps
            events: Sink for emitted signals
        """
        self.config = config or PlannerConfig()
        self.llm = llm
        self.tools: list[ToolDefinition] = list(tools or [])
        self.events = events or NullEventSink()
        self.validator = PlanValidator(
            tools=self.tools,
            max_steps=self.config.max_steps,
            max_dependency_depth=self.config.max_dependency_depth,
            min_step_description_length=self.config.min_step_description_length,
        )
        self._goals: dict[str, Goal] = {}
        self._plans: dict[str, Plan] = {}

    def set_tools(self, tools: list[ToolDefinition]) -> None:
        self.tools = list(tools)
        self.validator.set_available_tools(self.tools)

    def register_tool(self, tool: ToolDefinition) -> None:
        self.set_tools([t for t in self.tools if t.name != tool.name] + [tool])

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    async def create_goal(
        self,
        description: str,
        constraints: list[str] | None = None,
        success_criteria: list[str] | None = None,
        priority: GoalPriority = GoalPriority.NORMAL,
        deadline: datetime | None = None,
        parent_goal_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Goal:
        """Register a pending goal."""
        goal = Goal(
            description=description,
            constraints=constraints or [],
            success_criteria=success_criteria or [],
            priority=priority,
            deadline=deadline,
            parent_goal_id=parent_goal_id,
            metadata=metadata or {},
        )
        self._goals[goal.id] = goal.model_copy(deep=True)

        logger.info("goal_created", goal_id=goal.id, parent_goal_id=parent_goal_id)
        self.events.emit(
            OrchestrationEvent.GOAL_CREATED,
            {"goal_id": goal.id, "description": goal.description, "parent_goal_id": parent_goal_id},
        )
        return goal

    async def get_goal(self, goal_id: str) -> Goal | None:
        goal = self._goals.get(goal_id)
        return goal.model_copy(deep=True) if goal else None

    async def update_goal_status(self, goal_id: str, status: GoalStatus) -> Goal | None:
        """Move a goal to a new status.

        Returns:
            The updated goal, or None if the goal is unknown

        Raises:
            InvalidTransitionError: If the goal is already in a terminal status
        """
        goal = self._goals.get(goal_id)
        if goal is None:
            return None
        if goal.status in _TERMINAL_GOAL_STATUSES and status != goal.status:
            raise InvalidTransitionError(goal_id, goal.status.value, status.value)

        previous = goal.status
        goal.status = status
        goal.updated_at = utcnow()

        logger.debug("goal_status_changed", goal_id=goal_id, previous_status=previous.value, status=status.value)
        self.events.emit(
            OrchestrationEvent.GOAL_UPDATED,
            {"goal_id": goal_id, "previous_status": previous.value, "status": status.value},
        )
        return goal.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def get_plan(self, plan_id: str) -> Plan | None:
        plan = self._plans.get(plan_id)
        return plan.model_copy(deep=True) if plan else None

    async def get_plans_for_goal(self, goal_id: str) -> list[Plan]:
        plans = [p for p in self._plans.values() if p.goal_id == goal_id]
        return [p.model_copy(deep=True) for p in sorted(plans, key=lambda p: p.created_at)]

    async def generate_plan(self, goal: Goal) -> Plan:
        """Generate a plan for a goal; never raises.

        A PENDING goal moves to PLANNING in the planner's own record only;
        the instance passed in is not mutated, so read the current status
        back with ``get_goal``. Driving the goal further is up to the caller.
        """
        return await self._generate(goal, version=1)

    async def _generate(self, goal: Goal, version: int) -> Plan:
        if goal.id not in self._goals:
            self._goals[goal.id] = goal.model_copy(deep=True)
        if self._goals[goal.id].status == GoalStatus.PENDING:
            await self.update_goal_status(goal.id, GoalStatus.PLANNING)

        steps: list[PlanStep] | None = None
        if self.config.enable_llm_planning and self.llm is not None:
            steps = await self._plan_with_llm(goal)

        if steps is None:
            return self._build_plan(goal, self._simple_steps(goal), PLAN_SOURCE_SIMPLE, version)
        return self._build_plan(goal, steps, PLAN_SOURCE_LLM, version)

    async def _plan_with_llm(self, goal: Goal) -> list[PlanStep] | None:
        """LLM planning path; None means fall back to the simple plan."""
        try:
            raw = await self.llm.generate_plan(self.build_prompt(goal))
        except Exception as e:
            logger.warning("llm_planning_failed", goal_id=goal.id, error=str(e))
            return None

        parsed = parse_plan_response(raw, max_chars=self.config.max_response_chars)
        if not isinstance(parsed, ParsedPlan):
            logger.warning(
                "plan_response_rejected",
                goal_id=goal.id,
                reason=parsed.reason,
                details=parsed.details[:5],
            )
            return None

        steps = self.materialize_steps(parsed.steps)

        if self.config.enable_plan_validation:
            candidate = Plan(
                goal_id=goal.id,
                steps=steps,
                estimated_duration_ms=self.estimate_duration(steps),
            )
            try:
                result = self.validator.validate_or_raise(candidate, goal)
            except PlanValidationError as e:
                logger.warning(
                    "plan_validation_failed",
                    goal_id=goal.id,
                    errors=[i.code for i in e.issues],
                )
                return None
            if result.issues:
                logger.debug("plan_validation_warnings", goal_id=goal.id, codes=result.codes())

        return steps

    def materialize_steps(self, raw_steps: list[RawPlanStep]) -> list[PlanStep]:
        """Assign ids and resolve 0-based dependsOn positions.

        Only positions of earlier steps resolve; everything else is dropped.
        Steps beyond max_steps are discarded.
        """
        steps: list[PlanStep] = []
        for index, raw in enumerate(raw_steps[: self.config.max_steps]):
            depends_on: list[str] = []
            for position in raw.dependency_positions():
                if 0 <= position < index and steps[position].id not in depends_on:
                    depends_on.append(steps[position].id)
            steps.append(
                PlanStep(
                    order=index,
                    description=raw.description,
                    tool_name=raw.tool_name,
                    tool_arguments=raw.tool_arguments,
                    depends_on=depends_on,
                    max_retries=self.config.step_max_retries,
                )
            )
        return steps

    def build_prompt(self, goal: Goal) -> str:
        """Planning prompt for the model."""
        lines = [
            "Break the following goal into concrete, ordered steps.",
            "",
            f"Goal: {goal.description}",
        ]
        if goal.constraints:
            lines += ["", "Constraints:"] + [f"- {c}" for c in goal.constraints]
        if goal.success_criteria:
            lines += ["", "Success criteria:"] + [f"- {c}" for c in goal.success_criteria]
        if self.tools:
            lines += ["", "Available tools:"] + [f"- {t.name}: {t.description}" for t in self.tools]
        lines += [
            "",
            "Respond with only a JSON array. Each element is an object with:",
            '  "description": what the step does',
            '  "toolName": one of the available tools, or null',
            '  "toolArguments": an object of arguments for the tool, or null',
            '  "dependsOn": 0-based indexes of earlier steps this step needs',
            f"Use at most {self.config.max_steps} steps.",
        ]
        return "\n".join(lines)

    def generate_simple_plan(self, goal: Goal) -> Plan:
        """Heuristic one-step plan; also the fallback for LLM planning."""
        return self._build_plan(goal, self._simple_steps(goal), PLAN_SOURCE_SIMPLE, version=1)

    def _simple_steps(self, goal: Goal) -> list[PlanStep]:
        tool = self.match_tool(goal.description)
        return [
            PlanStep(
                order=0,
                description=goal.description,
                tool_name=tool.name if tool else None,
                tool_arguments={} if tool else None,
                max_retries=self.config.step_max_retries,
            )
        ]

    def match_tool(self, text: str) -> ToolDefinition | None:
        """Tool sharing the most word tokens with ``text``; ties go to the first registered."""
        words = tokenize(text)
        best: ToolDefinition | None = None
        best_score = 0
        for tool in self.tools:
            score = len(words & tokenize(f"{tool.name} {tool.description}"))
            if score > best_score:
                best, best_score = tool, score
        return best

    def _build_plan(self, goal: Goal, steps: list[PlanStep], source: str, version: int) -> Plan:
        plan = Plan(
            goal_id=goal.id,
            steps=steps,
            estimated_duration_ms=self.estimate_duration(steps),
            complexity=self.estimate_complexity(steps),
            version=version,
            metadata={"source": source},
        )
        self._plans[plan.id] = plan.model_copy(deep=True)

        logger.info(
            "plan_created",
            plan_id=plan.id,
            goal_id=goal.id,
            source=source,
            step_count=len(steps),
            complexity=plan.complexity,
        )
        self.events.emit(
            OrchestrationEvent.PLAN_CREATED,
            {
                "plan_id": plan.id,
                "goal_id": goal.id,
                "source": source,
                "step_count": len(steps),
                "version": version,
            },
        )
        return plan

    def estimate_duration(self, steps: list[PlanStep]) -> int:
        return len(steps) * self.config.step_duration_ms

    def estimate_complexity(self, steps: list[PlanStep]) -> int:
        """Complexity score from 1 to 10.

        Grows with the step count (capped at +6) and the share of steps that
        have dependencies (up to +3).
        """
        if not steps:
            return 1
        dependent_share = sum(1 for s in steps if s.depends_on) / len(steps)
        score = round(1 + min(len(steps) / 2, 6) + 3 * dependent_share)
        return max(1, min(10, score))

    # ------------------------------------------------------------------
    # Re-planning
    # ------------------------------------------------------------------

    async def replan(self, goal: Goal, current_plan: Plan, feedback: ReplanFeedback) -> ReplanResult:
        """Derive a new goal from a failed plan and plan it from scratch.

        The original goal and plan are left untouched. The new goal carries
        ``parent_goal_id`` and the new plan's version follows the old one.
        """
        description = self.replan_description(goal, current_plan, feedback)
        new_goal = await self.create_goal(
            description,
            constraints=list(goal.constraints),
            success_criteria=list(goal.success_criteria),
            priority=goal.priority,
            deadline=goal.deadline,
            parent_goal_id=goal.id,
            metadata={"replanned_from_plan": current_plan.id},
        )
        new_plan = await self._generate(new_goal, version=current_plan.version + 1)

        logger.info(
            "plan_replanned",
            goal_id=goal.id,
            new_goal_id=new_goal.id,
            previous_plan_id=current_plan.id,
            plan_id=new_plan.id,
            reason=feedback.failure_reason,
        )
        self.events.emit(
            OrchestrationEvent.PLAN_REPLANNED,
            {
                "goal_id": goal.id,
                "new_goal_id": new_goal.id,
                "previous_plan_id": current_plan.id,
                "plan_id": new_plan.id,
                "reason": feedback.failure_reason,
            },
        )
        return ReplanResult(new_goal=await self.get_goal(new_goal.id) or new_goal, new_plan=new_plan)

    @staticmethod
    def replan_description(goal: Goal, current_plan: Plan, feedback: ReplanFeedback) -> str:
        parts = [goal.description]
        completed = [s.description for s in current_plan.steps if s.status == StepStatus.COMPLETED]
        if completed:
            parts.append("Already completed:\n" + "\n".join(f"- {d}" for d in completed))
        parts.append(f"Previous attempt failed: {feedback.failure_reason}")
        if feedback.additional_context:
            parts.append(f"Additional context: {feedback.additional_context}")
        return "\n\n".join(parts)
