"""Unit tests for the goal planner."""

import json

import pytest
from conductor.domain.models import (
    GoalPriority,
    GoalStatus,
    Plan,
    PlanStep,
    StepStatus,
    ToolDefinition,
)
from conductor.domain.ports.event_sink import OrchestrationEvent
from conductor.domain.ports.planning_llm import PlanningLLM
from conductor.infrastructure.config import PlannerConfig
from conductor.infrastructure.event_sinks import RecordingEventSink
from conductor.infrastructure.exceptions import InvalidTransitionError
from conductor.services.goal_planner import (
    PLAN_SOURCE_LLM,
    PLAN_SOURCE_SIMPLE,
    GoalPlanner,
    ReplanFeedback,
    tokenize,
)
from conductor.services.plan_parser import RawPlanStep

TOOLS = [
    ToolDefinition(name="summarize", description="Summarize a document into key points"),
    ToolDefinition(name="send_email", description="Send an email message to recipients"),
]


class StubLLM(PlanningLLM):
    """Returns a canned response and remembers the prompts it saw."""

    def __init__(self, response: str = "", error: Exception | None = None):
        self.response = response
        self.error = error
        self.prompts: list[str] = []

    async def generate_plan(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


def plan_shape(plan: Plan) -> dict:
    """Plan content without generated ids and timestamps."""
    return {
        "steps": [
            (s.order, s.description, s.tool_name, s.tool_arguments, len(s.depends_on))
            for s in plan.steps
        ],
        "estimated_duration_ms": plan.estimated_duration_ms,
        "complexity": plan.complexity,
        "version": plan.version,
        "metadata": plan.metadata,
    }


class TestGoals:
    """Tests for goal bookkeeping."""

    @pytest.mark.asyncio
    async def test_create_goal(self, planner: GoalPlanner, events: RecordingEventSink) -> None:
        goal = await planner.create_goal(
            "Publish the release notes",
            constraints=["before Friday"],
            priority=GoalPriority.HIGH,
        )

        assert goal.status == GoalStatus.PENDING
        assert goal.parent_goal_id is None
        assert await planner.get_goal(goal.id) == goal
        assert events.of(OrchestrationEvent.GOAL_CREATED)[0]["goal_id"] == goal.id

    @pytest.mark.asyncio
    async def test_returned_goal_is_a_copy(self, planner: GoalPlanner) -> None:
        goal = await planner.create_goal("Publish the release notes")
        goal.description = "changed"

        stored = await planner.get_goal(goal.id)
        assert stored is not None and stored.description == "Publish the release notes"

    @pytest.mark.asyncio
    async def test_update_goal_status(self, planner: GoalPlanner, events: RecordingEventSink) -> None:
        goal = await planner.create_goal("Publish the release notes")

        updated = await planner.update_goal_status(goal.id, GoalStatus.EXECUTING)

        assert updated is not None and updated.status == GoalStatus.EXECUTING
        payload = events.of(OrchestrationEvent.GOAL_UPDATED)[0]
        assert payload["previous_status"] == "pending"
        assert payload["status"] == "executing"

    @pytest.mark.asyncio
    async def test_terminal_goal_cannot_change(self, planner: GoalPlanner) -> None:
        goal = await planner.create_goal("Publish the release notes")
        await planner.update_goal_status(goal.id, GoalStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            await planner.update_goal_status(goal.id, GoalStatus.EXECUTING)
        assert await planner.update_goal_status(goal.id, GoalStatus.COMPLETED) is not None

    @pytest.mark.asyncio
    async def test_update_unknown_goal(self, planner: GoalPlanner) -> None:
        assert await planner.update_goal_status("ghost", GoalStatus.FAILED) is None


class TestSimplePlanning:
    """Tests for the heuristic planning path."""

    @pytest.mark.asyncio
    async def test_summarize_document_scenario(self, events: RecordingEventSink) -> None:
        planner = GoalPlanner(PlannerConfig(enable_llm_planning=False), tools=TOOLS, events=events)
        goal = await planner.create_goal("Summarize document X")

        plan = await planner.generate_plan(goal)

        assert len(plan.steps) == 1
        step = plan.steps[0]
        assert step.order == 0
        assert step.description == "Summarize document X"
        assert step.tool_name == "summarize"
        assert step.tool_arguments == {}
        assert step.depends_on == []
        assert step.status == StepStatus.PENDING
        assert plan.goal_id == goal.id
        assert plan.version == 1
        assert plan.metadata["source"] == PLAN_SOURCE_SIMPLE
        assert plan.estimated_duration_ms == 60_000
        assert 1 <= plan.complexity <= 10

        stored = await planner.get_goal(goal.id)
        assert stored is not None and stored.status == GoalStatus.PLANNING
        assert goal.status == GoalStatus.PENDING
        assert await planner.get_plan(plan.id) == plan
        assert events.of(OrchestrationEvent.PLAN_CREATED)[0]["plan_id"] == plan.id

    @pytest.mark.asyncio
    async def test_no_matching_tool(self, planner: GoalPlanner) -> None:
        planner.set_tools(TOOLS)
        goal = await planner.create_goal("Water the plants")

        plan = planner.generate_simple_plan(goal)

        assert plan.steps[0].tool_name is None
        assert plan.steps[0].tool_arguments is None

    @pytest.mark.asyncio
    async def test_without_llm_every_plan_is_simple(self, planner: GoalPlanner) -> None:
        goal = await planner.create_goal("Draft the quarterly update")

        plan = await planner.generate_plan(goal)

        assert plan.metadata["source"] == PLAN_SOURCE_SIMPLE

    def test_match_tool_prefers_most_shared_tokens(self, planner: GoalPlanner) -> None:
        planner.set_tools(TOOLS)

        assert planner.match_tool("send an email with the summary").name == "send_email"
        assert planner.match_tool("summarize the document").name == "summarize"
        assert planner.match_tool("xyz") is None

    def test_match_tool_tie_goes_to_first_registered(self, planner: GoalPlanner) -> None:
        planner.set_tools(
            [
                ToolDefinition(name="alpha", description="report builder"),
                ToolDefinition(name="beta", description="report sender"),
            ]
        )

        assert planner.match_tool("weekly report").name == "alpha"

    def test_register_tool_replaces_same_name(self, planner: GoalPlanner) -> None:
        planner.register_tool(ToolDefinition(name="summarize", description="old"))
        planner.register_tool(ToolDefinition(name="summarize", description="new"))

        assert [t.description for t in planner.tools] == ["new"]
        assert "summarize" in planner.validator.tools

    def test_tokenize(self) -> None:
        assert tokenize("Send an E-mail to Bob, ok?") == {"send", "mail", "bob"}


class TestLLMPlanning:
    """Tests for the language model planning path."""

    @pytest.mark.asyncio
    async def test_uses_parsed_llm_plan(self, events: RecordingEventSink) -> None:
        response = json.dumps(
            [
                {"description": "Fetch the quarterly numbers", "toolName": None},
                {"description": "Summarize the quarterly numbers", "toolName": "summarize", "dependsOn": [0]},
                {
                    "description": "Email the quarterly summary",
                    "toolName": "send_email",
                    "toolArguments": {"to": "board"},
                    "dependsOn": [1, 0, 2, 7, 1],
                },
            ]
        )
        llm = StubLLM(response)
        planner = GoalPlanner(PlannerConfig(), llm=llm, tools=TOOLS, events=events)
        goal = await planner.create_goal("Report quarterly numbers", constraints=["no spreadsheets"])

        plan = await planner.generate_plan(goal)

        assert plan.metadata["source"] == PLAN_SOURCE_LLM
        assert [s.order for s in plan.steps] == [0, 1, 2]
        first, second, third = plan.steps
        assert second.depends_on == [first.id]
        assert third.depends_on == [second.id, first.id]
        assert third.tool_arguments == {"to": "board"}
        assert plan.estimated_duration_ms == 3 * 60_000

        prompt = llm.prompts[0]
        assert "Report quarterly numbers" in prompt
        assert "- no spreadsheets" in prompt
        assert "- summarize: Summarize a document into key points" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "llm",
        [
            StubLLM("Sorry, I can't produce a plan right now."),
            StubLLM("[{ broken json"),
            StubLLM("[]"),
            StubLLM(error=RuntimeError("model unavailable")),
        ],
        ids=["prose", "invalid-json", "empty-array", "llm-error"],
    )
    async def test_unusable_response_falls_back_to_simple_plan(self, llm: StubLLM) -> None:
        planner = GoalPlanner(PlannerConfig(), llm=llm, tools=TOOLS)
        goal = await planner.create_goal("Summarize document X")

        plan = await planner.generate_plan(goal)

        assert plan_shape(plan) == plan_shape(planner.generate_simple_plan(goal))
        assert plan.metadata["source"] == PLAN_SOURCE_SIMPLE

    @pytest.mark.asyncio
    async def test_scalar_depends_on_keeps_llm_plan(self) -> None:
        response = json.dumps(
            [
                {"description": "Collect the release notes"},
                {"description": "Publish the release notes", "dependsOn": 0, "toolArguments": "now"},
            ]
        )
        planner = GoalPlanner(PlannerConfig(), llm=StubLLM(response), tools=TOOLS)

        plan = await planner.generate_plan(await planner.create_goal("Publish the release notes"))

        assert plan.metadata["source"] == PLAN_SOURCE_LLM
        assert len(plan.steps) == 2
        assert plan.steps[1].depends_on == [plan.steps[0].id]
        assert plan.steps[1].tool_arguments is None

    @pytest.mark.asyncio
    async def test_invalid_llm_plan_falls_back(self) -> None:
        response = json.dumps(
            [
                {"description": "Collect the release notes"},
                {"description": "Publish the release notes", "dependsOn": [0]},
            ]
        )
        planner = GoalPlanner(PlannerConfig(), llm=StubLLM(response), tools=TOOLS)
        planner.validator.max_steps = 1

        plan = await planner.generate_plan(await planner.create_goal("Publish the release notes"))

        assert plan.metadata["source"] == PLAN_SOURCE_SIMPLE
        assert len(plan.steps) == 1

    @pytest.mark.asyncio
    async def test_disabled_llm_planning_skips_model(self) -> None:
        llm = StubLLM("[]")
        planner = GoalPlanner(PlannerConfig(enable_llm_planning=False), llm=llm)

        await planner.generate_plan(await planner.create_goal("Draft the quarterly update"))

        assert llm.prompts == []

    def test_materialize_caps_steps(self) -> None:
        planner = GoalPlanner(PlannerConfig(max_steps=2))
        raw = [RawPlanStep(description=f"step {i}", depends_on=[i - 1]) for i in range(4)]

        steps = planner.materialize_steps(raw)

        assert len(steps) == 2
        assert steps[0].depends_on == []
        assert steps[1].depends_on == [steps[0].id]


class TestComplexity:
    """Tests for complexity estimation."""

    def test_bounds(self, planner: GoalPlanner) -> None:
        assert planner.estimate_complexity([]) == 1

        single = [PlanStep(order=0, description="only step")]
        assert planner.estimate_complexity(single) == 2

        chain = [PlanStep(order=0, description="start")]
        for i in range(1, 20):
            chain.append(PlanStep(order=i, description=f"step {i}", depends_on=[chain[-1].id]))
        assert planner.estimate_complexity(chain) == 10

    def test_dependencies_raise_complexity(self, planner: GoalPlanner) -> None:
        a = PlanStep(order=0, description="a")
        independent = [a, PlanStep(order=1, description="b")]
        dependent = [a, PlanStep(order=1, description="b", depends_on=[a.id])]

        assert planner.estimate_complexity(dependent) > planner.estimate_complexity(independent)


class TestReplan:
    """Tests for re-planning."""

    @pytest.mark.asyncio
    async def test_replan_creates_new_goal_and_plan(
        self, planner: GoalPlanner, events: RecordingEventSink
    ) -> None:
        goal = await planner.create_goal(
            "Migrate the billing database",
            constraints=["no downtime"],
            priority=GoalPriority.CRITICAL,
        )
        plan = await planner.generate_plan(goal)
        plan.steps[0].status = StepStatus.COMPLETED
        goal_before = goal.model_dump()
        plan_before = plan.model_dump()

        result = await planner.replan(
            goal,
            plan,
            ReplanFeedback(failure_reason="schema lock timeout", additional_context="retry at night"),
        )

        assert goal.model_dump() == goal_before
        assert plan.model_dump() == plan_before
        stored_goal = await planner.get_goal(goal.id)
        assert stored_goal is not None and stored_goal.description == "Migrate the billing database"

        new_goal, new_plan = result.new_goal, result.new_plan
        assert new_goal.id != goal.id
        assert new_plan.id != plan.id
        assert new_goal.parent_goal_id == goal.id
        assert new_goal.constraints == ["no downtime"]
        assert new_goal.priority == GoalPriority.CRITICAL
        assert new_goal.metadata["replanned_from_plan"] == plan.id
        assert new_plan.goal_id == new_goal.id
        assert new_plan.version == plan.version + 1

        assert new_goal.description == (
            "Migrate the billing database\n\n"
            "Already completed:\n- Migrate the billing database\n\n"
            "Previous attempt failed: schema lock timeout\n\n"
            "Additional context: retry at night"
        )

        replanned = events.of(OrchestrationEvent.PLAN_REPLANNED)[0]
        assert replanned["previous_plan_id"] == plan.id
        assert replanned["plan_id"] == new_plan.id
        assert len(await planner.get_plans_for_goal(goal.id)) == 1

    @pytest.mark.asyncio
    async def test_replan_description_without_progress(self, planner: GoalPlanner) -> None:
        goal = await planner.create_goal("Ship the mobile build")
        plan = await planner.generate_plan(goal)

        text = planner.replan_description(goal, plan, ReplanFeedback(failure_reason="signing failed"))

        assert text == "Ship the mobile build\n\nPrevious attempt failed: signing failed"
