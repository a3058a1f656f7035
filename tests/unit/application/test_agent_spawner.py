"""Unit tests for the top-level agent spawner."""

import asyncio

import pytest
from conductor.application.agent_lifecycle import AgentLifecycleManager
from conductor.application.agent_spawner import AgentSpawner
from conductor.application.sub_agent_factory import SubAgentFactory
from conductor.domain.models import AgentStatus, PersonaType, SpawnRequest, SubAgentRequest
from conductor.domain.ports.event_sink import OrchestrationEvent
from conductor.infrastructure.event_sinks import RecordingEventSink
from conductor.infrastructure.exceptions import (
    AgentAlreadyExistsError,
    AgentCapacityError,
    CapacityError,
    PersonaNotFoundError,
)


class TestSpawn:
    """Tests for single agent spawning."""

    @pytest.mark.asyncio
    async def test_spawn_defaults(self, spawner: AgentSpawner, events: RecordingEventSink) -> None:
        agent = await spawner.spawn()

        assert agent.id.startswith("agent-")
        assert agent.status == AgentStatus.IDLE
        assert agent.persona.type == PersonaType.DEVELOPER
        assert agent.parent_agent_id is None
        assert events.of(OrchestrationEvent.AGENT_SPAWNED)[0]["agent_id"] == agent.id

    @pytest.mark.asyncio
    async def test_spawn_with_initial_task(self, spawner: AgentSpawner) -> None:
        agent = await spawner.spawn(
            SpawnRequest(
                id="researcher",
                persona_type=PersonaType.RESEARCH,
                channel_id="lab",
                initial_task="read papers",
                metadata={"team": "ml"},
            )
        )

        assert agent.id == "researcher"
        assert agent.status == AgentStatus.WORKING
        assert agent.current_task == "read papers"
        assert agent.channel_id == "lab"
        assert agent.persona_id == "research-default"
        assert agent.metadata == {"team": "ml"}

    @pytest.mark.asyncio
    async def test_unknown_persona(self, spawner: AgentSpawner, lifecycle: AgentLifecycleManager) -> None:
        with pytest.raises(PersonaNotFoundError):
            await spawner.spawn(SpawnRequest(persona_id="nope"))

        assert await lifecycle.get_all_agents() == []

    @pytest.mark.asyncio
    async def test_limit_reached(self, spawner: AgentSpawner, lifecycle: AgentLifecycleManager) -> None:
        for _ in range(3):
            await spawner.spawn()

        with pytest.raises(AgentCapacityError) as exc_info:
            await spawner.spawn()

        assert isinstance(exc_info.value, CapacityError)
        assert exc_info.value.limit == 3
        assert "Maximum concurrent agents reached (3)" in str(exc_info.value)
        assert len(await lifecycle.get_all_agents()) == 3
        assert await spawner.can_spawn() is False

    @pytest.mark.asyncio
    async def test_sub_agents_count_against_limit(
        self, spawner: AgentSpawner, factory: SubAgentFactory
    ) -> None:
        await spawner.spawn(SpawnRequest(id="lead"))
        await factory.create_sub_agent(SubAgentRequest(parent_agent_id="lead", task="collect"))

        assert await spawner.get_active_count() == 2
        assert await spawner.get_available_slots() == 1

    @pytest.mark.asyncio
    async def test_terminated_agents_free_slots(
        self, spawner: AgentSpawner, lifecycle: AgentLifecycleManager
    ) -> None:
        agents = [await spawner.spawn() for _ in range(3)]

        await lifecycle.terminate(agents[0].id, "done")

        assert await spawner.get_available_slots() == 1
        assert (await spawner.spawn()).status == AgentStatus.IDLE

    @pytest.mark.asyncio
    async def test_concurrent_spawns_respect_limit(self, spawner: AgentSpawner) -> None:
        results = await asyncio.gather(*(spawner.spawn() for _ in range(5)), return_exceptions=True)

        assert len([r for r in results if not isinstance(r, Exception)]) == 3
        assert len([r for r in results if isinstance(r, AgentCapacityError)]) == 2


class TestSpawnMultiple:
    """Tests for batch spawning."""

    @pytest.mark.asyncio
    async def test_batch_within_limit(self, spawner: AgentSpawner) -> None:
        agents = await spawner.spawn_multiple(
            [SpawnRequest(id="a"), SpawnRequest(id="b", persona_type=PersonaType.BUSINESS)]
        )

        assert [a.id for a in agents] == ["a", "b"]
        assert agents[1].persona.type == PersonaType.BUSINESS
        assert await spawner.get_available_slots() == 1

    @pytest.mark.asyncio
    async def test_batch_over_limit_spawns_nothing(
        self, spawner: AgentSpawner, lifecycle: AgentLifecycleManager
    ) -> None:
        await spawner.spawn()

        with pytest.raises(AgentCapacityError) as exc_info:
            await spawner.spawn_multiple([SpawnRequest() for _ in range(3)])

        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2
        assert "Only 2 slots available" in str(exc_info.value)
        assert len(await lifecycle.get_all_agents()) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "requests, error",
        [
            ([SpawnRequest(), SpawnRequest(persona_id="nope")], PersonaNotFoundError),
            ([SpawnRequest(id="twin"), SpawnRequest(id="twin")], AgentAlreadyExistsError),
        ],
        ids=["bad-persona", "repeated-id"],
    )
    async def test_invalid_batch_spawns_nothing(
        self,
        spawner: AgentSpawner,
        lifecycle: AgentLifecycleManager,
        requests: list[SpawnRequest],
        error: type[Exception],
    ) -> None:
        with pytest.raises(error):
            await spawner.spawn_multiple(requests)

        assert await lifecycle.get_all_agents() == []

    @pytest.mark.asyncio
    async def test_taken_id_spawns_nothing(
        self, spawner: AgentSpawner, lifecycle: AgentLifecycleManager
    ) -> None:
        await spawner.spawn(SpawnRequest(id="taken"))

        with pytest.raises(AgentAlreadyExistsError):
            await spawner.spawn_multiple([SpawnRequest(id="fresh"), SpawnRequest(id="taken")])

        assert [a.id for a in await lifecycle.get_all_agents()] == ["taken"]


class TestTerminateAll:
    """Tests for terminate_all_agents."""

    @pytest.mark.asyncio
    async def test_terminates_every_active_agent(
        self,
        spawner: AgentSpawner,
        factory: SubAgentFactory,
        lifecycle: AgentLifecycleManager,
    ) -> None:
        await spawner.spawn(SpawnRequest(id="lead"))
        await spawner.spawn(SpawnRequest(id="solo"))
        child = await factory.create_sub_agent(SubAgentRequest(parent_agent_id="lead", task="x"))

        count = await spawner.terminate_all_agents()

        assert count == 2
        assert await spawner.get_active_count() == 0
        for agent_id in ("lead", "solo", child.id):
            agent = await lifecycle.get_agent(agent_id)
            assert agent is not None
            assert agent.status == AgentStatus.TERMINATED
            assert agent.termination_reason == "System shutdown"
        assert await spawner.get_available_slots() == 3
