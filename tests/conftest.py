"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
from conductor.application.agent_lifecycle import AgentLifecycleManager
from conductor.application.agent_spawner import AgentSpawner
from conductor.application.sub_agent_factory import SubAgentFactory
from conductor.domain.models import AgentPersona, BackgroundTask, PersonaType, TaskStatus, utcnow
from conductor.infrastructure.config import (
    LifecycleConfig,
    PlannerConfig,
    SpawnerConfig,
    SubAgentConfig,
    TaskQueueConfig,
)
from conductor.infrastructure.event_sinks import RecordingEventSink
from conductor.infrastructure.memory_stores import InMemoryAgentStore, InMemoryTaskStore
from conductor.infrastructure.persona_registry import InMemoryPersonaRegistry
from conductor.services.goal_planner import GoalPlanner
from conductor.services.task_queue_service import TaskQueue


# Register pytest helpers
class Helpers:
    """Helper functions for tests."""

    @staticmethod
    async def save_stale_running_task(
        store: InMemoryTaskStore, minutes: float = 120, **fields: object
    ) -> BackgroundTask:
        """Store a task that has been running for ``minutes``."""
        task = BackgroundTask(
            name=str(fields.pop("name", "slow-job")),
            status=TaskStatus.RUNNING,
            started_at=utcnow() - timedelta(minutes=minutes),
            **fields,
        )
        await store.save(task)
        return task


@pytest.fixture
def helpers() -> type[Helpers]:
    """Provide helper functions to tests."""
    return Helpers


# Event fixtures
@pytest.fixture
def events() -> RecordingEventSink:
    """Event sink that records every emitted signal."""
    return RecordingEventSink()


# Task queue fixtures
@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def queue_config() -> TaskQueueConfig:
    return TaskQueueConfig(max_queue_size=10, max_retries=3, processing_interval_ms=10)


@pytest.fixture
async def queue(
    task_store: InMemoryTaskStore, queue_config: TaskQueueConfig, events: RecordingEventSink
) -> AsyncGenerator[TaskQueue, None]:
    """Task queue over an in-memory store; stopped after the test."""
    task_queue = TaskQueue(task_store, queue_config, events)
    yield task_queue
    await task_queue.stop()


# Agent fixtures
@pytest.fixture
def agent_store() -> InMemoryAgentStore:
    return InMemoryAgentStore()


@pytest.fixture
def lifecycle_config() -> LifecycleConfig:
    return LifecycleConfig()


@pytest.fixture
async def lifecycle(
    agent_store: InMemoryAgentStore,
    lifecycle_config: LifecycleConfig,
    events: RecordingEventSink,
) -> AsyncGenerator[AgentLifecycleManager, None]:
    """Lifecycle manager with supervision loops stopped after the test."""
    manager = AgentLifecycleManager(agent_store, lifecycle_config, events)
    yield manager
    await manager.stop()


@pytest.fixture
def personas() -> InMemoryPersonaRegistry:
    return InMemoryPersonaRegistry()


@pytest.fixture
def developer(personas: InMemoryPersonaRegistry) -> AgentPersona:
    persona = personas.get_by_type(PersonaType.DEVELOPER)
    assert persona is not None
    return persona


@pytest.fixture
def sub_agent_config() -> SubAgentConfig:
    return SubAgentConfig(max_sub_agents_per_parent=3)


@pytest.fixture
def factory(
    lifecycle: AgentLifecycleManager,
    personas: InMemoryPersonaRegistry,
    sub_agent_config: SubAgentConfig,
    events: RecordingEventSink,
) -> SubAgentFactory:
    return SubAgentFactory(lifecycle, personas, sub_agent_config, events)


@pytest.fixture
def spawner_config() -> SpawnerConfig:
    return SpawnerConfig(max_concurrent_agents=3)


@pytest.fixture
def spawner(
    lifecycle: AgentLifecycleManager,
    personas: InMemoryPersonaRegistry,
    spawner_config: SpawnerConfig,
) -> AgentSpawner:
    return AgentSpawner(lifecycle, personas, spawner_config)


# Planner fixtures
@pytest.fixture
def planner_config() -> PlannerConfig:
    return PlannerConfig()


@pytest.fixture
def planner(planner_config: PlannerConfig, events: RecordingEventSink) -> GoalPlanner:
    """Planner without a language model."""
    return GoalPlanner(planner_config, events=events)
