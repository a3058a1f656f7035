"""Infrastructure layer for Conductor."""

from conductor.infrastructure.config import (
    Config,
    ConfigManager,
    LifecycleConfig,
    PlannerConfig,
    SubAgentConfig,
    TaskQueueConfig,
)
from conductor.infrastructure.event_sinks import (
    LoggingEventSink,
    NullEventSink,
    RecordingEventSink,
)
from conductor.infrastructure.logger import get_logger, setup_logging
from conductor.infrastructure.memory_stores import InMemoryAgentStore, InMemoryTaskStore
from conductor.infrastructure.persona_registry import InMemoryPersonaRegistry

__all__ = [
    "Config",
    "ConfigManager",
    "InMemoryAgentStore",
    "InMemoryPersonaRegistry",
    "InMemoryTaskStore",
    "LifecycleConfig",
    "LoggingEventSink",
    "NullEventSink",
    "PlannerConfig",
    "RecordingEventSink",
    "SubAgentConfig",
    "TaskQueueConfig",
    "get_logger",
    "setup_logging",
]
