"""Configuration management with hierarchical loading."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from conductor.domain.models import PersonaType
from conductor.infrastructure.exceptions import ConfigurationError
from conductor.infrastructure.logger import get_logger

logger = get_logger(__name__)

CONFIG_DIR_NAME = ".conductor"


class TaskQueueConfig(BaseModel):
    """Background task queue configuration."""

    max_queue_size: int = Field(default=100, ge=1)
    task_timeout_minutes: float = Field(default=60.0, gt=0)
    retry_failed_tasks: bool = True
    max_retries: int = Field(default=3, ge=0)
    processing_interval_ms: int = Field(default=5000, ge=1)


class LifecycleConfig(BaseModel):
    """Agent lifecycle supervision configuration."""

    idle_timeout_ms: int = Field(default=30 * 60 * 1000, ge=1)
    idle_check_interval_ms: int = Field(default=60 * 1000, ge=1)
    auto_terminate_on_completion: bool = False


class SubAgentConfig(BaseModel):
    """Sub-agent factory configuration."""

    max_sub_agents_per_parent: int = Field(default=5, ge=0)
    default_persona_type: PersonaType = PersonaType.DEVELOPER
    auto_terminate: bool = True


class SpawnerConfig(BaseModel):
    """Top-level agent spawner configuration."""

    max_concurrent_agents: int = Field(default=10, ge=1)
    default_persona_type: PersonaType = PersonaType.DEVELOPER


class PlannerConfig(BaseModel):
    """Goal planner configuration."""

    enable_llm_planning: bool = True
    max_steps: int = Field(default=20, ge=1)
    max_response_chars: int = Field(default=20_000, ge=100)
    step_duration_ms: int = Field(default=60_000, ge=0)
    step_max_retries: int = Field(default=3, ge=0)
    enable_plan_validation: bool = True
    min_step_description_length: int = Field(default=10, ge=0)
    max_dependency_depth: int = Field(default=10, ge=1)


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    log_level: str = "INFO"
    queue: TaskQueueConfig = Field(default_factory=TaskQueueConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    spawner: SpawnerConfig = Field(default_factory=SpawnerConfig)
    sub_agents: SubAgentConfig = Field(default_factory=SubAgentConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)


class ConfigManager:
    """Manage configuration loading from multiple sources with hierarchy."""

    # Map of env var names to config paths
    ENV_MAPPINGS: dict[str, list[str]] = {
        "CONDUCTOR_LOG_LEVEL": ["log_level"],
        "CONDUCTOR_QUEUE_MAX_SIZE": ["queue", "max_queue_size"],
        "CONDUCTOR_TASK_TIMEOUT_MINUTES": ["queue", "task_timeout_minutes"],
        "CONDUCTOR_MAX_RETRIES": ["queue", "max_retries"],
        "CONDUCTOR_PROCESSING_INTERVAL_MS": ["queue", "processing_interval_ms"],
        "CONDUCTOR_IDLE_TIMEOUT_MS": ["lifecycle", "idle_timeout_ms"],
        "CONDUCTOR_MAX_AGENTS": ["spawner", "max_concurrent_agents"],
        "CONDUCTOR_MAX_SUB_AGENTS": ["sub_agents", "max_sub_agents_per_parent"],
        "CONDUCTOR_LLM_PLANNING": ["planner", "enable_llm_planning"],
        "CONDUCTOR_MAX_PLAN_STEPS": ["planner", "max_steps"],
    }

    def __init__(self, project_root: Path | None = None, home_dir: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            project_root: Root directory of the project (default: current directory)
            home_dir: Directory holding the user-level config (default: home directory)
        """
        self.project_root = project_root or Path.cwd()
        self.home_dir = home_dir or Path.home()
        self._config: Config | None = None

    def load_config(self) -> Config:
        """Load configuration from all sources in hierarchy order.

        Configuration hierarchy (highest priority last):
        1. System defaults (embedded in Config model)
        2. Project defaults (.conductor/config.yaml)
        3. User overrides (~/.conductor/config.yaml)
        4. Project-local overrides (.conductor/local.yaml)
        5. Environment variables (CONDUCTOR_* prefix)

        Returns:
            Merged configuration
        """
        if self._config is not None:
            return self._config

        config_dict: dict[str, Any] = {}
        for path in self.config_paths():
            if path.exists():
                config_dict = self._merge_dicts(config_dict, self._load_yaml(path))
                logger.debug("config_file_loaded", path=str(path))

        config_dict = self._apply_env_vars(config_dict)

        self._config = Config(**config_dict)
        return self._config

    def config_paths(self) -> list[Path]:
        """Config file locations, lowest precedence first."""
        return [
            self.project_root / CONFIG_DIR_NAME / "config.yaml",
            self.home_dir / CONFIG_DIR_NAME / "config.yaml",
            self.project_root / CONFIG_DIR_NAME / "local.yaml",
        ]

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variables with CONDUCTOR_ prefix."""
        for env_var, path in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            current = config_dict
            for key in path[:-1]:
                current = current.setdefault(key, {})
            # pydantic coerces numeric and boolean strings during validation
            current[path[-1]] = value

        return config_dict

    def get_log_dir(self) -> Path:
        """Get path to log directory."""
        log_dir = self.project_root / CONFIG_DIR_NAME / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
