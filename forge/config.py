"""Configuration for forge.

Provides centralized configuration with sensible defaults and environment
variable overrides for state storage, agent invocation, git behavior and
telemetry.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from forge.errors import ConfigurationError
from forge.models import PushStrategy

_PUSH_STRATEGIES = ("auto", "manual", "disabled")
_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ForgeConfig:
    """Configuration for execution orchestration.

    All settings have sensible defaults but can be overridden via environment
    variables using the from_env() factory method.
    """

    # State persistence
    state_dir: Path = field(default_factory=lambda: Path(".forge"))
    # Directory holding dev-flow.yaml / git-operations.yaml; None = bundled
    config_dir: Path | None = None
    plan_relpath: str = "META/TODO.md"

    # Agent settings
    max_turns: int = 50
    task_timeout_seconds: int = 600
    allowed_tools: list[str] = field(
        default_factory=lambda: ["Read", "Write", "Edit", "Glob", "Grep"]
    )
    poll_interval_seconds: float = 1.0

    # Git settings
    auto_commit_before_execution: bool = False
    auto_commit_on_task: bool = False
    auto_commit_on_milestone: bool = True
    push_strategy: PushStrategy = "manual"

    # Telemetry settings
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTLP_ENDPOINT", "http://localhost:4317")
    )
    service_name: str = "forge"

    @classmethod
    def from_env(cls) -> "ForgeConfig":
        """Load config with environment variable overrides.

        Environment variables:
            FORGE_STATE_DIR: Override state_dir (default: .forge)
            FORGE_CONFIG_DIR: Directory with YAML definitions (default: bundled)
            FORGE_PLAN_PATH: Plan document path relative to the project
            FORGE_MAX_TURNS: Override max_turns (default: 50)
            FORGE_TASK_TIMEOUT: Override task_timeout_seconds (default: 600)
            FORGE_POLL_INTERVAL: Seconds between pause-flag polls (default: 1.0)
            FORGE_AUTO_COMMIT_BEFORE_EXECUTION: Commit a dirty tree on start
            FORGE_AUTO_COMMIT_ON_TASK: Run the task_complete hook
            FORGE_AUTO_COMMIT_ON_MILESTONE: Run the milestone_complete hook
            FORGE_PUSH_STRATEGY: auto, manual or disabled (default: manual)
            OTLP_ENDPOINT: Override otlp_endpoint

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        defaults = cls()
        config_dir = os.getenv("FORGE_CONFIG_DIR")
        return cls(
            state_dir=Path(os.getenv("FORGE_STATE_DIR", str(defaults.state_dir))),
            config_dir=Path(config_dir) if config_dir else None,
            plan_relpath=os.getenv("FORGE_PLAN_PATH", defaults.plan_relpath),
            max_turns=_env_int("FORGE_MAX_TURNS", defaults.max_turns),
            task_timeout_seconds=_env_int(
                "FORGE_TASK_TIMEOUT", defaults.task_timeout_seconds
            ),
            poll_interval_seconds=_env_float(
                "FORGE_POLL_INTERVAL", defaults.poll_interval_seconds
            ),
            auto_commit_before_execution=_env_bool(
                "FORGE_AUTO_COMMIT_BEFORE_EXECUTION",
                defaults.auto_commit_before_execution,
            ),
            auto_commit_on_task=_env_bool(
                "FORGE_AUTO_COMMIT_ON_TASK", defaults.auto_commit_on_task
            ),
            auto_commit_on_milestone=_env_bool(
                "FORGE_AUTO_COMMIT_ON_MILESTONE", defaults.auto_commit_on_milestone
            ),
            push_strategy=_env_push_strategy(
                "FORGE_PUSH_STRATEGY", defaults.push_strategy
            ),
            otlp_endpoint=os.getenv("OTLP_ENDPOINT", "http://localhost:4317"),
        )

    def plan_path(self, project_path: str | Path) -> Path:
        """Location of the plan document inside a project."""
        return Path(project_path) / self.plan_relpath


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got: {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got: {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_push_strategy(name: str, default: PushStrategy) -> PushStrategy:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value not in _PUSH_STRATEGIES:
        raise ConfigurationError(
            f"{name} must be one of: {', '.join(_PUSH_STRATEGIES)}, got: {raw!r}"
        )
    return value  # type: ignore[return-value]
