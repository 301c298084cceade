"""YAML configuration loader.

Loads state machine and git hook definitions from YAML files and validates
them with Pydantic models. Parsed files are cached per path.
"""

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from forge.errors import ConfigurationError
from forge.state_machine import StateMachine, StateMachineConfig

logger = logging.getLogger(__name__)

# Bundled definitions shipped with the package
DEFAULT_CONFIG_DIR = Path(__file__).parent / "resources"

DEV_FLOW = "dev-flow"
GIT_OPERATIONS_FILE = "git-operations.yaml"

_cache: dict[Path, Any] = {}


class TransitionModel(BaseModel):
    """One transition entry of a state machine YAML file."""

    model_config = ConfigDict(populate_by_name=True)

    event: str = Field(..., min_length=1)
    from_: str | list[str] = Field(..., alias="from")
    to: str = Field(..., min_length=1)


class StateMachineModel(BaseModel):
    """Schema of ``state-machines/<name>.yaml``."""

    name: str
    initial_state: str
    states: list[str] = Field(..., min_length=1)
    transitions: list[TransitionModel] = Field(default_factory=list)

    def to_config(self) -> StateMachineConfig:
        return StateMachineConfig.from_dict(
            {
                "name": self.name,
                "initial_state": self.initial_state,
                "states": self.states,
                "transitions": [
                    {"event": t.event, "from": t.from_, "to": t.to}
                    for t in self.transitions
                ],
            }
        )


class HookCommitConfig(BaseModel):
    """Commit step of a git hook."""

    message: str = Field(..., description="Commit message template")
    files: list[str] = Field(default_factory=list, description="Paths to stage")


class HookPushConfig(BaseModel):
    """Push step of a git hook."""

    strategy: Literal["auto", "manual", "disabled"] | None = None


class GitHookConfig(BaseModel):
    """A configured commit/push step."""

    enabled: bool = True
    commit: HookCommitConfig
    push: HookPushConfig = Field(default_factory=HookPushConfig)


class GitHookDefaults(BaseModel):
    """File-level defaults applied to every hook."""

    push_strategy: Literal["auto", "manual", "disabled"] = "auto"
    stage_all: bool = True


class GitOperationsConfig(BaseModel):
    """Schema of ``git-operations.yaml``."""

    version: int = 1
    hooks: dict[str, GitHookConfig] = Field(default_factory=dict)
    defaults: GitHookDefaults = Field(default_factory=GitHookDefaults)

    @field_validator("version")
    @classmethod
    def supported_version(cls, v: int) -> int:
        if v != 1:
            raise ValueError(f"Unsupported git-operations version: {v}")
        return v

    def resolve_hook(self, name: str) -> GitHookConfig | None:
        """Return the hook with defaults applied, or None if it is not defined.

        A hook without a push strategy inherits ``defaults.push_strategy``.
        An empty file list stages everything only when ``defaults.stage_all``
        is set, so an explicit list is never widened.
        """
        hook = self.hooks.get(name)
        if hook is None:
            return None
        files = hook.commit.files or (["."] if self.defaults.stage_all else [])
        return GitHookConfig(
            enabled=hook.enabled,
            commit=HookCommitConfig(message=hook.commit.message, files=files),
            push=HookPushConfig(
                strategy=hook.push.strategy or self.defaults.push_strategy
            ),
        )


def _load_yaml(path: Path) -> Any:
    if path in _cache:
        return _cache[path]

    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    logger.debug(f"Loaded config file {path}")
    _cache[path] = data
    return data


def clear_config_cache() -> None:
    """Forget all cached files (tests and hot reload)."""
    _cache.clear()


def load_state_machine_config(
    name: str, config_dir: Path | None = None
) -> StateMachineConfig:
    """Load and schema-check ``state-machines/<name>.yaml``.

    Raises:
        ConfigurationError: If the file is missing or does not match the schema
    """
    path = (config_dir or DEFAULT_CONFIG_DIR) / "state-machines" / f"{name}.yaml"
    data = _load_yaml(path)
    try:
        return StateMachineModel.model_validate(data).to_config()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid state machine definition {path}: {e}") from e


def load_state_machine(name: str, config_dir: Path | None = None) -> StateMachine:
    """Load a state machine definition and build the machine.

    Raises:
        ConfigurationError: If the file is missing or malformed
        InvalidConfigError: If the definition references unknown states
    """
    return StateMachine(load_state_machine_config(name, config_dir))


def dev_flow_state_machine(config_dir: Path | None = None) -> StateMachine:
    """The state machine governing ``Version.dev_status``."""
    return load_state_machine(DEV_FLOW, config_dir)


def load_git_operations(config_dir: Path | None = None) -> GitOperationsConfig:
    """Load ``git-operations.yaml``.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = (config_dir or DEFAULT_CONFIG_DIR) / GIT_OPERATIONS_FILE
    data = _load_yaml(path)
    try:
        return GitOperationsConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid git operations config {path}: {e}") from e
