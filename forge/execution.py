"""Execution lifecycle use cases.

Each function validates its inputs, looks up the entities it needs and then
applies one lifecycle step to the execution record, the plan document and
the version's dev-flow status. Failures are raised as ForgeError
subclasses; ``forge.service`` turns them into Outcome values for callers
that prefer not to handle exceptions.

The ``is_paused`` flag and ``status`` are separate: ``pause_execution`` only
raises the flag, and the runner moves ``status`` to ``paused`` once it
observes the flag between tasks.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from forge.agent import ClaudeAgent
from forge.config import ForgeConfig
from forge.config_loader import (
    GitHookConfig,
    GitOperationsConfig,
    HookCommitConfig,
    dev_flow_state_machine,
    load_git_operations,
)
from forge.errors import (
    DuplicateExecutionError,
    GitError,
    NotFoundError,
    PlanFileNotFoundError,
    ValidationError,
)
from forge.filesystem import LocalFileSystem
from forge.git import GitAdapter
from forge.git_hooks import HookContext, execute_hook
from forge.models import Execution, Project, TaskAttempt, Version
from forge.plan_calculator import find_task, get_progress
from forge.plan_parser import parse_plan
from forge.plan_writer import atomic_update_task_status
from forge.repositories import (
    ExecutionRepository,
    ProjectRepository,
    TaskAttemptRepository,
    VersionRepository,
)
from forge.state_machine import StateMachine

logger = logging.getLogger(__name__)

PRE_EXECUTION_HOOK = "pre_execution"
SNAPSHOT_MESSAGE = "chore(execution): pre-execution snapshot"
_FALLBACK_PRE_EXECUTION_HOOK = GitHookConfig(
    commit=HookCommitConfig(message="chore: snapshot before execution", files=["."])
)


@dataclass
class ExecutionDeps:
    """Collaborators shared by the use cases and the runner."""

    projects: ProjectRepository
    versions: VersionRepository
    executions: ExecutionRepository
    task_attempts: TaskAttemptRepository
    fs: LocalFileSystem
    git: GitAdapter
    agent: ClaudeAgent
    state_machine: StateMachine
    config: ForgeConfig = field(default_factory=ForgeConfig)
    git_operations: GitOperationsConfig | None = None

    @classmethod
    def from_config(cls, config: ForgeConfig) -> "ExecutionDeps":
        """Wire the default local adapters for *config*."""
        return cls(
            projects=ProjectRepository(config.state_dir),
            versions=VersionRepository(config.state_dir),
            executions=ExecutionRepository(config.state_dir),
            task_attempts=TaskAttemptRepository(config.state_dir),
            fs=LocalFileSystem(),
            git=GitAdapter(),
            agent=ClaudeAgent(),
            state_machine=dev_flow_state_machine(config.config_dir),
            config=config,
            git_operations=load_git_operations(config.config_dir),
        )


@dataclass
class AbortResult:
    execution: Execution
    reset_failed: bool = False
    reset_error: str | None = None


def _require(value: str | None, field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} is required", field=field_name)
    return value


def _get_execution(deps: ExecutionDeps, execution_id: str) -> Execution:
    execution = deps.executions.find_by_id(execution_id)
    if execution is None:
        raise NotFoundError("Execution", execution_id)
    return execution


def _get_version(deps: ExecutionDeps, version_id: str) -> Version:
    version = deps.versions.find_by_id(version_id)
    if version is None:
        raise NotFoundError("Version", version_id)
    return version


def _get_project(deps: ExecutionDeps, project_id: str) -> Project:
    project = deps.projects.find_by_id(project_id)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


def _is_awaiting_decision(execution: Execution) -> bool:
    return execution.is_paused or execution.status == "paused"


def _resolve_hook(deps: ExecutionDeps, name: str) -> GitHookConfig | None:
    if deps.git_operations is None:
        return None
    return deps.git_operations.resolve_hook(name)


def _transition_version(deps: ExecutionDeps, version: Version, event: str) -> Version:
    new_status = deps.state_machine.transition(version.dev_status, event)
    updated = deps.versions.update_status(version.id, new_status)
    return updated if updated is not None else version


def _commit_dirty_tree(
    deps: ExecutionDeps, project: Project, version: Version
) -> None:
    hook = _resolve_hook(deps, PRE_EXECUTION_HOOK) or _FALLBACK_PRE_EXECUTION_HOOK
    result = execute_hook(
        hook,
        HookContext(
            project_path=project.path,
            version_name=version.name,
            project_name=project.name,
        ),
        commit_enabled=True,
        push_strategy=deps.config.push_strategy,
        git=deps.git,
    )
    if not result.success:
        raise GitError("commit", result.error or "pre-execution commit failed")
    if result.skipped:
        # Only reached with a dirty tree, so nothing was committed
        raise ValidationError(
            f"Working tree has uncommitted changes and the pre-execution commit "
            f"was skipped: {result.skipped_reason}",
            field="git",
        )
    if result.commit_hash:
        logger.info(f"Committed pending changes before execution: {result.commit_hash}")


def _take_snapshot(deps: ExecutionDeps, project_path: str) -> str | None:
    try:
        return deps.git.commit_with_options(
            project_path, SNAPSHOT_MESSAGE, allow_empty=True
        )
    except GitError as e:
        # Without a snapshot, abort skips the working tree reset
        logger.warning(f"Pre-execution snapshot failed, continuing without it: {e}")
        return None


def start_execution(deps: ExecutionDeps, version_id: str) -> Execution:
    """Start executing a version's plan.

    Returns the existing execution unchanged when the version already has a
    running or paused one.

    Raises:
        ValidationError: Version not ready, agent unavailable, plan missing or
            empty, or dirty working tree that auto-commit did not commit
        NotFoundError: Version or project does not exist
        GitError: The auto-commit of a dirty tree failed
    """
    _require(version_id, "version_id")
    version = _get_version(deps, version_id)

    for existing in deps.executions.find_by_version(version_id):
        if existing.is_active:
            logger.info(f"Version {version_id} already executing: {existing.id}")
            return existing

    if version.dev_status != "ready":
        raise ValidationError(
            f"Version must be in 'ready' status to start (current: {version.dev_status})",
            field="dev_status",
        )

    project = _get_project(deps, version.project_id)

    if not deps.agent.is_available():
        raise ValidationError("AI agent is not available", field="agent")

    plan_path = deps.config.plan_path(project.path)
    try:
        plan = parse_plan(deps.fs.read_file(plan_path))
    except PlanFileNotFoundError as e:
        raise ValidationError(f"Plan document not found: {plan_path}", field="plan") from e
    if plan.total_tasks == 0:
        raise ValidationError("Plan has no tasks to execute", field="tasks")

    pre_execution_commit = None
    if deps.git.is_repo(project.path):
        if deps.git.status(project.path).has_changes:
            if not deps.config.auto_commit_before_execution:
                raise ValidationError(
                    "Working tree has uncommitted changes; commit or stash them first",
                    field="git",
                )
            _commit_dirty_tree(deps, project, version)
        pre_execution_commit = _take_snapshot(deps, project.path)

    execution = Execution(
        id=str(uuid.uuid4()),
        version_id=version_id,
        started_at=datetime.now(timezone.utc),
        status="running",
        total_tasks=plan.total_tasks,
        completed_tasks=get_progress(plan).completed,
        pre_execution_commit=pre_execution_commit,
        is_paused=False,
    )
    try:
        execution = deps.executions.create(execution)
    except DuplicateExecutionError as e:
        # Lost a race with a concurrent start
        existing = deps.executions.find_by_id(e.execution_id)
        if existing is not None:
            return existing
        raise

    _transition_version(deps, version, "START")
    logger.info(f"Started execution {execution.id} for version {version_id}")
    return execution


def pause_execution(deps: ExecutionDeps, execution_id: str) -> Execution:
    """Ask the runner to stop after the task in flight finishes."""
    _require(execution_id, "execution_id")
    execution = _get_execution(deps, execution_id)
    if execution.status != "running":
        raise ValidationError(
            f"Only running executions can be paused (status: {execution.status})",
            field="status",
        )
    updated = deps.executions.set_paused(execution_id, True)
    logger.info(f"Pause requested for execution {execution_id}")
    return updated or execution


def resume_execution(deps: ExecutionDeps, execution_id: str) -> Execution:
    """Clear the pause flag so the runner continues."""
    _require(execution_id, "execution_id")
    execution = _get_execution(deps, execution_id)
    if not _is_awaiting_decision(execution):
        raise ValidationError("Execution is not paused", field="status")
    updated = deps.executions.set_paused(execution_id, False)
    logger.info(f"Resumed execution {execution_id}")
    return updated or execution


def _hand_back(
    deps: ExecutionDeps, execution: Execution, event: str
) -> None:
    version = _get_version(deps, execution.version_id)
    # The runner may not have observed the pause yet
    if version.dev_status != "executing":
        _transition_version(deps, version, event)


def retry_task(deps: ExecutionDeps, execution_id: str, task_id: str) -> Execution:
    """Let the runner run the current task again."""
    _require(execution_id, "execution_id")
    _require(task_id, "task_id")
    execution = _get_execution(deps, execution_id)
    if not _is_awaiting_decision(execution):
        raise ValidationError("Execution must be paused to retry a task", field="status")

    _hand_back(deps, execution, "RETRY")
    updated = deps.executions.set_paused(execution_id, False)
    logger.info(f"Retrying task {task_id} in execution {execution_id}")
    return updated or execution


def skip_task(deps: ExecutionDeps, execution_id: str, task_id: str) -> Execution:
    """Mark a task skipped in the plan document and continue.

    A skipped task counts toward progress but does not satisfy dependencies.

    Raises:
        ValidationError: Execution not paused, or the task is already done
        NotFoundError: Execution, version, project or task does not exist
    """
    _require(execution_id, "execution_id")
    _require(task_id, "task_id")
    execution = _get_execution(deps, execution_id)
    if not _is_awaiting_decision(execution):
        raise ValidationError("Execution must be paused to skip a task", field="status")

    version = _get_version(deps, execution.version_id)
    project = _get_project(deps, version.project_id)
    plan_path = deps.config.plan_path(project.path)

    found = find_task(parse_plan(deps.fs.read_file(plan_path)), task_id)
    if found is None:
        raise NotFoundError("Task", task_id)
    task, _ = found
    if task.is_done:
        raise ValidationError(
            f"Task {task_id} is already {task.status}", field="task_id"
        )

    atomic_update_task_status(deps.fs, plan_path, task_id, "skipped")
    deps.executions.update_progress(
        execution_id,
        completed_tasks=execution.completed_tasks + 1,
        clear_current_task=True,
    )
    _hand_back(deps, execution, "RESUME")
    updated = deps.executions.set_paused(execution_id, False)
    logger.info(f"Skipped task {task_id} in execution {execution_id}")
    return updated or execution


def abort_execution(deps: ExecutionDeps, execution_id: str) -> AbortResult:
    """Stop an execution for good and roll the tree back to its snapshot.

    A failed rollback is reported on the result; the execution is aborted
    either way.
    """
    _require(execution_id, "execution_id")
    execution = _get_execution(deps, execution_id)
    if execution.status in ("completed", "aborted"):
        raise ValidationError(
            f"Execution is already {execution.status}", field="status"
        )
    version = _get_version(deps, execution.version_id)
    project = _get_project(deps, version.project_id)

    result = AbortResult(execution=execution)
    if execution.pre_execution_commit and deps.git.is_repo(project.path):
        try:
            deps.git.reset(project.path, execution.pre_execution_commit, mode="hard")
        except GitError as e:
            logger.warning(f"Rollback of execution {execution_id} failed: {e}")
            result.reset_failed = True
            result.reset_error = str(e)

    result.execution = deps.executions.complete(execution_id, "aborted") or execution

    if deps.state_machine.can_transition(version.dev_status, "ABORT"):
        _transition_version(deps, version, "ABORT")
    else:
        logger.warning(
            f"ABORT not allowed from '{version.dev_status}', forcing version {version.id} to ready"
        )
        deps.versions.update_status(version.id, "ready")

    logger.info(f"Aborted execution {execution_id}")
    return result


def get_execution_status(deps: ExecutionDeps, execution_id: str) -> Execution:
    _require(execution_id, "execution_id")
    return _get_execution(deps, execution_id)


def get_task_attempts(deps: ExecutionDeps, execution_id: str) -> list[TaskAttempt]:
    """Every agent run of the execution, oldest first."""
    _require(execution_id, "execution_id")
    _get_execution(deps, execution_id)
    return deps.task_attempts.find_by_execution(execution_id)


def get_stale_executions(deps: ExecutionDeps) -> list[Execution]:
    """Running or paused executions, typically left behind by a restart."""
    return deps.executions.find_running_or_paused()


def plan_path_for_version(deps: ExecutionDeps, version_id: str) -> Path:
    version = _get_version(deps, version_id)
    return deps.config.plan_path(_get_project(deps, version.project_id).path)
