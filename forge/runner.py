"""Execution runner: drives the agent through a version's plan.

The runner re-reads the plan document before every scheduling decision, so
manual edits and skips made while it waits are picked up. Pausing is
cooperative: the pause flag is checked between tasks and never interrupts
a task in flight.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from opentelemetry import trace

from forge import telemetry
from forge.errors import AgentError, ForgeError, NotFoundError
from forge.execution import ExecutionDeps
from forge.git_hooks import HookContext, HookResult, execute_hook
from forge.models import (
    TERMINAL_EXECUTION_STATUSES,
    Execution,
    ExecutionPlan,
    Milestone,
    Project,
    Task,
    Version,
)
from forge.plan_calculator import get_next_task, update_task_status
from forge.plan_parser import parse_plan
from forge.plan_writer import atomic_update_task_status

logger = logging.getLogger(__name__)

TASK_COMPLETE_HOOK = "task_complete"
MILESTONE_COMPLETE_HOOK = "milestone_complete"

RunStatus = Literal["completed", "paused", "aborted", "failed"]


@dataclass
class ExecutionEvents:
    """Optional callbacks fired as the runner makes progress.

    Every callback is optional. The CLI uses these to print progress; tests
    use them to observe ordering.
    """

    on_task_start: Callable[[Task], None] | None = None
    on_task_done: Callable[[Task], None] | None = None
    on_task_failed: Callable[[Task, str], None] | None = None
    on_blocked: Callable[[Task, tuple[str, ...]], None] | None = None
    on_paused: Callable[[Execution], None] | None = None
    on_resumed: Callable[[Execution], None] | None = None
    on_progress: Callable[[int, int], None] | None = None
    on_completed: Callable[[Execution], None] | None = None
    on_hook: Callable[[str, HookResult], None] | None = None

    def emit(self, name: str, *args: Any) -> None:
        callback = getattr(self, name)
        if callback is not None:
            callback(*args)


@dataclass
class RunResult:
    execution_id: str
    status: RunStatus
    tasks_run: int = 0
    tasks_failed: int = 0
    last_error: str | None = None
    hook_results: list[HookResult] = field(default_factory=list)


def build_task_prompt(task: Task, milestone: Milestone, plan_path: str) -> str:
    """Fixed prompt handed to the agent for one task."""
    lines = [
        f"You are implementing task {task.id} of milestone {milestone.id}: {milestone.name}.",
        "",
        f"Task: {task.description}",
    ]
    if milestone.description:
        lines += ["", f"Milestone context: {milestone.description}"]
    if task.verification:
        lines += ["", f"Verify your work: {task.verification}"]
    lines += [
        "",
        f"The full plan is in {plan_path}. Do not edit task checkboxes in that file.",
        "Complete only this task, then stop.",
    ]
    return "\n".join(lines)


def _load(deps: ExecutionDeps, execution_id: str) -> Execution:
    execution = deps.executions.find_by_id(execution_id)
    if execution is None:
        raise NotFoundError("Execution", execution_id)
    return execution


def _transition_if_possible(deps: ExecutionDeps, version_id: str, event: str) -> bool:
    version = deps.versions.find_by_id(version_id)
    if version is None or not deps.state_machine.can_transition(version.dev_status, event):
        return False
    deps.versions.update_status(
        version_id, deps.state_machine.transition(version.dev_status, event)
    )
    return True


def _mark_resumed(
    deps: ExecutionDeps, execution_id: str, version_id: str, events: ExecutionEvents
) -> None:
    deps.executions.update_status(execution_id, "running")
    current = deps.versions.find_by_id(version_id)
    if current is not None and current.dev_status == "paused":
        _transition_if_possible(deps, version_id, "RESUME")
    events.emit("on_resumed", _load(deps, execution_id))


async def _wait_while_paused(deps: ExecutionDeps, execution_id: str) -> Execution:
    while True:
        await asyncio.sleep(deps.config.poll_interval_seconds)
        execution = _load(deps, execution_id)
        if not execution.is_paused or execution.status in TERMINAL_EXECUTION_STATUSES:
            return execution


def _run_hook(
    deps: ExecutionDeps,
    name: str,
    context: HookContext,
    commit_enabled: bool,
    events: ExecutionEvents,
    tracer: trace.Tracer,
) -> HookResult | None:
    hook = deps.git_operations.resolve_hook(name) if deps.git_operations else None
    if hook is None:
        logger.debug(f"No '{name}' hook configured")
        return None

    with tracer.start_as_current_span("forge.git_hook") as span:
        span.set_attribute("hook.name", name)
        result = execute_hook(
            hook, context, commit_enabled, deps.config.push_strategy, deps.git
        )
        if result.skipped:
            outcome = "skipped"
        elif result.success:
            outcome = "committed"
        else:
            outcome = "failed"
        span.set_attribute("hook.result", outcome)
        if result.commit_hash:
            span.set_attribute("hook.commit", result.commit_hash)

    telemetry.record_git_hook(name, outcome)
    if not result.success:
        logger.warning(f"Hook '{name}' failed: {result.error}")
    elif result.push_failed:
        logger.warning(f"Hook '{name}' committed but push failed: {result.push_error}")
    events.emit("on_hook", name, result)
    return result


async def run_execution(
    execution_id: str,
    deps: ExecutionDeps,
    events: ExecutionEvents | None = None,
    stop_on_pause: bool = False,
    tracer: trace.Tracer | None = None,
) -> RunResult:
    """Run tasks until the plan is done, the execution pauses or it is aborted.

    Args:
        execution_id: Execution created by ``start_execution``
        deps: Shared collaborators
        events: Optional progress callbacks
        stop_on_pause: Return when the execution pauses instead of polling
            for a resume
        tracer: OpenTelemetry tracer (uses the global one if None)

    Returns:
        RunResult with the final status

    Raises:
        NotFoundError: If the execution, its version or project is missing
    """
    events = events or ExecutionEvents()
    tracer = tracer or trace.get_tracer("forge")

    execution = _load(deps, execution_id)
    version = deps.versions.find_by_id(execution.version_id)
    if version is None:
        raise NotFoundError("Version", execution.version_id)
    project = deps.projects.find_by_id(version.project_id)
    if project is None:
        raise NotFoundError("Project", version.project_id)
    plan_path = deps.config.plan_path(project.path)

    result = RunResult(execution_id=execution_id, status="completed")
    if execution.status in TERMINAL_EXECUTION_STATUSES:
        result.status = execution.status
        return result

    with tracer.start_as_current_span("forge.execution") as span:
        span.set_attribute("execution.id", execution_id)
        span.set_attribute("execution.version_id", version.id)
        span.set_attribute("execution.total_tasks", execution.total_tasks)

        await _run_loop(
            deps, execution_id, version, project, str(plan_path),
            events, stop_on_pause, tracer, result,
        )

        span.set_attribute("execution.status", result.status)
        span.set_attribute("execution.tasks_run", result.tasks_run)
        span.set_attribute("execution.tasks_failed", result.tasks_failed)

    telemetry.record_execution(result.status)
    logger.info(
        f"Execution {execution_id} finished run with status {result.status} "
        f"({result.tasks_run} tasks run, {result.tasks_failed} failed)"
    )
    return result


async def _run_loop(
    deps: ExecutionDeps,
    execution_id: str,
    version: Version,
    project: Project,
    plan_path: str,
    events: ExecutionEvents,
    stop_on_pause: bool,
    tracer: trace.Tracer,
    result: RunResult,
) -> None:
    while True:
        execution = _load(deps, execution_id)
        if execution.status in TERMINAL_EXECUTION_STATUSES:
            result.status = execution.status
            return

        if execution.status == "paused" and not execution.is_paused:
            # Resumed, retried or skipped while no runner was attached
            _mark_resumed(deps, execution_id, version.id, events)
            continue

        if execution.is_paused:
            if execution.status != "paused":
                deps.executions.update_status(execution_id, "paused")
            _transition_if_possible(deps, version.id, "PAUSE")
            execution = _load(deps, execution_id)
            events.emit("on_paused", execution)
            if stop_on_pause:
                result.status = "paused"
                result.last_error = execution.last_error
                return

            execution = await _wait_while_paused(deps, execution_id)
            if execution.status in TERMINAL_EXECUTION_STATUSES:
                result.status = execution.status
                return
            _mark_resumed(deps, execution_id, version.id, events)
            continue

        try:
            plan = parse_plan(deps.fs.read_file(plan_path))
        except ForgeError as e:
            logger.error(f"Cannot read plan for execution {execution_id}: {e}")
            deps.executions.complete(execution_id, "failed", last_error=str(e))
            _transition_if_possible(deps, version.id, "FAIL")
            result.status = "failed"
            result.last_error = str(e)
            return

        decision = get_next_task(plan)

        if decision.reason in ("all_completed", "no_pending"):
            completed = deps.executions.complete(execution_id, "completed")
            if not _transition_if_possible(deps, version.id, "COMPLETE"):
                logger.warning(f"COMPLETE not allowed, forcing version {version.id} to completed")
                deps.versions.update_status(version.id, "completed")
            events.emit("on_completed", completed)
            result.status = "completed"
            return

        task, milestone = decision.task, decision.milestone
        if task is None or milestone is None:
            raise ForgeError(f"Scheduler returned '{decision.reason}' without a task")

        if decision.reason == "blocked":
            logger.info(f"Task {task.id} blocked by {', '.join(decision.blocked_by)}")
            deps.executions.update_progress(execution_id, current_task_id=task.id)
            deps.executions.update_status(execution_id, "paused")
            deps.executions.set_paused(execution_id, True)
            events.emit("on_blocked", task, decision.blocked_by)
            continue

        await _run_task(
            deps, execution_id, version, project, plan, task, milestone,
            plan_path, events, tracer, result,
        )


async def _run_task(
    deps: ExecutionDeps,
    execution_id: str,
    version: Version,
    project: Project,
    plan: ExecutionPlan,
    task: Task,
    milestone: Milestone,
    plan_path: str,
    events: ExecutionEvents,
    tracer: trace.Tracer,
    result: RunResult,
) -> None:
    deps.executions.update_progress(execution_id, current_task_id=task.id)
    attempt = deps.task_attempts.create(execution_id, task.id)
    events.emit("on_task_start", task)
    result.tasks_run += 1

    with tracer.start_as_current_span("forge.task") as span:
        span.set_attribute("task.id", task.id)
        span.set_attribute("task.milestone", milestone.id)
        span.set_attribute("task.attempt", attempt.attempt_number)

        started = time.monotonic()
        error: str | None = None
        try:
            agent_result = await deps.agent.execute(
                build_task_prompt(task, milestone, plan_path),
                project.path,
                timeout=deps.config.task_timeout_seconds,
                max_turns=deps.config.max_turns,
                allowed_tools=deps.config.allowed_tools,
            )
            if not agent_result.success:
                error = agent_result.error or "Task failed"
            else:
                span.set_attribute("agent.cost_usd", agent_result.cost_usd)
        except AgentError as e:
            error = str(e)
        duration = time.monotonic() - started

        span.set_attribute("task.status", "failed" if error else "completed")
        span.set_attribute("task.duration_seconds", duration)

    execution = _load(deps, execution_id)
    if execution.status in TERMINAL_EXECUTION_STATUSES:
        # Aborted while the agent ran: the tree is already rolled back
        logger.info(
            f"Execution {execution_id} was {execution.status} during task {task.id}; "
            f"discarding the task result"
        )
        deps.task_attempts.complete(
            attempt.id, "failed", error_message=f"Execution {execution.status}"
        )
        result.status = execution.status
        return

    if error is not None:
        deps.task_attempts.complete(attempt.id, "failed", error_message=error)
        logger.warning(f"Task {task.id} failed: {error}")
        telemetry.record_task("failed", duration)
        result.tasks_failed += 1
        result.last_error = error
        deps.executions.update_status(execution_id, "paused", last_error=error)
        deps.executions.set_paused(execution_id, True)
        _transition_if_possible(deps, version.id, "TASK_FAILED")
        events.emit("on_task_failed", task, error)
        return

    deps.task_attempts.complete(attempt.id, "completed")
    telemetry.record_task("completed", duration)
    atomic_update_task_status(deps.fs, plan_path, task.id, "completed")
    execution = deps.executions.update_progress(
        execution_id,
        completed_tasks=execution.completed_tasks + 1,
        clear_current_task=True,
    ) or execution
    logger.info(f"Task {task.id} completed")
    events.emit("on_task_done", task)
    events.emit("on_progress", execution.completed_tasks, execution.total_tasks)

    context = HookContext(
        project_path=project.path,
        version_name=version.name,
        project_name=project.name,
        milestone_name=milestone.name,
    )
    hook_result = _run_hook(
        deps, TASK_COMPLETE_HOOK, context, deps.config.auto_commit_on_task, events, tracer
    )
    if hook_result is not None:
        result.hook_results.append(hook_result)

    updated_plan = update_task_status(plan, task.id, "completed")
    updated_milestone = next(m for m in updated_plan.milestones if m.id == milestone.id)
    if updated_milestone.completed_count == updated_milestone.total_count:
        hook_result = _run_hook(
            deps,
            MILESTONE_COMPLETE_HOOK,
            context,
            deps.config.auto_commit_on_milestone,
            events,
            tracer,
        )
        if hook_result is not None:
            result.hook_results.append(hook_result)
