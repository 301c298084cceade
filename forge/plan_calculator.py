"""Scheduling calculations over a parsed ExecutionPlan.

All functions are pure. Two rules drive everything here:

- Only ``completed`` satisfies a dependency. ``skipped`` means "chose not to
  do this" and must not silently unblock dependents.
- Progress counts both ``completed`` and ``skipped`` as done.
"""

import math
from dataclasses import dataclass, replace
from typing import Literal

from forge.models import DONE_STATUSES, ExecutionPlan, Milestone, Task, TaskStatus

NextTaskReason = Literal["task_found", "all_completed", "blocked", "no_pending"]


@dataclass(frozen=True)
class NextTaskResult:
    """Scheduling decision returned by get_next_task.

    For ``blocked`` the task is the first pending task in document order and
    ``blocked_by`` lists its unsatisfied dependency ids.
    """

    reason: NextTaskReason
    task: Task | None = None
    milestone: Milestone | None = None
    blocked_by: tuple[str, ...] = ()


@dataclass(frozen=True)
class PlanProgress:
    completed: int
    total: int
    percent: int


@dataclass(frozen=True)
class BlockedTask:
    task: Task
    blocked_by: tuple[str, ...]


def _task_map(plan: ExecutionPlan) -> dict[str, Task]:
    return {task.id: task for task in plan.iter_tasks()}


def _unsatisfied_dependencies(task: Task, tasks: dict[str, Task]) -> tuple[str, ...]:
    # Unknown ids block too: the plan cannot prove they are done
    return tuple(
        dep
        for dep in task.depends
        if dep not in tasks or tasks[dep].status != "completed"
    )


def get_next_task(plan: ExecutionPlan) -> NextTaskResult:
    """Pick the next runnable task.

    Selection logic:
    1. First pending task (document order) whose dependencies are all completed
    2. No pending tasks: ``all_completed`` if every task is completed or
       skipped, otherwise ``no_pending``
    3. Pending tasks exist but none is runnable: the first pending task,
       tagged ``blocked``, with its unsatisfied dependencies

    Args:
        plan: The execution plan

    Returns:
        NextTaskResult with reason
    """
    tasks = _task_map(plan)
    pending = [
        (task, milestone)
        for milestone in plan.milestones
        for task in milestone.tasks
        if task.status == "pending"
    ]

    if not pending:
        reason: NextTaskReason = (
            "all_completed" if is_all_completed(plan) else "no_pending"
        )
        return NextTaskResult(reason=reason)

    for task, milestone in pending:
        if not _unsatisfied_dependencies(task, tasks):
            return NextTaskResult(reason="task_found", task=task, milestone=milestone)

    anchor, milestone = pending[0]
    return NextTaskResult(
        reason="blocked",
        task=anchor,
        milestone=milestone,
        blocked_by=_unsatisfied_dependencies(anchor, tasks),
    )


def get_progress(plan: ExecutionPlan) -> PlanProgress:
    """Count completed and skipped tasks as done."""
    all_tasks = plan.iter_tasks()
    total = len(all_tasks)
    completed = sum(1 for task in all_tasks if task.status in DONE_STATUSES)
    # Halves round up
    percent = math.floor(completed * 100 / total + 0.5) if total else 0
    return PlanProgress(completed=completed, total=total, percent=percent)


def is_all_completed(plan: ExecutionPlan) -> bool:
    return all(task.status in DONE_STATUSES for task in plan.iter_tasks())


def get_blocked_tasks(plan: ExecutionPlan) -> list[BlockedTask]:
    """Every pending task with at least one unsatisfied dependency."""
    tasks = _task_map(plan)
    blocked = []
    for task in plan.iter_tasks():
        if task.status != "pending":
            continue
        unsatisfied = _unsatisfied_dependencies(task, tasks)
        if unsatisfied:
            blocked.append(BlockedTask(task=task, blocked_by=unsatisfied))
    return blocked


def get_unknown_dependencies(plan: ExecutionPlan) -> dict[str, tuple[str, ...]]:
    """Map task id to the dependency ids that name no task in the plan."""
    tasks = _task_map(plan)
    unknown = {}
    for task in plan.iter_tasks():
        missing = tuple(dep for dep in task.depends if dep not in tasks)
        if missing:
            unknown[task.id] = missing
    return unknown


def find_task(plan: ExecutionPlan, task_id: str) -> tuple[Task, Milestone] | None:
    for milestone in plan.milestones:
        for task in milestone.tasks:
            if task.id == task_id:
                return task, milestone
    return None


def update_task_status(
    plan: ExecutionPlan, task_id: str, status: TaskStatus
) -> ExecutionPlan:
    """Return a new plan with one task's status changed.

    Counters move by the delta of the change: entering the done set adds one,
    leaving it subtracts one, and moving between two done statuses (e.g.
    completed -> skipped) leaves them untouched. Unknown task ids return an
    equal plan.

    Args:
        plan: The execution plan
        task_id: The task to update
        status: The new status

    Returns:
        New ExecutionPlan value; the input is not modified
    """
    delta = 0
    milestones = []
    for milestone in plan.milestones:
        milestone_delta = 0
        tasks = []
        for task in milestone.tasks:
            if task.id == task_id and task.status != status:
                was_done = task.status in DONE_STATUSES
                is_done = status in DONE_STATUSES
                if is_done and not was_done:
                    milestone_delta += 1
                elif was_done and not is_done:
                    milestone_delta -= 1
                task = replace(task, status=status)
            tasks.append(task)
        delta += milestone_delta
        milestones.append(
            replace(
                milestone,
                tasks=tuple(tasks),
                completed_count=milestone.completed_count + milestone_delta,
            )
        )

    return replace(
        plan,
        milestones=tuple(milestones),
        completed_tasks=plan.completed_tasks + delta,
    )
