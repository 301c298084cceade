"""Data models for forge.

Plan models (Task, Milestone, ExecutionPlan) are frozen: every plan update
produces a new value. Persisted entities (Project, Version, Execution) are
plain dataclasses serialized to JSON via ``to_dict``/``from_dict``.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

TaskStatus = Literal["pending", "running", "completed", "failed", "skipped"]
ExecutionStatus = Literal["running", "paused", "completed", "failed", "aborted"]
PushStrategy = Literal["auto", "manual", "disabled"]

# Statuses that count as "done" for progress (but only completed satisfies deps)
DONE_STATUSES: frozenset[str] = frozenset({"completed", "skipped"})
ACTIVE_EXECUTION_STATUSES: frozenset[str] = frozenset({"running", "paused"})
TERMINAL_EXECUTION_STATUSES: frozenset[str] = frozenset(
    {"completed", "failed", "aborted"}
)


@dataclass(frozen=True)
class Task:
    """A single unit of work parsed from the plan document."""

    id: str
    description: str
    milestone_id: str
    status: TaskStatus = "pending"
    verification: str = ""
    depends: tuple[str, ...] = ()

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES


@dataclass(frozen=True)
class Milestone:
    """An ordered group of tasks under one level-two heading."""

    id: str
    name: str
    description: str = ""
    tasks: tuple[Task, ...] = ()
    completed_count: int = 0

    @property
    def total_count(self) -> int:
        return len(self.tasks)


@dataclass(frozen=True)
class ExecutionPlan:
    """Parsed form of the plan document.

    ``total_tasks`` and ``completed_tasks`` are derived counters kept
    consistent by the parser and by ``plan_calculator.update_task_status``.
    """

    milestones: tuple[Milestone, ...] = ()
    total_tasks: int = 0
    completed_tasks: int = 0
    project_name: str | None = None

    def iter_tasks(self) -> list[Task]:
        return [task for milestone in self.milestones for task in milestone.tasks]


@dataclass
class Project:
    """A project working tree on disk."""

    id: str
    name: str
    path: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(**data)


@dataclass
class Version:
    """A version of a project; ``dev_status`` is governed by the dev-flow state machine."""

    id: str
    project_id: str
    name: str
    dev_status: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Version":
        return cls(**data)


@dataclass
class Execution:
    """One attempt to run all tasks of a version's plan.

    ``status`` is the coarse lifecycle state. ``is_paused`` is the cooperative
    stop request the runner polls between tasks; the two are tracked
    separately on purpose.

    Attributes:
        id: Execution identifier
        version_id: Version this execution belongs to
        started_at: When the execution record was created
        completed_at: When the execution reached a terminal status
        status: Lifecycle status
        total_tasks: Number of tasks in the plan at start
        completed_tasks: Tasks finished (completed or skipped) so far
        current_task_id: Task being executed, or the task awaiting a decision
        pre_execution_commit: Revision captured before the first task ran
        is_paused: Stop request flag observed by the runner between tasks
        last_error: Error message of the last failed task, if any
    """

    id: str
    version_id: str
    started_at: datetime
    status: ExecutionStatus = "running"
    total_tasks: int = 0
    completed_tasks: int = 0
    current_task_id: str | None = None
    pre_execution_commit: str | None = None
    is_paused: bool = False
    completed_at: datetime | None = None
    last_error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_EXECUTION_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["completed_at"] = (
            self.completed_at.isoformat() if self.completed_at else None
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Execution":
        data = dict(data)
        data["started_at"] = datetime.fromisoformat(data["started_at"])
        if data.get("completed_at"):
            data["completed_at"] = datetime.fromisoformat(data["completed_at"])
        return cls(**data)


@dataclass
class TaskAttempt:
    """One agent run for one task of an execution.

    Retries of the same task get increasing ``attempt_number`` values, so
    earlier failures stay on record.
    """

    id: str
    execution_id: str
    task_id: str
    attempt_number: int
    started_at: datetime
    status: TaskStatus = "running"
    completed_at: datetime | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["completed_at"] = (
            self.completed_at.isoformat() if self.completed_at else None
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskAttempt":
        data = dict(data)
        data["started_at"] = datetime.fromisoformat(data["started_at"])
        if data.get("completed_at"):
            data["completed_at"] = datetime.fromisoformat(data["completed_at"])
        return cls(**data)


@dataclass(frozen=True)
class GitStatus:
    """Working tree status as reported by the git adapter."""

    staged: list[str] = field(default_factory=list)
    unstaged: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    branch: str = "main"
    ahead: int = 0
    behind: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.staged or self.unstaged or self.untracked or self.deleted)


@dataclass
class AgentResult:
    """Outcome of one AI agent invocation for a task."""

    success: bool
    output: str = ""
    error: str | None = None
    cost_usd: float = 0.0
    duration_ms: int = 0
    session_id: str = ""
