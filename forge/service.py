"""Outcome-returning facade over the execution use cases.

Callers such as a transport layer receive ``Ok(value)`` or a ``Failure`` with
a closed ``FailureKind`` instead of catching exceptions. Only ForgeError
subclasses are converted; anything else is a bug or an I/O fault and
propagates.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from forge import execution as use_cases
from forge.errors import (
    AgentError,
    ConfigurationError,
    DuplicateExecutionError,
    ForgeError,
    GitError,
    NotFoundError,
    PlanFileNotFoundError,
    ValidationError,
)
from forge.execution import AbortResult, ExecutionDeps
from forge.models import Execution, TaskAttempt
from forge.state_machine import (
    InvalidConfigError,
    InvalidStateError,
    InvalidTransitionError,
)

T = TypeVar("T")


class FailureKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_STATE = "invalid_state"
    INVALID_CONFIG = "invalid_config"
    CONFIGURATION = "configuration"
    FILE_NOT_FOUND = "file_not_found"
    GIT = "git"
    AGENT = "agent"
    UNKNOWN = "unknown"


# Subclasses before their bases
_KIND_BY_ERROR: tuple[tuple[type[ForgeError], FailureKind], ...] = (
    (ValidationError, FailureKind.VALIDATION),
    (NotFoundError, FailureKind.NOT_FOUND),
    (DuplicateExecutionError, FailureKind.DUPLICATE),
    (InvalidTransitionError, FailureKind.INVALID_TRANSITION),
    (InvalidStateError, FailureKind.INVALID_STATE),
    (InvalidConfigError, FailureKind.INVALID_CONFIG),
    (ConfigurationError, FailureKind.CONFIGURATION),
    (PlanFileNotFoundError, FailureKind.FILE_NOT_FOUND),
    (GitError, FailureKind.GIT),
    (AgentError, FailureKind.AGENT),
)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class Failure:
    """A typed failure; ``field`` and ``entity`` are set when the error has them."""

    kind: FailureKind
    message: str
    code: str
    field: str | None = None
    entity: str | None = None
    entity_id: str | None = None
    ok: bool = False

    @classmethod
    def from_error(cls, error: ForgeError) -> "Failure":
        kind = next(
            (k for error_type, k in _KIND_BY_ERROR if isinstance(error, error_type)),
            FailureKind.UNKNOWN,
        )
        return cls(
            kind=kind,
            message=error.message,
            code=error.code,
            field=getattr(error, "field", None),
            entity=getattr(error, "entity", None),
            entity_id=getattr(error, "entity_id", None),
        )


Outcome = Ok[T] | Failure


def _capture(call: Callable[[], T]) -> "Ok[T] | Failure":
    try:
        return Ok(call())
    except ForgeError as e:
        return Failure.from_error(e)


class ExecutionService:
    """The execution operations exposed to a presentation layer."""

    def __init__(self, deps: ExecutionDeps) -> None:
        self.deps = deps

    def start(self, version_id: str) -> "Ok[Execution] | Failure":
        return _capture(lambda: use_cases.start_execution(self.deps, version_id))

    def pause(self, execution_id: str) -> "Ok[Execution] | Failure":
        return _capture(lambda: use_cases.pause_execution(self.deps, execution_id))

    def resume(self, execution_id: str) -> "Ok[Execution] | Failure":
        return _capture(lambda: use_cases.resume_execution(self.deps, execution_id))

    def retry(self, execution_id: str, task_id: str) -> "Ok[Execution] | Failure":
        return _capture(
            lambda: use_cases.retry_task(self.deps, execution_id, task_id)
        )

    def skip(self, execution_id: str, task_id: str) -> "Ok[Execution] | Failure":
        return _capture(lambda: use_cases.skip_task(self.deps, execution_id, task_id))

    def abort(self, execution_id: str) -> "Ok[AbortResult] | Failure":
        return _capture(lambda: use_cases.abort_execution(self.deps, execution_id))

    def status(self, execution_id: str) -> "Ok[Execution] | Failure":
        return _capture(
            lambda: use_cases.get_execution_status(self.deps, execution_id)
        )

    def attempts(self, execution_id: str) -> "Ok[list[TaskAttempt]] | Failure":
        return _capture(lambda: use_cases.get_task_attempts(self.deps, execution_id))
