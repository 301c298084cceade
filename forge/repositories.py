"""JSON-file persistence for projects, versions, executions and task attempts.

Each record lives in its own JSON file under ``state_dir/<kind>/<id>.json``.
Lookups for missing records return None. Writes go through a temporary
file and ``os.replace`` so a crash never leaves a half-written record behind.
"""

import fcntl
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from forge.errors import DuplicateExecutionError, NotFoundError
from forge.models import (
    ACTIVE_EXECUTION_STATUSES,
    Execution,
    Project,
    TaskAttempt,
    TaskStatus,
    Version,
)

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class _JsonRecordStore:
    """One directory of ``<id>.json`` files."""

    def __init__(self, state_dir: Path, kind: str) -> None:
        self.directory = Path(state_dir) / kind

    def path_for(self, record_id: str) -> Path:
        return self.directory / f"{record_id}.json"

    def read(self, record_id: str) -> dict[str, Any] | None:
        path = self.path_for(record_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def write(self, record_id: str, data: dict[str, Any]) -> None:
        _atomic_write_json(self.path_for(record_id), data)

    def read_all(self) -> list[dict[str, Any]]:
        if not self.directory.exists():
            return []
        records = []
        for path in sorted(self.directory.glob("*.json")):
            with open(path, encoding="utf-8") as f:
                records.append(json.load(f))
        return records


class ProjectRepository:
    """Projects registered with forge."""

    def __init__(self, state_dir: Path) -> None:
        self._store = _JsonRecordStore(state_dir, "projects")

    def find_by_id(self, project_id: str) -> Project | None:
        data = self._store.read(project_id)
        return Project.from_dict(data) if data is not None else None

    def save(self, project: Project) -> Project:
        self._store.write(project.id, project.to_dict())
        return project

    def list_all(self) -> list[Project]:
        return [Project.from_dict(data) for data in self._store.read_all()]


class VersionRepository:
    """Versions and their dev-flow status."""

    def __init__(self, state_dir: Path) -> None:
        self._store = _JsonRecordStore(state_dir, "versions")

    def find_by_id(self, version_id: str) -> Version | None:
        data = self._store.read(version_id)
        return Version.from_dict(data) if data is not None else None

    def save(self, version: Version) -> Version:
        self._store.write(version.id, version.to_dict())
        return version

    def update_status(self, version_id: str, dev_status: str) -> Version | None:
        version = self.find_by_id(version_id)
        if version is None:
            return None
        version.dev_status = dev_status
        logger.info(f"Version {version_id} dev status -> {dev_status}")
        return self.save(version)

    def list_all(self) -> list[Version]:
        return [Version.from_dict(data) for data in self._store.read_all()]


class ExecutionRepository:
    """Execution records with a per-version single-active-execution guarantee.

    ``create`` takes an exclusive ``fcntl`` lock on ``executions.lock`` while
    it checks for and inserts an active execution, so two concurrent starts
    for the same version cannot both succeed, even across processes.
    """

    def __init__(self, state_dir: Path) -> None:
        self._store = _JsonRecordStore(state_dir, "executions")
        self.lock_path = Path(state_dir) / "executions.lock"

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a+", encoding="utf-8") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def find_by_id(self, execution_id: str) -> Execution | None:
        data = self._store.read(execution_id)
        return Execution.from_dict(data) if data is not None else None

    def find_by_version(self, version_id: str) -> list[Execution]:
        executions = [
            Execution.from_dict(data)
            for data in self._store.read_all()
            if data.get("version_id") == version_id
        ]
        return sorted(executions, key=lambda e: e.started_at)

    def find_running_or_paused(self) -> list[Execution]:
        executions = [
            Execution.from_dict(data)
            for data in self._store.read_all()
            if data.get("status") in ACTIVE_EXECUTION_STATUSES
        ]
        return sorted(executions, key=lambda e: e.started_at)

    def create(self, execution: Execution) -> Execution:
        """Insert a new execution.

        Raises:
            DuplicateExecutionError: If the version already has a running or
                paused execution
        """
        with self._exclusive():
            for existing in self.find_by_version(execution.version_id):
                if existing.is_active:
                    raise DuplicateExecutionError(execution.version_id, existing.id)
            self._store.write(execution.id, execution.to_dict())
        logger.info(
            f"Created execution {execution.id} for version {execution.version_id}"
        )
        return execution

    def _mutate(self, execution_id: str, **changes: Any) -> Execution | None:
        with self._exclusive():
            execution = self.find_by_id(execution_id)
            if execution is None:
                return None
            for name, value in changes.items():
                setattr(execution, name, value)
            self._store.write(execution.id, execution.to_dict())
        return execution

    def update_status(
        self, execution_id: str, status: str, last_error: str | None = None
    ) -> Execution | None:
        changes: dict[str, Any] = {"status": status}
        if last_error is not None:
            changes["last_error"] = last_error
        return self._mutate(execution_id, **changes)

    def update_progress(
        self,
        execution_id: str,
        completed_tasks: int | None = None,
        current_task_id: str | None = None,
        clear_current_task: bool = False,
    ) -> Execution | None:
        """Update progress counters.

        ``current_task_id=None`` leaves the field alone; pass
        ``clear_current_task=True`` to reset it.
        """
        changes: dict[str, Any] = {}
        if completed_tasks is not None:
            changes["completed_tasks"] = completed_tasks
        if clear_current_task:
            changes["current_task_id"] = None
        elif current_task_id is not None:
            changes["current_task_id"] = current_task_id
        return self._mutate(execution_id, **changes)

    def set_paused(self, execution_id: str, paused: bool) -> Execution | None:
        return self._mutate(execution_id, is_paused=paused)

    def complete(
        self, execution_id: str, status: str, last_error: str | None = None
    ) -> Execution | None:
        """Move an execution to a terminal status and stamp ``completed_at``."""
        changes: dict[str, Any] = {
            "status": status,
            "is_paused": False,
            "completed_at": datetime.now(timezone.utc),
        }
        if last_error is not None:
            changes["last_error"] = last_error
        return self._mutate(execution_id, **changes)


class TaskAttemptRepository:
    """Per-task run history of executions."""

    def __init__(self, state_dir: Path) -> None:
        self._store = _JsonRecordStore(state_dir, "task_attempts")

    def find_by_id(self, attempt_id: str) -> TaskAttempt | None:
        data = self._store.read(attempt_id)
        return TaskAttempt.from_dict(data) if data is not None else None

    def find_by_execution(self, execution_id: str) -> list[TaskAttempt]:
        attempts = [
            TaskAttempt.from_dict(data)
            for data in self._store.read_all()
            if data.get("execution_id") == execution_id
        ]
        return sorted(attempts, key=lambda a: (a.started_at, a.attempt_number))

    def find_by_task(self, execution_id: str, task_id: str) -> list[TaskAttempt]:
        attempts = [
            a for a in self.find_by_execution(execution_id) if a.task_id == task_id
        ]
        return sorted(attempts, key=lambda a: a.attempt_number)

    def create(self, execution_id: str, task_id: str) -> TaskAttempt:
        """Record a new running attempt numbered after the task's previous ones."""
        previous = self.find_by_task(execution_id, task_id)
        attempt = TaskAttempt(
            id=str(uuid.uuid4()),
            execution_id=execution_id,
            task_id=task_id,
            attempt_number=previous[-1].attempt_number + 1 if previous else 1,
            started_at=datetime.now(timezone.utc),
        )
        self._store.write(attempt.id, attempt.to_dict())
        return attempt

    def complete(
        self, attempt_id: str, status: TaskStatus, error_message: str | None = None
    ) -> TaskAttempt:
        """Close an attempt with its outcome.

        Raises:
            NotFoundError: If the attempt does not exist
        """
        attempt = self.find_by_id(attempt_id)
        if attempt is None:
            raise NotFoundError("TaskAttempt", attempt_id)
        attempt.status = status
        attempt.error_message = error_message
        attempt.completed_at = datetime.now(timezone.utc)
        self._store.write(attempt.id, attempt.to_dict())
        return attempt
