"""Tests for JSON-file repositories."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from forge.errors import DuplicateExecutionError, NotFoundError
from forge.models import Execution, Project, Version
from forge.repositories import (
    ExecutionRepository,
    ProjectRepository,
    TaskAttemptRepository,
    VersionRepository,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_execution(execution_id: str = "exec-1", version_id: str = "ver-1", **overrides) -> Execution:
    fields = {"id": execution_id, "version_id": version_id, "started_at": NOW, "total_tasks": 3}
    fields.update(overrides)
    return Execution(**fields)


class TestProjectAndVersionRepositories:
    """Tests for ProjectRepository and VersionRepository."""

    def test_missing_records_return_none(self, tmp_path: Path) -> None:
        assert ProjectRepository(tmp_path).find_by_id("nope") is None
        assert VersionRepository(tmp_path).find_by_id("nope") is None
        assert VersionRepository(tmp_path).update_status("nope", "ready") is None

    def test_save_and_find(self, tmp_path: Path) -> None:
        projects = ProjectRepository(tmp_path)
        projects.save(Project(id="p1", name="demo", path="/work/demo"))

        assert projects.find_by_id("p1") == Project(id="p1", name="demo", path="/work/demo")
        assert (tmp_path / "projects" / "p1.json").exists()
        assert [p.id for p in projects.list_all()] == ["p1"]

    def test_update_status(self, tmp_path: Path) -> None:
        versions = VersionRepository(tmp_path)
        versions.save(Version(id="v1", project_id="p1", name="v1", dev_status="ready"))

        updated = versions.update_status("v1", "executing")

        assert updated.dev_status == "executing"
        assert versions.find_by_id("v1").dev_status == "executing"


class TestExecutionRepository:
    """Tests for ExecutionRepository."""

    def test_create_and_find(self, tmp_path: Path) -> None:
        repo = ExecutionRepository(tmp_path)

        repo.create(make_execution())
        found = repo.find_by_id("exec-1")

        assert found == make_execution()
        assert found.started_at.tzinfo is not None

    def test_record_is_plain_json(self, tmp_path: Path) -> None:
        repo = ExecutionRepository(tmp_path)
        repo.create(make_execution(pre_execution_commit="abc"))

        data = json.loads((tmp_path / "executions" / "exec-1.json").read_text())

        assert data["started_at"] == NOW.isoformat()
        assert data["pre_execution_commit"] == "abc"
        assert data["completed_at"] is None

    def test_create_rejects_second_active_execution(self, tmp_path: Path) -> None:
        """Only one running or paused execution may exist per version."""
        repo = ExecutionRepository(tmp_path)
        repo.create(make_execution("exec-1", status="paused"))

        with pytest.raises(DuplicateExecutionError) as exc_info:
            repo.create(make_execution("exec-2"))

        assert exc_info.value.execution_id == "exec-1"
        assert repo.find_by_id("exec-2") is None

    def test_create_allows_after_terminal(self, tmp_path: Path) -> None:
        repo = ExecutionRepository(tmp_path)
        repo.create(make_execution("exec-1"))
        repo.complete("exec-1", "aborted")

        repo.create(make_execution("exec-2"))

        assert repo.find_by_id("exec-2").status == "running"

    def test_other_versions_independent(self, tmp_path: Path) -> None:
        repo = ExecutionRepository(tmp_path)
        repo.create(make_execution("exec-1", version_id="ver-1"))

        repo.create(make_execution("exec-2", version_id="ver-2"))

        assert len(repo.find_running_or_paused()) == 2

    def test_find_by_version_sorted_by_start(self, tmp_path: Path) -> None:
        repo = ExecutionRepository(tmp_path)
        repo.create(make_execution("b", status="aborted", started_at=NOW + timedelta(hours=1)))
        repo.create(make_execution("a", status="completed"))
        repo.create(make_execution("c", version_id="other"))

        assert [e.id for e in repo.find_by_version("ver-1")] == ["a", "b"]

    def test_updates(self, tmp_path: Path) -> None:
        repo = ExecutionRepository(tmp_path)
        repo.create(make_execution())

        repo.update_progress("exec-1", completed_tasks=1, current_task_id="002")
        repo.set_paused("exec-1", True)
        repo.update_status("exec-1", "paused", last_error="boom")
        execution = repo.find_by_id("exec-1")

        assert execution.completed_tasks == 1
        assert execution.current_task_id == "002"
        assert execution.is_paused is True
        assert execution.status == "paused"
        assert execution.last_error == "boom"

    def test_update_progress_clears_current_task(self, tmp_path: Path) -> None:
        repo = ExecutionRepository(tmp_path)
        repo.create(make_execution(current_task_id="001"))

        repo.update_progress("exec-1", completed_tasks=2)
        assert repo.find_by_id("exec-1").current_task_id == "001"

        repo.update_progress("exec-1", clear_current_task=True)
        assert repo.find_by_id("exec-1").current_task_id is None

    def test_complete_stamps_time_and_clears_pause(self, tmp_path: Path) -> None:
        repo = ExecutionRepository(tmp_path)
        repo.create(make_execution(is_paused=True, status="paused"))

        completed = repo.complete("exec-1", "completed")

        assert completed.status == "completed"
        assert completed.is_paused is False
        assert completed.completed_at is not None
        assert repo.find_running_or_paused() == []

    def test_mutating_missing_execution_returns_none(self, tmp_path: Path) -> None:
        repo = ExecutionRepository(tmp_path)

        assert repo.set_paused("nope", True) is None
        assert repo.complete("nope", "aborted") is None


class TestTaskAttemptRepository:
    """Tests for TaskAttemptRepository."""

    def test_attempt_numbers_increase_per_task(self, tmp_path: Path) -> None:
        attempts = TaskAttemptRepository(tmp_path)

        first = attempts.create("exec-1", "001")
        other = attempts.create("exec-1", "002")
        second = attempts.create("exec-1", "001")

        assert (first.attempt_number, other.attempt_number, second.attempt_number) == (1, 1, 2)
        assert first.status == "running"
        assert [a.id for a in attempts.find_by_task("exec-1", "001")] == [first.id, second.id]

    def test_attempts_scoped_to_execution(self, tmp_path: Path) -> None:
        attempts = TaskAttemptRepository(tmp_path)
        attempts.create("exec-1", "001")

        fresh = attempts.create("exec-2", "001")

        assert fresh.attempt_number == 1
        assert [a.execution_id for a in attempts.find_by_execution("exec-2")] == ["exec-2"]

    def test_complete_records_outcome(self, tmp_path: Path) -> None:
        attempts = TaskAttemptRepository(tmp_path)
        attempt = attempts.create("exec-1", "001")

        attempts.complete(attempt.id, "failed", error_message="lint failed")

        stored = attempts.find_by_id(attempt.id)
        assert stored.status == "failed"
        assert stored.error_message == "lint failed"
        assert stored.completed_at is not None
        data = json.loads((tmp_path / "task_attempts" / f"{attempt.id}.json").read_text())
        assert data["attempt_number"] == 1

    def test_complete_missing_attempt(self, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            TaskAttemptRepository(tmp_path).complete("ghost", "completed")

        assert exc_info.value.entity == "TaskAttempt"
