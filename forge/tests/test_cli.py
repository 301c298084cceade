"""Tests for the forge CLI."""

from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from forge.cli import cli
from forge.execution import ExecutionDeps, start_execution
from forge.models import AgentResult, Version


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def patched_deps(deps: ExecutionDeps):
    with patch("forge.cli._build_deps", return_value=deps):
        yield deps


class TestCliBasics:
    """Tests for the command group."""

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("register", "start", "pause", "resume", "retry", "skip", "abort", "status", "stale", "run", "plan"):
            assert command in result.output

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestLifecycleCommands:
    """Tests for commands that drive an execution."""

    def test_register(self, runner: CliRunner, patched_deps: ExecutionDeps, project_dir: Path) -> None:
        result = runner.invoke(cli, ["register", str(project_dir), "--version-name", "v2"])

        assert result.exit_code == 0, result.output
        assert "Registered" in result.output
        versions = patched_deps.versions.list_all()
        assert [(v.name, v.dev_status) for v in versions] == [("v2", "ready")]

    def test_register_rejects_unknown_status(
        self, runner: CliRunner, patched_deps: ExecutionDeps, project_dir: Path
    ) -> None:
        result = runner.invoke(cli, ["register", str(project_dir), "--status", "shipping"])

        assert result.exit_code == 1
        assert "Unknown dev status" in result.output

    def test_start_and_status(self, runner: CliRunner, patched_deps: ExecutionDeps, version: Version) -> None:
        result = runner.invoke(cli, ["start", version.id])

        assert result.exit_code == 0, result.output
        execution = patched_deps.executions.find_by_version(version.id)[0]
        assert execution.id in result.output

        status = runner.invoke(cli, ["status", execution.id])
        assert status.exit_code == 0
        assert "running" in status.output
        assert "0/3" in status.output

    def test_failure_exits_with_code(self, runner: CliRunner, patched_deps: ExecutionDeps) -> None:
        result = runner.invoke(cli, ["pause", "missing"])

        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output
        assert "Execution not found: missing" in result.output

    def test_pause_resume_skip(self, runner: CliRunner, patched_deps: ExecutionDeps, version: Version) -> None:
        execution = start_execution(patched_deps, version.id)

        assert runner.invoke(cli, ["pause", execution.id]).exit_code == 0
        assert runner.invoke(cli, ["resume", execution.id]).exit_code == 0
        assert runner.invoke(cli, ["pause", execution.id]).exit_code == 0
        skipped = runner.invoke(cli, ["skip", execution.id, "001"])

        assert skipped.exit_code == 0, skipped.output
        assert "1/3" in skipped.output

    def test_abort(self, runner: CliRunner, patched_deps: ExecutionDeps, version: Version) -> None:
        execution = start_execution(patched_deps, version.id)

        result = runner.invoke(cli, ["abort", execution.id, "--yes"])

        assert result.exit_code == 0, result.output
        assert patched_deps.executions.find_by_id(execution.id).status == "aborted"

    def test_stale(self, runner: CliRunner, patched_deps: ExecutionDeps, version: Version) -> None:
        assert "No running or paused" in runner.invoke(cli, ["stale"]).output

        start_execution(patched_deps, version.id)
        result = runner.invoke(cli, ["stale"])

        assert result.exit_code == 0
        assert "Active Executions" in result.output
        assert "ver-1" in result.output


class TestRunCommand:
    """Tests for ``forge run``."""

    def test_run_to_completion(self, runner: CliRunner, patched_deps: ExecutionDeps, version: Version) -> None:
        execution = start_execution(patched_deps, version.id)

        result = runner.invoke(cli, ["run", execution.id])

        assert result.exit_code == 0, result.output
        assert "COMPLETED" in result.output
        assert patched_deps.executions.find_by_id(execution.id).status == "completed"

    def test_run_stops_on_pause(self, runner: CliRunner, patched_deps: ExecutionDeps, version: Version) -> None:
        patched_deps.agent.execute.return_value = AgentResult(success=False, error="lint failed")
        execution = start_execution(patched_deps, version.id)

        result = runner.invoke(cli, ["run", execution.id, "--stop-on-pause"])

        assert result.exit_code == 0, result.output
        assert "PAUSED" in result.output
        assert f"forge retry {execution.id} 001" in result.output

    def test_status_lists_attempts(self, runner: CliRunner, patched_deps: ExecutionDeps, version: Version) -> None:
        patched_deps.agent.execute.return_value = AgentResult(success=False, error="lint failed")
        execution = start_execution(patched_deps, version.id)
        runner.invoke(cli, ["run", execution.id, "--stop-on-pause"])

        result = runner.invoke(cli, ["status", execution.id])

        assert result.exit_code == 0, result.output
        assert "Task Attempts" in result.output
        assert "lint failed" in result.output

    def test_run_unknown_execution(self, runner: CliRunner, patched_deps: ExecutionDeps) -> None:
        result = runner.invoke(cli, ["run", "ghost"])

        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output


class TestPlanCommand:
    """Tests for ``forge plan``."""

    def test_plan_from_file(self, runner: CliRunner, plan_file: Path) -> None:
        result = runner.invoke(cli, ["plan", str(plan_file), "--file"])

        assert result.exit_code == 0, result.output
        assert "Initialize project" in result.output
        assert "Progress: 0/3 (0%)" in result.output
        assert "Next:" in result.output

    def test_plan_for_version(self, runner: CliRunner, patched_deps: ExecutionDeps, version: Version) -> None:
        result = runner.invoke(cli, ["plan", version.id])

        assert result.exit_code == 0, result.output
        assert "Build the thing" in result.output

    def test_plan_missing_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["plan", str(tmp_path / "nope.md"), "--file"])

        assert result.exit_code == 1
