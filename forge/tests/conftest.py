"""Shared fixtures for forge tests."""

import textwrap
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from forge.config import ForgeConfig
from forge.config_loader import (
    clear_config_cache,
    dev_flow_state_machine,
    load_git_operations,
)
from forge.execution import ExecutionDeps
from forge.filesystem import LocalFileSystem
from forge.models import AgentResult, GitStatus, Project, Version
from forge.repositories import (
    ExecutionRepository,
    ProjectRepository,
    TaskAttemptRepository,
    VersionRepository,
)

SAMPLE_PLAN = textwrap.dedent(
    """\
    # TODO

    > Project: demo

    ## M1: Setup
    > Bootstrap the repository

    - [ ] 001. Initialize project
      - Verify: `make test` passes
    - [ ] 002. Add dependencies
      - Depends: 001

    ## M2: Features

    - [ ] 003. Build the thing
      - Depends: 002
    """
)


@pytest.fixture(autouse=True)
def _fresh_config_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Project working tree with a plan document."""
    path = tmp_path / "project"
    (path / "META").mkdir(parents=True)
    (path / "META" / "TODO.md").write_text(SAMPLE_PLAN)
    return path


@pytest.fixture
def plan_file(project_dir: Path) -> Path:
    return project_dir / "META" / "TODO.md"


@pytest.fixture
def mock_git() -> MagicMock:
    """Git adapter double for a clean repository without a remote."""
    git = MagicMock()
    git.is_repo.return_value = True
    git.status.return_value = GitStatus()
    git.commit.return_value = "c0ffee1"
    git.commit_with_options.return_value = "5a5a5a5"
    git.has_remote.return_value = False
    return git


@pytest.fixture
def mock_agent() -> MagicMock:
    """Agent double that is available and succeeds on every task."""
    agent = MagicMock()
    agent.is_available.return_value = True
    agent.execute = AsyncMock(return_value=AgentResult(success=True, output="done"))
    return agent


@pytest.fixture
def deps(tmp_path: Path, mock_git: MagicMock, mock_agent: MagicMock) -> ExecutionDeps:
    state_dir = tmp_path / ".forge"
    return ExecutionDeps(
        projects=ProjectRepository(state_dir),
        versions=VersionRepository(state_dir),
        executions=ExecutionRepository(state_dir),
        task_attempts=TaskAttemptRepository(state_dir),
        fs=LocalFileSystem(),
        git=mock_git,
        agent=mock_agent,
        state_machine=dev_flow_state_machine(),
        config=ForgeConfig(state_dir=state_dir, poll_interval_seconds=0.01),
        git_operations=load_git_operations(),
    )


@pytest.fixture
def version(deps: ExecutionDeps, project_dir: Path) -> Version:
    """A registered project with one version in ``ready``."""
    project = deps.projects.save(Project(id="proj-1", name="demo", path=str(project_dir)))
    return deps.versions.save(
        Version(id="ver-1", project_id=project.id, name="v1", dev_status="ready")
    )
