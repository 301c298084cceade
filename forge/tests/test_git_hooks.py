"""Tests for the git hook engine."""

from unittest.mock import MagicMock

import pytest

from forge.config_loader import GitHookConfig, HookCommitConfig, HookPushConfig
from forge.errors import GitError
from forge.git_hooks import (
    HookContext,
    execute_hook,
    render_commit_message,
    should_push,
)
from forge.models import GitStatus


def make_hook(
    message: str = "feat({{version_name}}): {{milestone_name}}",
    files: list[str] | None = None,
    strategy: str | None = "auto",
    enabled: bool = True,
) -> GitHookConfig:
    return GitHookConfig(
        enabled=enabled,
        commit=HookCommitConfig(message=message, files=files if files is not None else ["."]),
        push=HookPushConfig(strategy=strategy),
    )


@pytest.fixture
def context() -> HookContext:
    return HookContext(
        project_path="/work/demo",
        version_name="v1",
        project_name="demo",
        milestone_name="Setup",
    )


@pytest.fixture
def dirty_git() -> MagicMock:
    git = MagicMock()
    git.is_repo.return_value = True
    git.status.return_value = GitStatus(unstaged=["a.py"])
    git.commit.return_value = "abc1234"
    git.has_remote.return_value = True
    return git


class TestExecuteHookSkips:
    """Tests for the skip conditions of execute_hook()."""

    def test_disabled_hook(self, context: HookContext, dirty_git: MagicMock) -> None:
        result = execute_hook(make_hook(enabled=False), context, True, "auto", dirty_git)

        assert result.success and result.skipped
        assert result.skipped_reason == "Hook is disabled in configuration"
        dirty_git.is_repo.assert_not_called()

    def test_commit_disabled_in_settings(self, context: HookContext, dirty_git: MagicMock) -> None:
        """Nothing is staged or committed when auto-commit is off."""
        result = execute_hook(make_hook(), context, False, "auto", dirty_git)

        assert result.success is True
        assert result.skipped is True
        assert result.skipped_reason == "Auto-commit disabled in settings"
        dirty_git.add.assert_not_called()
        dirty_git.commit.assert_not_called()

    def test_not_a_repository(self, context: HookContext, dirty_git: MagicMock) -> None:
        dirty_git.is_repo.return_value = False

        result = execute_hook(make_hook(), context, True, "auto", dirty_git)

        assert result.skipped_reason == "Not a git repository"
        dirty_git.status.assert_not_called()

    def test_clean_tree(self, context: HookContext, dirty_git: MagicMock) -> None:
        dirty_git.status.return_value = GitStatus()

        result = execute_hook(make_hook(), context, True, "auto", dirty_git)

        assert result.success and result.skipped
        assert result.skipped_reason == "No changes to commit"
        dirty_git.commit.assert_not_called()

    def test_deleted_files_are_changes(self, context: HookContext, dirty_git: MagicMock) -> None:
        dirty_git.status.return_value = GitStatus(deleted=["old.py"])

        result = execute_hook(make_hook(), context, True, "manual", dirty_git)

        assert not result.skipped
        assert result.commit_hash == "abc1234"


class TestExecuteHookCommit:
    """Tests for staging and committing."""

    def test_commits_rendered_message(self, context: HookContext, dirty_git: MagicMock) -> None:
        result = execute_hook(make_hook(), context, True, "manual", dirty_git)

        assert result.success and not result.skipped
        assert result.commit_hash == "abc1234"
        dirty_git.add.assert_called_once_with("/work/demo", ["."])
        dirty_git.commit.assert_called_once_with("/work/demo", "feat(v1): Setup")

    def test_dot_stages_everything(self, context: HookContext, dirty_git: MagicMock) -> None:
        execute_hook(make_hook(files=["src", "."]), context, True, "manual", dirty_git)

        dirty_git.add.assert_called_once_with("/work/demo", ["."])

    def test_explicit_files_staged(self, context: HookContext, dirty_git: MagicMock) -> None:
        execute_hook(make_hook(files=["META/TODO.md", "src"]), context, True, "manual", dirty_git)

        dirty_git.add.assert_called_once_with("/work/demo", ["META/TODO.md", "src"])

    def test_commit_failure_is_reported(self, context: HookContext, dirty_git: MagicMock) -> None:
        dirty_git.commit.side_effect = GitError("commit", "hook rejected")

        result = execute_hook(make_hook(), context, True, "auto", dirty_git)

        assert result.success is False
        assert "hook rejected" in result.error
        dirty_git.push.assert_not_called()

    def test_status_failure_is_reported(self, context: HookContext, dirty_git: MagicMock) -> None:
        dirty_git.status.side_effect = GitError("status", "corrupt index")

        result = execute_hook(make_hook(), context, True, "auto", dirty_git)

        assert result.success is False
        assert "corrupt index" in result.error


class TestExecuteHookPush:
    """Tests for the push step."""

    def test_pushes_when_both_auto(self, context: HookContext, dirty_git: MagicMock) -> None:
        result = execute_hook(make_hook(strategy="auto"), context, True, "auto", dirty_git)

        assert result.pushed is True
        dirty_git.push.assert_called_once_with("/work/demo")

    @pytest.mark.parametrize(
        ("hook_strategy", "settings_strategy"),
        [("auto", "manual"), ("manual", "auto"), ("disabled", "auto"), (None, "auto")],
    )
    def test_no_push_unless_both_auto(
        self,
        context: HookContext,
        dirty_git: MagicMock,
        hook_strategy: str | None,
        settings_strategy: str,
    ) -> None:
        result = execute_hook(
            make_hook(strategy=hook_strategy), context, True, settings_strategy, dirty_git
        )

        assert result.commit_hash == "abc1234"
        assert result.pushed is False
        dirty_git.push.assert_not_called()

    def test_no_remote_no_push(self, context: HookContext, dirty_git: MagicMock) -> None:
        dirty_git.has_remote.return_value = False

        result = execute_hook(make_hook(), context, True, "auto", dirty_git)

        assert result.success is True
        assert result.pushed is False
        assert result.push_failed is False
        dirty_git.push.assert_not_called()

    def test_push_failure_keeps_commit(self, context: HookContext, dirty_git: MagicMock) -> None:
        """A failed push is reported on the result, not raised."""
        dirty_git.push.side_effect = GitError("push", "rejected")

        result = execute_hook(make_hook(), context, True, "auto", dirty_git)

        assert result.success is True
        assert result.commit_hash == "abc1234"
        assert result.pushed is False
        assert result.push_failed is True
        assert result.push_error == "git push failed: rejected"


class TestRenderCommitMessage:
    """Tests for render_commit_message()."""

    def test_substitutes_known_placeholders(self, context: HookContext) -> None:
        message = render_commit_message(
            "{{ project_name }}/{{version_name}}: {{milestone_name}}", context
        )

        assert message == "demo/v1: Setup"

    def test_missing_values_render_empty(self) -> None:
        message = render_commit_message("done {{milestone_name}}", HookContext(project_path="."))

        assert message == "done "

    def test_unknown_placeholders_kept(self, context: HookContext) -> None:
        assert render_commit_message("{{ticket}} fix", context) == "{{ticket}} fix"


class TestShouldPush:
    """Tests for should_push()."""

    def test_truth_table(self) -> None:
        assert should_push("auto", "auto") is True
        assert should_push("auto", "manual") is False
        assert should_push("manual", "auto") is False
        assert should_push(None, "auto") is False
