"""Git hook engine.

Runs a configured commit/push step against a git adapter. This module
decides what to do; the adapter does the I/O. Skips are successes with a
reason, a failed push is reported but never undoes the commit.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from forge.config_loader import GitHookConfig
from forge.errors import GitError
from forge.models import GitStatus, PushStrategy

logger = logging.getLogger(__name__)

_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class HookGit(Protocol):
    def is_repo(self, path: str | Path) -> bool: ...

    def status(self, path: str | Path) -> GitStatus: ...

    def add(self, path: str | Path, files: list[str]) -> None: ...

    def commit(self, path: str | Path, message: str) -> str: ...

    def push(self, path: str | Path, remote: str | None = None) -> None: ...

    def has_remote(self, path: str | Path) -> bool: ...


@dataclass(frozen=True)
class HookContext:
    """Where the hook runs and the values available to the message template."""

    project_path: str
    version_name: str | None = None
    project_name: str | None = None
    milestone_name: str | None = None


@dataclass
class HookResult:
    """Outcome of a hook run.

    ``success`` is False only when something before or during the commit
    failed. A push failure leaves ``success`` True with ``push_failed`` set.
    """

    success: bool
    skipped: bool = False
    skipped_reason: str | None = None
    commit_hash: str | None = None
    pushed: bool = False
    push_failed: bool = False
    push_error: str | None = None
    error: str | None = None


def render_commit_message(template: str, context: HookContext) -> str:
    """Substitute ``{{version_name}}``, ``{{project_name}}``, ``{{milestone_name}}``.

    Missing values render as empty strings; unknown placeholders are left as-is.
    """
    values = {
        "version_name": context.version_name,
        "project_name": context.project_name,
        "milestone_name": context.milestone_name,
    }

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        return values[key] or ""

    return _PLACEHOLDER_PATTERN.sub(_substitute, template)


def should_push(hook_strategy: PushStrategy | None, settings_strategy: PushStrategy) -> bool:
    """Push only when the caller's strategy and the hook's strategy are both ``auto``."""
    return settings_strategy == "auto" and hook_strategy == "auto"


def execute_hook(
    hook: GitHookConfig,
    context: HookContext,
    commit_enabled: bool,
    push_strategy: PushStrategy,
    git: HookGit,
) -> HookResult:
    """Run one commit/push step.

    Skip conditions are checked in order: hook disabled, commits disabled by
    the caller, not a repository, clean working tree.

    Args:
        hook: Resolved hook definition
        context: Project path and template values
        commit_enabled: Caller-derived switch for this kind of commit
        push_strategy: Caller's global push strategy
        git: Git adapter

    Returns:
        HookResult describing what happened
    """
    if not hook.enabled:
        return HookResult(
            success=True, skipped=True, skipped_reason="Hook is disabled in configuration"
        )

    if not commit_enabled:
        return HookResult(
            success=True, skipped=True, skipped_reason="Auto-commit disabled in settings"
        )

    path = context.project_path
    try:
        if not git.is_repo(path):
            return HookResult(
                success=True, skipped=True, skipped_reason="Not a git repository"
            )

        if not git.status(path).has_changes:
            return HookResult(
                success=True, skipped=True, skipped_reason="No changes to commit"
            )

        files = hook.commit.files
        git.add(path, ["."] if "." in files else list(files))
        commit_hash = git.commit(path, render_commit_message(hook.commit.message, context))
    except GitError as e:
        logger.warning(f"Git hook failed before commit completed: {e}")
        return HookResult(success=False, error=str(e))

    result = HookResult(success=True, commit_hash=commit_hash)
    if not should_push(hook.push.strategy, push_strategy):
        return result

    try:
        if git.has_remote(path):
            git.push(path)
            result.pushed = True
    except GitError as e:
        # Commit stands; caller surfaces the push failure
        logger.warning(f"Git push failed: {e}")
        result.push_failed = True
        result.push_error = str(e)

    return result
