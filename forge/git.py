"""Git adapter backed by the ``git`` command line.

Every operation runs ``git -C <path> ...`` as a subprocess. Failures raise
GitError carrying git's stderr.
"""

import re
import subprocess
from pathlib import Path

from forge.errors import GitError
from forge.models import GitStatus

DEFAULT_TIMEOUT = 60

_BRANCH_PATTERN = re.compile(r"^## (?:No commits yet on )?(?P<branch>[^.\s]+(?:\.[^.\s]+)*)")
_AHEAD_PATTERN = re.compile(r"ahead (\d+)")
_BEHIND_PATTERN = re.compile(r"behind (\d+)")


class GitAdapter:
    """Runs git operations against a working tree."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def _run(self, path: str | Path, operation: str, *args: str) -> str:
        try:
            result = subprocess.run(
                ["git", "-C", str(path), *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise GitError(operation, "git executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise GitError(operation, f"timed out after {self.timeout}s") from e

        if result.returncode != 0:
            raise GitError(operation, result.stderr.strip() or result.stdout.strip())
        return result.stdout

    def is_repo(self, path: str | Path) -> bool:
        if not Path(path).is_dir():
            return False
        try:
            output = self._run(path, "rev-parse", "rev-parse", "--is-inside-work-tree")
        except GitError:
            return False
        return output.strip() == "true"

    def status(self, path: str | Path) -> GitStatus:
        output = self._run(path, "status", "status", "--porcelain=v1", "--branch")
        return parse_porcelain_status(output)

    def add(self, path: str | Path, files: list[str]) -> None:
        self._run(path, "add", "add", "--", *files)

    def commit(self, path: str | Path, message: str) -> str:
        """Create a commit and return its revision hash."""
        return self.commit_with_options(path, message)

    def commit_with_options(
        self, path: str | Path, message: str, allow_empty: bool = False
    ) -> str:
        args = ["commit", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        self._run(path, "commit", *args)
        return self._run(path, "rev-parse", "rev-parse", "HEAD").strip()

    def push(self, path: str | Path, remote: str | None = None) -> None:
        if not self.has_remote(path):
            raise GitError("push", f"No remote configured for {path}")
        self._run(path, "push", "push", remote or "origin")

    def has_remote(self, path: str | Path) -> bool:
        try:
            return bool(self._run(path, "remote", "remote").strip())
        except GitError:
            return False

    def reset(self, path: str | Path, ref: str, mode: str = "hard") -> None:
        """Move HEAD (and, for ``hard``, the working tree) to ``ref``."""
        if mode not in ("soft", "mixed", "hard"):
            raise ValueError(f"Unsupported reset mode: {mode}")
        self._run(path, "reset", "reset", f"--{mode}", ref)


def parse_porcelain_status(output: str) -> GitStatus:
    """Parse ``git status --porcelain=v1 --branch`` output into a GitStatus."""
    staged: list[str] = []
    unstaged: list[str] = []
    untracked: list[str] = []
    deleted: list[str] = []
    branch = "main"
    ahead = behind = 0

    for line in output.splitlines():
        if line.startswith("## "):
            match = _BRANCH_PATTERN.match(line)
            if match and match.group("branch") != "HEAD":
                branch = match.group("branch")
            if m := _AHEAD_PATTERN.search(line):
                ahead = int(m.group(1))
            if m := _BEHIND_PATTERN.search(line):
                behind = int(m.group(1))
            continue
        if len(line) < 4:
            continue

        index, worktree, file_path = line[0], line[1], line[3:]
        if " -> " in file_path:
            file_path = file_path.split(" -> ", 1)[1]

        if index == "?" and worktree == "?":
            untracked.append(file_path)
        elif "D" in (index, worktree):
            deleted.append(file_path)
        else:
            if index not in (" ", "?", "!"):
                staged.append(file_path)
            if worktree in ("M", "T"):
                unstaged.append(file_path)

    return GitStatus(
        staged=staged,
        unstaged=unstaged,
        untracked=untracked,
        deleted=deleted,
        branch=branch,
        ahead=ahead,
        behind=behind,
    )
