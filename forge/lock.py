"""PID file lock that keeps one runner process per version."""

import logging
import os
from pathlib import Path
from types import TracebackType

from forge.errors import ForgeError

logger = logging.getLogger(__name__)


class RunnerLockedError(ForgeError):
    """Another live runner process holds the version's lock."""

    code = "LOCKED"

    def __init__(self, version_id: str, holder_pid: int | None) -> None:
        super().__init__(
            f"A runner is already active for version {version_id} (PID: {holder_pid})"
        )
        self.version_id = version_id
        self.holder_pid = holder_pid


class ExecutionLock:
    """Per-version lock file holding the runner's PID.

    A lock left behind by a dead process is taken over on acquire.

    Usage:
        with ExecutionLock(state_dir, version_id):
            await run_execution(...)
    """

    def __init__(self, state_dir: Path, version_id: str) -> None:
        self.version_id = version_id
        self.lock_path = Path(state_dir) / "locks" / f"{version_id}.pid"

    def acquire(self) -> bool:
        """Try to take the lock; False if a live process holds it."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        holder = self.holder_pid()
        if holder is not None and holder != os.getpid() and _pid_alive(holder):
            return False
        if self.lock_path.exists():
            if holder != os.getpid():
                logger.warning(
                    f"Taking over stale runner lock for {self.version_id} (PID: {holder})"
                )
            self.lock_path.unlink(missing_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            # Lost a race with another process taking over the same stale lock
            return False
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        return True

    def release(self) -> None:
        if self.holder_pid() == os.getpid():
            self.lock_path.unlink(missing_ok=True)

    def holder_pid(self) -> int | None:
        try:
            return int(self.lock_path.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None

    def __enter__(self) -> "ExecutionLock":
        if not self.acquire():
            raise RunnerLockedError(self.version_id, self.holder_pid())
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True
