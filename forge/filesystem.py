"""Local file system adapter.

Thin wrapper over pathlib that reports missing files as
PlanFileNotFoundError and offers atomic whole-file replacement.
"""

import os
import tempfile
from pathlib import Path

from forge.errors import PlanFileNotFoundError


class LocalFileSystem:
    """File system access for use cases and the runner."""

    def exists(self, path: str | Path) -> bool:
        return Path(path).exists()

    def read_file(self, path: str | Path) -> str:
        """Read a text file.

        Raises:
            PlanFileNotFoundError: If the file does not exist
        """
        try:
            with open(path, encoding="utf-8", newline="") as f:
                return f.read()
        except FileNotFoundError as e:
            raise PlanFileNotFoundError(str(path)) from e

    def write_file(self, path: str | Path, content: str) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def write_file_atomic(self, path: str | Path, content: str) -> None:
        """Write *content* to *path* atomically.

        Writes to a temporary file in the same directory, then renames
        (``os.replace``) into place so readers never see a partial file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            # newline="" keeps the document's own line endings
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            if path.exists():
                os.chmod(tmp_path, path.stat().st_mode & 0o7777)
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
