"""Programmatic updates to the task document.

Only the checkbox mark of the targeted task line is rewritten; every other
byte of the document stays as the user wrote it.
"""

import re
from pathlib import Path
from typing import Protocol

from forge.errors import NotFoundError
from forge.models import TaskStatus

STATUS_TO_MARK: dict[str, str] = {
    "pending": " ",
    "completed": "x",
    "skipped": "~",
}


class TextFileSystem(Protocol):
    def read_file(self, path: str | Path) -> str: ...

    def write_file_atomic(self, path: str | Path, content: str) -> None: ...


def set_task_status_line(content: str, task_id: str, status: TaskStatus) -> str:
    """Return *content* with the checkbox of ``task_id`` set for ``status``.

    Args:
        content: Current document text
        task_id: Task whose line should change
        status: pending, completed or skipped

    Returns:
        Updated document text

    Raises:
        ValueError: If the status has no checkbox representation
        NotFoundError: If no task line carries ``task_id``
    """
    if status not in STATUS_TO_MARK:
        raise ValueError(f"Status '{status}' cannot be written to the plan document")

    pattern = re.compile(
        rf"^([-*][ \t]+\[)[ xX~](\][ \t]+{re.escape(task_id)}[.:][ \t])",
        re.MULTILINE,
    )
    updated, count = pattern.subn(rf"\g<1>{STATUS_TO_MARK[status]}\g<2>", content)
    if count == 0:
        raise NotFoundError("Task", task_id)
    return updated


def atomic_update_task_status(
    fs: TextFileSystem, plan_path: str | Path, task_id: str, status: TaskStatus
) -> None:
    """Read the document, change one task line, write it back atomically."""
    content = fs.read_file(plan_path)
    fs.write_file_atomic(plan_path, set_task_status_line(content, task_id, status))
