"""Plan parser for task documents.

Parses the markdown task document (``META/TODO.md``) into an ExecutionPlan.
Parsing is line oriented and lenient: unrecognized or half-written lines are
ignored instead of failing the whole read, so hand-edited documents still load.

Expected format::

    # TODO

    > Project: my-project

    ## M1: Setup
    > Bootstrap the repository

    - [x] 001. Initialize project
      - Verify: `make test` passes
    - [ ] 002. Add dependencies
      - Depends: 001
    - [~] 003. Optional tooling
"""

import re
from dataclasses import dataclass, field
from pathlib import Path

from forge.models import ExecutionPlan, Milestone, Task, TaskStatus

PROJECT_PATTERN = re.compile(r"^>\s*Project:\s*(?P<name>.+)$", re.IGNORECASE)
MILESTONE_PATTERN = re.compile(r"^##\s+(?P<heading>.+?)\s*#*$")
MILESTONE_ID_PATTERN = re.compile(r"^(?P<id>M\d+)\s*[:.-]\s*(?P<name>.*)$", re.IGNORECASE)
TASK_PATTERN = re.compile(
    r"^[-*]\s+\[(?P<mark>[ xX~])\]\s+"
    r"(?P<id>[A-Za-z0-9][\w-]*(?:\.\d+)*)[.:]\s+(?P<description>.+)$"
)
METADATA_PATTERN = re.compile(
    r"^[-*]\s+(?:\*\*)?(?P<key>Verify|Verification|Depends)(?::\*\*|\*\*:|:)\s*(?P<value>.*)$",
    re.IGNORECASE,
)

MARK_TO_STATUS: dict[str, TaskStatus] = {
    " ": "pending",
    "x": "completed",
    "X": "completed",
    "~": "skipped",
}


@dataclass
class _MilestoneBuilder:
    id: str
    name: str
    description: str = ""
    tasks: list[dict] = field(default_factory=list)


def parse_plan(document: str) -> ExecutionPlan:
    """Parse a task document into an ExecutionPlan.

    Args:
        document: Full text of the task document

    Returns:
        ExecutionPlan with milestones in document order and counters derived
        from the parsed checkbox states
    """
    project_name: str | None = None
    milestones: list[_MilestoneBuilder] = []
    current_milestone: _MilestoneBuilder | None = None
    current_task: dict | None = None
    # Milestone description is only accepted right after its heading
    expecting_description = False

    for raw_line in document.splitlines():
        indented = raw_line[:1] in (" ", "\t")
        line = raw_line.strip()
        if not line:
            continue

        project_match = PROJECT_PATTERN.match(line)
        if project_match and current_milestone is None:
            project_name = project_match.group("name").strip()
            continue

        milestone_match = MILESTONE_PATTERN.match(line)
        if milestone_match and not indented:
            current_milestone = _new_milestone(
                milestone_match.group("heading"), len(milestones) + 1
            )
            milestones.append(current_milestone)
            current_task = None
            expecting_description = True
            continue

        if line.startswith(">"):
            if expecting_description and current_milestone is not None:
                current_milestone.description = line.lstrip(">").strip()
            expecting_description = False
            continue
        expecting_description = False

        task_match = TASK_PATTERN.match(line)
        if task_match and not indented:
            if current_milestone is None:
                # Tasks must belong to a milestone
                current_task = None
                continue
            current_task = {
                "id": task_match.group("id"),
                "description": task_match.group("description").strip(),
                "status": MARK_TO_STATUS[task_match.group("mark")],
                "milestone_id": current_milestone.id,
                "verification": "",
                "depends": (),
            }
            current_milestone.tasks.append(current_task)
            continue

        metadata_match = METADATA_PATTERN.match(line)
        if metadata_match and indented and current_task is not None:
            key = metadata_match.group("key").lower()
            value = metadata_match.group("value").strip()
            if key == "depends":
                current_task["depends"] = parse_depends(value)
            else:
                current_task["verification"] = value

    return _build_plan(milestones, project_name)


def parse_plan_file(plan_path: str | Path) -> ExecutionPlan:
    """Read and parse a task document from disk."""
    return parse_plan(Path(plan_path).read_text(encoding="utf-8"))


def parse_depends(value: str) -> tuple[str, ...]:
    """Parse a comma separated dependency list. ``none`` or empty means no deps."""
    value = value.strip().strip("`")
    if not value or value.lower() == "none":
        return ()
    return tuple(dep.strip() for dep in value.split(",") if dep.strip())


def _new_milestone(heading: str, index: int) -> _MilestoneBuilder:
    id_match = MILESTONE_ID_PATTERN.match(heading.strip())
    if id_match:
        return _MilestoneBuilder(
            id=id_match.group("id").upper(), name=id_match.group("name").strip()
        )
    return _MilestoneBuilder(id=f"M{index}", name=heading.strip())


def _build_plan(
    builders: list[_MilestoneBuilder], project_name: str | None
) -> ExecutionPlan:
    milestones = []
    total = 0
    completed = 0
    for builder in builders:
        tasks = tuple(Task(**data) for data in builder.tasks)
        done = sum(1 for task in tasks if task.is_done)
        milestones.append(
            Milestone(
                id=builder.id,
                name=builder.name,
                description=builder.description,
                tasks=tasks,
                completed_count=done,
            )
        )
        total += len(tasks)
        completed += done

    return ExecutionPlan(
        milestones=tuple(milestones),
        total_tasks=total,
        completed_tasks=completed,
        project_name=project_name,
    )
