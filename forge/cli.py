"""CLI for forge.

Registers projects, starts executions and drives the task runner.
"""

import asyncio
import logging
import sys
import uuid
from pathlib import Path
from typing import NoReturn, TypeVar

import click
from rich.console import Console
from rich.table import Table

from forge import __version__
from forge.config import ForgeConfig
from forge.errors import ForgeError, NotFoundError
from forge.execution import (
    ExecutionDeps,
    get_stale_executions,
    plan_path_for_version,
)
from forge.lock import ExecutionLock
from forge.models import Execution, Project, Task, TaskAttempt, Version
from forge.plan_calculator import get_blocked_tasks, get_next_task, get_progress
from forge.plan_parser import parse_plan_file
from forge.runner import ExecutionEvents, RunResult, run_execution
from forge.service import ExecutionService, Failure, Ok
from forge.telemetry import create_metrics, setup_telemetry

console = Console()

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

T = TypeVar("T")

STATUS_MARKS = {
    "pending": "[ ]",
    "running": "[cyan]>>[/cyan]",
    "completed": "[green]\\[x][/green]",
    "skipped": "[yellow]\\[~][/yellow]",
    "failed": "[red]\\[!][/red]",
}


def _build_deps() -> ExecutionDeps:
    return ExecutionDeps.from_config(ForgeConfig.from_env())


def _fail(message: str, code: str) -> NoReturn:
    console.print(f"[red]Error ({code}):[/red] {message}")
    sys.exit(1)


def _unwrap(outcome: "Ok[T] | Failure") -> T:
    if isinstance(outcome, Failure):
        _fail(outcome.message, outcome.code)
    return outcome.value


def _print_execution(execution: Execution) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Execution", execution.id)
    table.add_row("Version", execution.version_id)
    table.add_row("Status", execution.status)
    table.add_row("Paused flag", "yes" if execution.is_paused else "no")
    table.add_row("Progress", f"{execution.completed_tasks}/{execution.total_tasks}")
    table.add_row("Current task", execution.current_task_id or "-")
    table.add_row("Snapshot", execution.pre_execution_commit or "-")
    table.add_row("Started", execution.started_at.strftime("%Y-%m-%d %H:%M:%S"))
    if execution.completed_at:
        table.add_row("Finished", execution.completed_at.strftime("%Y-%m-%d %H:%M:%S"))
    if execution.last_error:
        table.add_row("Last error", f"[red]{execution.last_error}[/red]")
    console.print(table)


def _print_attempts(attempts: list[TaskAttempt]) -> None:
    if not attempts:
        return
    table = Table(title="Task Attempts")
    table.add_column("Task")
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Error")
    for attempt in attempts:
        table.add_row(
            attempt.task_id,
            str(attempt.attempt_number),
            attempt.status,
            attempt.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            attempt.error_message or "-",
        )
    console.print(table)


@click.group()
@click.version_option(__version__, package_name="forge")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Forge - drive an AI agent through a project's task plan."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


@cli.command()
@click.argument("project_path", type=click.Path(exists=True, file_okay=False))
@click.option("--name", default=None, help="Project name (default: directory name)")
@click.option("--version-name", default="v1", show_default=True, help="Version name")
@click.option(
    "--status",
    "dev_status",
    default="ready",
    show_default=True,
    help="Initial dev-flow status of the version",
)
def register(project_path: str, name: str | None, version_name: str, dev_status: str) -> None:
    """Register a project directory and one version of it."""
    deps = _build_deps()
    if not deps.state_machine.is_valid_state(dev_status):
        _fail(f"Unknown dev status: {dev_status}", "VALIDATION_ERROR")

    path = Path(project_path).resolve()
    project = deps.projects.save(
        Project(id=str(uuid.uuid4()), name=name or path.name, path=str(path))
    )
    version = deps.versions.save(
        Version(
            id=str(uuid.uuid4()),
            project_id=project.id,
            name=version_name,
            dev_status=dev_status,
        )
    )
    console.print(f"[green]Registered[/green] {project.name} ({project.path})")
    console.print(f"  Project: {project.id}")
    console.print(f"  Version: {version.id} ({version.dev_status})")


@cli.command()
@click.argument("version_id")
def start(version_id: str) -> None:
    """Create an execution for a version (idempotent)."""
    execution = _unwrap(ExecutionService(_build_deps()).start(version_id))
    console.print(f"[green]Execution {execution.id}[/green] is {execution.status}")
    console.print(f"Run it with: forge run {execution.id}")


@cli.command()
@click.argument("execution_id")
def pause(execution_id: str) -> None:
    """Pause after the current task finishes."""
    _unwrap(ExecutionService(_build_deps()).pause(execution_id))
    console.print("[yellow]Pause requested[/yellow]; the current task will finish first")


@cli.command()
@click.argument("execution_id")
def resume(execution_id: str) -> None:
    """Resume a paused execution."""
    _unwrap(ExecutionService(_build_deps()).resume(execution_id))
    console.print("[green]Resumed[/green]")


@cli.command()
@click.argument("execution_id")
@click.argument("task_id")
def retry(execution_id: str, task_id: str) -> None:
    """Run the paused task again."""
    _unwrap(ExecutionService(_build_deps()).retry(execution_id, task_id))
    console.print(f"[green]Retrying[/green] task {task_id}")


@cli.command()
@click.argument("execution_id")
@click.argument("task_id")
def skip(execution_id: str, task_id: str) -> None:
    """Mark a task skipped and continue."""
    execution = _unwrap(ExecutionService(_build_deps()).skip(execution_id, task_id))
    console.print(
        f"[yellow]Skipped[/yellow] task {task_id} "
        f"({execution.completed_tasks}/{execution.total_tasks} done)"
    )


@cli.command()
@click.argument("execution_id")
@click.confirmation_option(prompt="Abort and reset the working tree to the snapshot?")
def abort(execution_id: str) -> None:
    """Abort an execution and roll back to its snapshot."""
    result = _unwrap(ExecutionService(_build_deps()).abort(execution_id))
    console.print(f"[red]Aborted[/red] execution {result.execution.id}")
    if result.reset_failed:
        console.print(f"[yellow]Working tree was not reset:[/yellow] {result.reset_error}")


@cli.command()
@click.argument("execution_id")
def status(execution_id: str) -> None:
    """Show an execution record and its task attempts."""
    service = ExecutionService(_build_deps())
    _print_execution(_unwrap(service.status(execution_id)))
    _print_attempts(_unwrap(service.attempts(execution_id)))


@cli.command()
def stale() -> None:
    """List running or paused executions."""
    executions = get_stale_executions(_build_deps())
    if not executions:
        console.print("[green]No running or paused executions[/green]")
        return

    table = Table(title="Active Executions")
    table.add_column("Execution")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Current task")
    table.add_column("Started")
    for execution in executions:
        status_text = execution.status
        if execution.is_paused and execution.status == "running":
            status_text = "running (pause requested)"
        table.add_row(
            execution.id,
            execution.version_id,
            status_text,
            f"{execution.completed_tasks}/{execution.total_tasks}",
            execution.current_task_id or "-",
            execution.started_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@cli.command()
@click.argument("execution_id")
@click.option(
    "--stop-on-pause/--wait-on-pause",
    default=False,
    help="Exit when the execution pauses instead of waiting for a resume",
)
def run(execution_id: str, stop_on_pause: bool) -> None:
    """Run the tasks of an execution."""
    deps = _build_deps()
    try:
        result = asyncio.run(_run(deps, execution_id, stop_on_pause))
    except ForgeError as e:
        _fail(e.message, e.code)
    _print_run_summary(result)
    if result.status == "failed":
        sys.exit(1)


async def _run(deps: ExecutionDeps, execution_id: str, stop_on_pause: bool) -> RunResult:
    tracer, meter = setup_telemetry(deps.config)
    create_metrics(meter)

    execution = deps.executions.find_by_id(execution_id)
    if execution is None:
        raise NotFoundError("Execution", execution_id)

    def on_task_start(task: Task) -> None:
        console.print(f"[bold]Task {task.id}:[/bold] {task.description}")

    def on_task_failed(task: Task, error: str) -> None:
        console.print(f"  [red]Failed:[/red] {error}")
        console.print(f"  Retry: forge retry {execution_id} {task.id}")
        console.print(f"  Skip:  forge skip {execution_id} {task.id}")

    def on_blocked(task: Task, blocked_by: tuple[str, ...]) -> None:
        console.print(
            f"[yellow]Task {task.id} is blocked by {', '.join(blocked_by)}[/yellow]"
        )

    events = ExecutionEvents(
        on_task_start=on_task_start,
        on_task_done=lambda task: console.print(f"  [green]Done[/green] {task.id}"),
        on_task_failed=on_task_failed,
        on_blocked=on_blocked,
        on_paused=lambda e: console.print("[yellow]Execution paused[/yellow]"),
        on_resumed=lambda e: console.print("[green]Execution resumed[/green]"),
        on_progress=lambda done, total: console.print(f"  Progress: {done}/{total}"),
        on_hook=lambda name, r: (
            console.print(f"  Committed {r.commit_hash[:8]} ({name})")
            if r.commit_hash
            else None
        ),
    )

    with ExecutionLock(deps.config.state_dir, execution.version_id):
        return await run_execution(
            execution_id,
            deps,
            events=events,
            stop_on_pause=stop_on_pause,
            tracer=tracer,
        )


def _print_run_summary(result: RunResult) -> None:
    color = {"completed": "green", "paused": "yellow"}.get(result.status, "red")
    console.print(f"\n[bold {color}]Execution {result.status.upper()}[/bold {color}]")
    console.print(f"  Tasks run: {result.tasks_run}")
    if result.tasks_failed:
        console.print(f"  [red]Failed: {result.tasks_failed}[/red]")
    if result.last_error:
        console.print(f"  Last error: {result.last_error}")


@cli.command()
@click.argument("target")
@click.option(
    "--file",
    "is_file",
    is_flag=True,
    help="Treat TARGET as a plan document path instead of a version id",
)
def plan(target: str, is_file: bool) -> None:
    """Show the parsed plan, progress and the next task."""
    try:
        if is_file:
            plan_path = Path(target)
        else:
            plan_path = plan_path_for_version(_build_deps(), target)
        parsed = parse_plan_file(plan_path)
    except ForgeError as e:
        _fail(e.message, e.code)

    title = parsed.project_name or str(plan_path)
    table = Table(title=title)
    table.add_column("")
    table.add_column("Task")
    table.add_column("Description")
    table.add_column("Depends")
    for milestone in parsed.milestones:
        table.add_row(
            "",
            f"[bold]{milestone.id}[/bold]",
            f"[bold]{milestone.name}[/bold] ({milestone.completed_count}/{milestone.total_count})",
            "",
        )
        for task in milestone.tasks:
            table.add_row(
                STATUS_MARKS.get(task.status, task.status),
                task.id,
                task.description,
                ", ".join(task.depends) or "-",
            )
    console.print(table)

    progress = get_progress(parsed)
    console.print(f"Progress: {progress.completed}/{progress.total} ({progress.percent}%)")

    decision = get_next_task(parsed)
    if decision.reason == "task_found" and decision.task:
        console.print(f"Next: [bold]{decision.task.id}[/bold] {decision.task.description}")
    elif decision.reason == "blocked" and decision.task:
        console.print(
            f"[yellow]Blocked:[/yellow] {decision.task.id} waits on "
            f"{', '.join(decision.blocked_by)}"
        )
    else:
        console.print(f"[green]{decision.reason.replace('_', ' ')}[/green]")

    blocked = get_blocked_tasks(parsed)
    if len(blocked) > 1:
        console.print(f"{len(blocked)} tasks are waiting on unfinished dependencies")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
