"""Main CLI entry point using Typer."""

import json
from pathlib import Path
from typing import Any

import anyio
import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from taskforge import __version__
from taskforge.core.config import get_settings
from taskforge.core.errors import TaskforgeError
from taskforge.core.logging import configure_logging
from taskforge.decomposition.models import (
    AtomicTask,
    Dependency,
    ProjectContext,
    TaskPriority,
    TaskType,
)
from taskforge.graph.dependency_graph import DependencyGraph
from taskforge.graph.rendering import DependencyGraphArtifactWriter
from taskforge.scheduling.scheduler import ScheduleAlgorithm, TaskScheduler, makespan

app = typer.Typer(
    name="taskforge",
    help="taskforge - Decompose development tasks into atomic, schedulable units",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()

STATUS_COLORS = {
    "healthy": "green",
    "degraded": "yellow",
    "unhealthy": "red",
    "unknown": "dim",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]taskforge[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
) -> None:
    """
    taskforge - Recursive task decomposition and scheduling.

    Splits coarse tasks into atomic units of 5-10 minutes, infers their
    dependencies and produces execution schedules.
    """
    settings = get_settings()
    if debug:
        settings = settings.model_copy(update={"taskforge_debug": True})
    configure_logging(settings)


# =============================================================================
# HELPERS
# =============================================================================


def _load_task_file(path: Path) -> tuple[str, list[AtomicTask], list[Dependency] | None]:
    """
    Read ``{"project_id": ..., "tasks": [...], "dependencies": [...]}``.

    A bare list is accepted as the task list.
    """
    data: Any = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        data = {"tasks": data}

    tasks = [AtomicTask.model_validate(t) for t in data.get("tasks", [])]
    raw_deps = data.get("dependencies")
    dependencies = (
        [Dependency.model_validate(d) for d in raw_deps] if raw_deps is not None else None
    )
    project_id = data.get("project_id") or (tasks[0].project_id if tasks else "")
    return project_id, tasks, dependencies


def _task_table(title: str, tasks: list[AtomicTask]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Hours", justify="right")
    table.add_column("Priority")
    table.add_column("Dependencies")

    for task in tasks:
        deps = ", ".join(task.dependencies) or "-"
        table.add_row(
            task.id,
            task.title,
            f"{task.estimated_hours:.2f}",
            task.priority.value,
            deps[:30] + "..." if len(deps) > 30 else deps,
        )
    return table


# =============================================================================
# COMMANDS
# =============================================================================


@app.command()
def decompose(
    title: str = typer.Argument(..., help="Task title"),
    description: str = typer.Option("", "--description", "-D", help="Task description"),
    hours: float = typer.Option(4.0, "--hours", "-h", help="Estimated hours"),
    project_id: str = typer.Option("default", "--project", "-p", help="Project ID"),
    task_id: str = typer.Option("T0001", "--task-id", help="Source task ID"),
    priority: TaskPriority = typer.Option(TaskPriority.MEDIUM, "--priority", help="Priority"),
    task_type: TaskType = typer.Option(TaskType.DEVELOPMENT, "--type", help="Task type"),
    criteria: list[str] = typer.Option([], "--criterion", "-c", help="Acceptance criterion"),
    languages: list[str] = typer.Option([], "--language", "-l", help="Project language"),
    frameworks: list[str] = typer.Option([], "--framework", "-f", help="Project framework"),
    max_depth: int | None = typer.Option(None, "--max-depth", help="Maximum recursion depth"),
    persist: bool = typer.Option(
        False, "--persist", help="Persist tasks to the configured database"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write the session export as JSON"
    ),
) -> None:
    """
    Decompose a task into atomic subtasks.

    Example:
        taskforge decompose "Implement user authentication" --hours 16 -l python
    """
    from taskforge.llm.client import AnthropicClient
    from taskforge.sessions.models import DecompositionOptions
    from taskforge.sessions.service import DecompositionService
    from taskforge.storage.memory import InMemoryTaskStore
    from taskforge.storage.sql import SqlTaskStore

    task = AtomicTask(
        id=task_id,
        title=title,
        description=description or title,
        type=task_type,
        priority=priority,
        project_id=project_id,
        estimated_hours=hours,
        acceptance_criteria=criteria,
    )
    context = ProjectContext(
        project_id=project_id,
        languages=languages,
        frameworks=frameworks,
    )

    console.print(
        Panel(
            f"[bold]{task.title}[/bold]\n{task.description[:200]}\n"
            f"[dim]{task.estimated_hours}h, {task.priority.value}[/dim]",
            title="[bold blue]taskforge[/bold blue]",
            border_style="blue",
        )
    )

    async def execute() -> None:
        store = SqlTaskStore() if persist else InMemoryTaskStore()
        if isinstance(store, SqlTaskStore):
            await store.initialize()

        try:
            service = DecompositionService(AnthropicClient(), store)
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task("Decomposing task...", total=None)
                session = service.start_decomposition(
                    task, context, DecompositionOptions(max_depth=max_depth)
                )
                session = await service.wait_for_session(session.id)

            if session.status.value != "completed":
                console.print(f"\n[bold red]Decomposition failed: {session.error}[/bold red]")
                raise typer.Exit(code=1)

            tasks = [t for t in [await store.get_task(i) for i in session.persisted_task_ids] if t]
            if tasks:
                console.print(_task_table("Atomic Tasks", tasks))
            else:
                console.print("[green]Task is already atomic[/green]")

            console.print(
                f"\n[bold green]Completed[/bold green] {session.total_tasks} task(s), "
                f"makespan {makespan(session.schedule):.2f}h"
            )
            for path in session.artifact_paths:
                console.print(f"[dim]Artifact: {path}[/dim]")
            for warning in session.warnings:
                console.print(f"[yellow]Warning:[/yellow] {warning}")

            if output:
                output.write_text(
                    json.dumps(service.export_session(session.id), indent=2), encoding="utf-8"
                )
                console.print(f"[green]Saved to {output}[/green]")
        finally:
            await store.close()

    try:
        anyio.run(execute)
    except TaskforgeError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from None


@app.command()
def schedule(
    tasks_file: Path = typer.Argument(..., exists=True, help="JSON file with tasks"),
    algorithm: ScheduleAlgorithm = typer.Option(
        ScheduleAlgorithm.HYBRID_OPTIMAL, "--algorithm", "-a", help="Scheduling algorithm"
    ),
    slots: int | None = typer.Option(None, "--slots", "-s", help="Concurrent slots"),
) -> None:
    """
    Schedule tasks from a JSON file.

    Example:
        taskforge schedule tasks.json --algorithm critical_path
    """
    project_id, tasks, dependencies = _load_task_file(tasks_file)
    graph = DependencyGraph.from_tasks(tasks, dependencies, project_id=project_id)
    scheduler = TaskScheduler(concurrent_slots=slots or get_settings().taskforge_scheduler_slots)

    try:
        result = scheduler.schedule(tasks, graph, algorithm)
    except TaskforgeError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from None

    table = Table(title=f"Schedule ({algorithm.value})")
    table.add_column("Task", style="cyan")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Slot", justify="right")

    for entry in sorted(result.values(), key=lambda e: (e.start, e.task_id)):
        table.add_row(
            entry.task_id,
            entry.start.strftime("%Y-%m-%d %H:%M"),
            entry.end.strftime("%Y-%m-%d %H:%M"),
            str(entry.metadata.get("slot", "-")),
        )

    console.print(table)
    console.print(f"Makespan: [bold]{makespan(result):.2f}h[/bold]")


@app.command()
def graph(
    tasks_file: Path = typer.Argument(..., exists=True, help="JSON file with tasks"),
    output_dir: Path | None = typer.Option(
        None, "--output", "-o", help="Artifact directory"
    ),
) -> None:
    """
    Analyze a dependency graph and write its artifacts.
    """
    project_id, tasks, dependencies = _load_task_file(tasks_file)
    dependency_graph = DependencyGraph.from_tasks(tasks, dependencies, project_id=project_id)

    cycles = dependency_graph.detect_cycles()
    for cycle in cycles:
        console.print(f"[bold red]Cycle:[/bold red] {' -> '.join(cycle)}")

    stats = dependency_graph.statistics()
    console.print(
        f"{stats.total_tasks} tasks, {stats.total_dependencies} dependencies, "
        f"critical path {stats.critical_path_hours:.2f}h"
    )

    writer = DependencyGraphArtifactWriter(output_dir or get_settings().artifacts_dir)
    artifacts = writer.write(dependency_graph)
    for path in artifacts.paths:
        console.print(f"[green]Wrote {path}[/green]")

    if cycles:
        raise typer.Exit(code=1)


@app.command()
def epics(
    project_id: str = typer.Argument(..., help="Project ID"),
) -> None:
    """
    Analyze epic dependencies of a persisted project.
    """
    from taskforge.epics.dependency_manager import EpicDependencyManager
    from taskforge.storage.sql import SqlTaskStore

    async def execute() -> None:
        store = SqlTaskStore()
        await store.initialize()
        try:
            manager = EpicDependencyManager(store, get_settings().epic_config())
            analysis = await manager.analyze_epic_dependencies(project_id)
        finally:
            await store.close()

        table = Table(title=f"Epic Phases ({analysis.total_epics} epics)")
        table.add_column("Phase", style="cyan")
        table.add_column("Epics", style="bold")
        table.add_column("Duration", justify="right")
        table.add_column("Parallel")

        for phase in analysis.phases:
            table.add_row(
                phase.name,
                ", ".join(phase.epic_ids),
                f"{phase.estimated_duration:.1f}h",
                "yes" if phase.can_run_in_parallel else "no",
            )
        console.print(table)

        for conflict in analysis.conflicts:
            console.print(
                f"[red]{conflict['severity']}[/red] {conflict['type']}: {conflict['description']}"
            )
        for recommendation in analysis.recommendations:
            console.print(f"[blue]{recommendation['type']}[/blue]: {recommendation['description']}")

    try:
        anyio.run(execute)
    except TaskforgeError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from None


@app.command()
def health() -> None:
    """
    Check system health and dependencies.
    """
    console.print("[bold]Running health checks...[/bold]\n")

    async def do_health_check() -> None:
        from taskforge.monitoring.health_check import check_health

        result = await check_health()

        overall = result["status"]
        color = STATUS_COLORS.get(overall, "white")
        console.print(f"Overall Status: [{color}]{overall.upper()}[/{color}]\n")

        for check in result["checks"]:
            status = check["status"]
            color = STATUS_COLORS.get(status, "white")
            console.print(f"  {check['name']}: [{color}]{status}[/{color}] - {check['message']}")

    anyio.run(do_health_check)


if __name__ == "__main__":
    app()
