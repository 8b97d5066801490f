"""Typer CLI for Gantry."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from gantry.baseline import baseline_pairs, clear_baseline, set_baseline
from gantry.capacity import Load, aggregate_capacity, collect_resources
from gantry.errors import ImportParseError
from gantry.fulfillment import find_generic_assignments, fulfill_generic
from gantry.graph import TaskGraph
from gantry.grouping import group_by_resource
from gantry.models import EngineConfig, Resource
from gantry.overallocation import find_conflicts
from gantry.persistence import DEFAULT_DB_FILE, Store, load_graphs
from gantry.reconcile import ResourceDirectory, reconcile_import
from gantry.workdays import calculate_end_date, last_working_day, parse_date

app = typer.Typer(
    name="gantry",
    help="Schedule and resource-allocation engine for project portfolios.",
    no_args_is_help=True,
)
console = Console()

LOAD_STYLES = {
    Load.IDLE: "dim",
    Load.LIGHT: "green",
    Load.NEAR_CAPACITY: "yellow",
    Load.OVERALLOCATED: "bold red",
}

FileOption = Annotated[str, typer.Option("--file", "-f", help="Project document (JSON)")]
FilesArgument = Annotated[Optional[list[str]], typer.Argument(help="Project documents (default: schedule.json)")]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log engine activity")] = False,
) -> None:
    level = "DEBUG" if verbose else os.environ.get("GANTRY_LOG_LEVEL", "WARNING")
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _get_store(path: str) -> Store:
    return Store(path)


def _load(path: str) -> tuple[EngineConfig | None, TaskGraph]:
    try:
        return _get_store(path).load()
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def _load_many(files: list[str] | None) -> list[TaskGraph]:
    paths = files or [DEFAULT_DB_FILE]
    for p in paths:
        if not Path(p).exists():
            console.print(f"[red]File not found: {p}[/red]")
            raise typer.Exit(1)
    try:
        return load_graphs(paths)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def _parse_day(value: str) -> datetime:
    try:
        return parse_date(value)
    except ValueError:
        console.print(f"[red]Invalid date '{value}'. Use YYYY-MM-DD.[/red]")
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    file: FileOption = DEFAULT_DB_FILE,
    hours_per_day: float = 8.0,
    weeks: int = 12,
    max_allocation: float = 300.0,
    snap_weekends: Annotated[bool, typer.Option(help="Move weekend starts to Monday")] = False,
) -> None:
    """Initialize (or reinitialize) project configuration."""
    _, graph = _load(file)
    config = EngineConfig(
        hours_per_day=hours_per_day,
        heatmap_weeks=weeks,
        max_allocation_percent=max_allocation,
        snap_start_to_workday=snap_weekends,
    )
    _get_store(file).save(config, graph)
    console.print(f"[green]Project configuration written to {file}[/green]")


@app.command()
def show(
    file: FileOption = DEFAULT_DB_FILE,
    search: Annotated[Optional[str], typer.Option("--search", "-s", help="Filter by task name")] = None,
) -> None:
    """List tasks with outline numbers, dates and work hours."""
    _, graph = _load(file)
    if not len(graph):
        console.print("No tasks found.")
        return

    codes = graph.outline_codes()
    visible = {t.id for t in graph.search(search)} if search else None

    table = Table(title="Schedule")
    table.add_column("WBS", style="dim")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Start")
    table.add_column("Last day")
    table.add_column("Days", justify="right")
    table.add_column("Resources")
    table.add_column("Hours", justify="right")

    for task in sorted(graph, key=lambda t: [int(p) for p in codes.get(t.id, "0").split(".")]):
        if visible is not None and task.id not in visible:
            continue
        indent = "  " * graph.depth(task.id)
        last = last_working_day(task.start_date, task.duration_days) if task.duration_days else task.start_date
        table.add_row(
            codes.get(task.id, ""),
            str(task.id),
            f"{indent}{task.name}",
            task.kind.value,
            task.start_date.strftime("%a %b %d"),
            last.strftime("%a %b %d"),
            str(task.duration_days),
            ", ".join(task.resource_names) or "[dim]-[/dim]",
            f"{task.work_hours:.1f}",
        )
    console.print(table)


@app.command("end-date")
def end_date(
    start: Annotated[str, typer.Argument(help="Start date (YYYY-MM-DD)")],
    duration: Annotated[int, typer.Argument(help="Working days")],
) -> None:
    """Show the exclusive end and the last working day of a span."""
    start_dt = _parse_day(start)
    try:
        exclusive = calculate_end_date(start_dt, duration)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"End (exclusive):  {exclusive:%Y-%m-%d %a}")
    if duration:
        console.print(f"Last working day: {last_working_day(start_dt, duration):%Y-%m-%d %a}")


@app.command()
def heatmap(
    files: FilesArgument = None,
    weeks: Annotated[Optional[int], typer.Option("--weeks", "-w", help="Number of weeks")] = None,
    today: Annotated[Optional[str], typer.Option(help="Anchor date (YYYY-MM-DD)")] = None,
    resource: Annotated[Optional[list[str]], typer.Option("--resource", "-r", help="Resource ids to show")] = None,
) -> None:
    """Weekly allocated hours per resource across all given projects."""
    graphs = _load_many(files)
    names = collect_resources(graphs)
    resource_ids = resource or list(names)
    if not resource_ids:
        console.print("No resources assigned.")
        return

    anchor = _parse_day(today) if today else None
    report = aggregate_capacity(resource_ids, graphs, weeks=weeks, today=anchor, config=graphs[0].config)

    table = Table(title="Resource allocation (hours per week)")
    table.add_column("Resource")
    for label in report.week_labels():
        table.add_column(label, justify="right")
    for rid in resource_ids:
        cells = []
        for hours, load in zip(report.for_resource(rid), report.classification(rid)):
            cells.append(f"[{LOAD_STYLES[load]}]{hours}[/{LOAD_STYLES[load]}]")
        table.add_row(names.get(rid, rid), *cells)
    console.print(table)


@app.command()
def conflicts(files: FilesArgument = None) -> None:
    """Tasks whose resources are double-booked over overlapping dates."""
    paths = files or [DEFAULT_DB_FILE]
    graphs = _load_many(paths)
    found = find_conflicts(graphs)
    if not found:
        console.print("[green]No overallocated tasks.[/green]")
        return

    table = Table(title=f"Overallocated tasks ({len(found)})")
    table.add_column("Project")
    table.add_column("Task")
    table.add_column("Resource")
    table.add_column("Conflicts with")
    for (gi, tid), items in sorted(found.items()):
        task = graphs[gi].get(tid)
        for c in items:
            ogi, otid = c.other
            other = graphs[ogi].get(otid)
            table.add_row(
                Path(paths[gi]).stem,
                f"{tid} {task.name}",
                c.resource_id,
                f"{Path(paths[ogi]).stem}:{otid} {other.name}",
            )
    console.print(table)


@app.command()
def group(file: FileOption = DEFAULT_DB_FILE) -> None:
    """Show the schedule with one lane per resource."""
    _, graph = _load(file)
    view = group_by_resource(graph)
    for header in view.headers:
        console.print(f"[bold]{header.name}[/bold] [dim]({header.id})[/dim]")
        for row in view.rows[header.id]:
            t = row.task
            console.print(
                f"  {row.source_task_id:>4}  {t.name}  "
                f"{t.start_date:%b %d} -> {row.end_date:%b %d}  ({t.duration_days}d)"
            )


@app.command()
def baseline(
    slot: Annotated[int, typer.Argument(help="Baseline number (0-10)")] = 0,
    file: FileOption = DEFAULT_DB_FILE,
    clear: Annotated[bool, typer.Option("--clear", help="Remove the baseline instead")] = False,
    list_only: Annotated[bool, typer.Option("--list", help="Show baseline vs current dates")] = False,
) -> None:
    """Capture, clear or list a numbered baseline."""
    config, graph = _load(file)
    try:
        if list_only:
            table = Table(title=f"Baseline {slot}")
            for col in ("ID", "Name", "Baseline start", "Baseline end", "Start", "End"):
                table.add_column(col)
            for p in baseline_pairs(graph, slot):
                table.add_row(
                    str(p.task_id), p.name,
                    f"{p.baseline_start:%Y-%m-%d}", f"{p.baseline_end:%Y-%m-%d}",
                    f"{p.current_start:%Y-%m-%d}", f"{p.current_end:%Y-%m-%d}",
                )
            console.print(table)
            return
        if clear:
            count = clear_baseline(graph, slot)
            verb = "Cleared"
        else:
            count = set_baseline(graph, slot)
            verb = "Set"
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    _get_store(file).save(config, graph)
    console.print(f"[green]{verb} baseline {slot} for {count} task(s).[/green]")


@app.command("import")
def import_schedule(
    source: Annotated[str, typer.Argument(help="Normalized import JSON, or - for stdin")],
    team: Annotated[str, typer.Option("--team", "-t", help='Team JSON: [{"id": ..., "name": ...}]')],
    file: FileOption = DEFAULT_DB_FILE,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Preview changes without saving")] = False,
) -> None:
    """Merge an external schedule into the project."""
    if source == "-":
        raw_text = sys.stdin.read()
    else:
        path = Path(source)
        if not path.exists():
            console.print(f"[red]File not found: {source}[/red]")
            raise typer.Exit(1)
        raw_text = path.read_text()

    try:
        document = json.loads(raw_text)
        members = json.loads(Path(team).read_text())
        directory = ResourceDirectory(Resource(id=str(m["id"]), name=m["name"]) for m in members)
    except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
        console.print(f"[red]Invalid input: {e}[/red]")
        raise typer.Exit(1)

    config, graph = _load(file)
    try:
        result = reconcile_import(graph, document, directory)
    except ImportParseError as e:
        console.print(f"[red]Import aborted: {e}[/red]")
        raise typer.Exit(1)

    if dry_run:
        console.print("\n[bold]Dry run - no changes saved[/bold]\n")
    else:
        _get_store(file).save(config, result.graph)

    console.print(f"[green]Imported {len(result.task_id_map)} task(s), {len(result.link_id_map)} link(s):[/green]")
    for original, new in result.task_id_map.items():
        t = result.graph.get(new)
        console.print(f"  {original} -> {new}  {t.name}  ({t.work_hours:.1f}h)")
    if result.warnings:
        console.print(f"[yellow]{len(result.warnings)} warning(s):[/yellow]")
        for w in result.warnings:
            console.print(f"  {w}")


@app.command()
def generic(files: FilesArgument = None) -> None:
    """List resource slots still held by generic placeholders."""
    paths = files or [DEFAULT_DB_FILE]
    found = find_generic_assignments(_load_many(paths))
    if not found:
        console.print("[green]No generic resources awaiting fulfillment.[/green]")
        return
    table = Table(title="Pending fulfillment")
    for col in ("Project", "Task", "Generic resource", "Allocation"):
        table.add_column(col)
    for g in found:
        table.add_row(
            Path(paths[g.graph_index]).stem,
            f"{g.task_id} {g.task_name}",
            f"{g.resource_name} ({g.resource_id})",
            f"{g.allocation:g}%",
        )
    console.print(table)


@app.command()
def fulfill(
    task_id: int,
    generic_id: Annotated[str, typer.Argument(help="Id of the generic resource to replace")],
    resource_id: Annotated[str, typer.Argument(help="Id of the named resource")],
    name: Annotated[str, typer.Argument(help="Display name of the named resource")],
    file: FileOption = DEFAULT_DB_FILE,
) -> None:
    """Replace a generic resource on a task with a named person."""
    config, graph = _load(file)
    try:
        record = fulfill_generic(graph, task_id, generic_id, Resource(id=resource_id, name=name))
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    _get_store(file).save(config, graph)
    console.print(
        f"[green]{record.generic_resource_name} -> {record.named_resource_name} "
        f"on task {task_id} ({record.allocated_hours:.1f}h)[/green]"
    )


if __name__ == "__main__":
    app()
