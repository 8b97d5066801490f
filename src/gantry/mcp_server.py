"""MCP server for Gantry: exposes schedule projections to AI assistants."""

from __future__ import annotations

import json

from mcp.server.fastmcp import FastMCP

from gantry.baseline import set_baseline as engine_set_baseline
from gantry.capacity import aggregate_capacity, collect_resources
from gantry.errors import ImportParseError
from gantry.grouping import group_by_resource
from gantry.models import Resource
from gantry.overallocation import find_conflicts
from gantry.persistence import DEFAULT_DB_FILE, Store, load_graphs
from gantry.reconcile import ResourceDirectory, reconcile_import
from gantry.workdays import calculate_end_date, last_working_day

mcp = FastMCP(
    "gantry",
    instructions="""\
Gantry is the scheduling engine of a project-portfolio application. Each \
project is a JSON document of tasks (start date + duration in working days, \
Monday-Friday) and finish-to-start links. Tasks can have several resources, \
each with an allocation percentage (100 = full time).

Key concepts:
- **End dates**: always derived from start + working days. The exclusive end \
is the day after the last working day.
- **Heatmap**: allocated hours per resource per week across every project \
file given. 0h idle, up to 30h light, up to 40h near capacity, above 40h \
overallocated.
- **Conflicts**: a task is flagged when one of its resources is booked on \
another task over overlapping dates, regardless of hours.
- **Grouped view**: the schedule redrawn as one lane per resource.

Use get_heatmap for workload questions across projects, get_conflicts for \
double bookings, get_grouped_view for "who is doing what", set_baseline \
before re-planning, and import_schedule to merge an external plan.\
""",
)


def _paths(project_files: list[str] | None) -> list[str]:
    return project_files or [DEFAULT_DB_FILE]


@mcp.tool()
def get_end_date(start_date: str, duration_days: int) -> str:
    """Compute the end of a span of working days.

    Args:
        start_date: Start date (YYYY-MM-DD)
        duration_days: Number of working days
    """
    try:
        exclusive = calculate_end_date(start_date, duration_days)
        inclusive = last_working_day(start_date, duration_days)
    except ValueError as e:
        return f"Error: {e}"
    return json.dumps(
        {"end_exclusive": exclusive.strftime("%Y-%m-%d"), "last_working_day": inclusive.strftime("%Y-%m-%d")}
    )


@mcp.tool()
def get_heatmap(
    project_files: list[str] | None = None,
    resource_ids: list[str] | None = None,
    weeks: int = 12,
    today: str | None = None,
) -> str:
    """Weekly allocated hours per resource across projects.

    Args:
        project_files: Project documents to include (default: schedule.json)
        resource_ids: Resources to report (default: everyone assigned)
        weeks: Number of weeks from the current Monday
        today: Anchor date (YYYY-MM-DD); defaults to today
    """
    try:
        graphs = load_graphs(_paths(project_files))
        names = collect_resources(graphs)
        report = aggregate_capacity(resource_ids or list(names), graphs, weeks=weeks, today=today, config=graphs[0].config)
    except ValueError as e:
        return f"Error: {e}"

    result = {
        "weeks": [w.strftime("%Y-%m-%d") for w in report.week_starts],
        "resources": [
            {
                "id": rid,
                "name": names.get(rid, rid),
                "hours": report.for_resource(rid),
                "load": [c.value for c in report.classification(rid)],
            }
            for rid in report.hours
        ],
    }
    return json.dumps(result, indent=2)


@mcp.tool()
def get_conflicts(project_files: list[str] | None = None) -> str:
    """Tasks whose resources are double-booked over overlapping dates.

    Args:
        project_files: Project documents to compare (default: schedule.json)
    """
    paths = _paths(project_files)
    try:
        graphs = load_graphs(paths)
    except ValueError as e:
        return f"Error: {e}"

    result = []
    for (gi, tid), items in sorted(find_conflicts(graphs).items()):
        result.append(
            {
                "project": paths[gi],
                "task_id": tid,
                "task": graphs[gi].get(tid).name,
                "conflicts": [
                    {"project": paths[c.other[0]], "task_id": c.other[1], "resource_id": c.resource_id}
                    for c in items
                ],
            }
        )
    return json.dumps(result, indent=2)


@mcp.tool()
def get_grouped_view(project_file: str = DEFAULT_DB_FILE) -> str:
    """The project redrawn with one lane per resource.

    Args:
        project_file: Project document
    """
    try:
        _, graph = Store(project_file).load()
    except ValueError as e:
        return f"Error: {e}"
    return json.dumps(group_by_resource(graph).to_document(), indent=2)


@mcp.tool()
def set_baseline(slot: int = 0, project_file: str = DEFAULT_DB_FILE) -> str:
    """Snapshot current task dates into a numbered baseline.

    Args:
        slot: Baseline number (0-10)
        project_file: Project document
    """
    store = Store(project_file)
    try:
        config, graph = store.load()
        count = engine_set_baseline(graph, slot)
    except ValueError as e:
        return f"Error: {e}"
    store.save(config, graph)
    return f"Baseline {slot} set for {count} task(s)."


@mcp.tool()
def import_schedule(
    document: dict,
    team: list[dict],
    project_file: str = DEFAULT_DB_FILE,
    dry_run: bool = False,
) -> str:
    """Merge an external schedule into a project.

    Args:
        document: {"tasks": [...], "links": [...], "resources": [...], "resourceAssignments": [...]}
        team: Project team members as [{"id": "...", "name": "..."}]
        project_file: Project document to merge into
        dry_run: Report what would be imported without saving
    """
    store = Store(project_file)
    try:
        directory = ResourceDirectory(Resource(id=str(m["id"]), name=m["name"]) for m in team)
        config, graph = store.load()
        result = reconcile_import(graph, document, directory)
    except (KeyError, TypeError) as e:
        return f"Error: malformed team entry ({e})"
    except ImportParseError as e:
        return f"Error: import aborted: {e}"
    except ValueError as e:
        return f"Error: {e}"

    if not dry_run:
        store.save(config, result.graph)
    return json.dumps(
        {
            "saved": not dry_run,
            "task_id_map": {str(k): v for k, v in result.task_id_map.items()},
            "link_id_map": {str(k): v for k, v in result.link_id_map.items()},
            "warnings": result.warnings,
        },
        indent=2,
    )


def main():
    """Entry point for the MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
