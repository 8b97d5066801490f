"""Merge an externally produced schedule into a project's task graph.

The import document is the normalized form of an interchange file::

    {
        "tasks": [{"id": 1, "name": "Design", "start": "2024-01-08",
                   "duration": 3, "parent": 0, "resources": "Alice, Bob"}],
        "links": [{"id": 1, "source": 1, "target": 2, "type": "0"}],
        "resources": [{"id": "R1", "name": "Alice"}],
        "resourceAssignments": [{"task_id": 1, "resource_id": "R1", "units": 1.0}]
    }

Imported ids are remapped above the graph's current maxima, resource names
are matched against the project team, and the result is appended to the
graph. Anything that cannot be parsed aborts the whole import; problems
below task level, cycle-closing links included, are returned as warnings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import networkx as nx

from gantry.errors import ImportParseError, ScheduleValidationError
from gantry.graph import TaskGraph
from gantry.models import (
    FINISH_TO_START,
    ROOT_ID,
    DependencyLink,
    Resource,
    Task,
    TaskKind,
)
from gantry.workdays import parse_date

logger = logging.getLogger(__name__)

Resolver = Callable[[str], "str | None"]

_TASK_FIELDS = {
    "id", "name", "text", "start", "start_date", "duration", "progress",
    "parent", "type", "milestone", "resources", "owner", "owner_name",
}
_LINK_FIELDS = {"id", "source", "target", "type"}


class ResourceDirectory:
    """Team-member lookup: exact name first, then case-insensitive trimmed."""

    def __init__(self, resources: Iterable[Resource]):
        self._exact: dict[str, str] = {}
        self._folded: dict[str, str] = {}
        for r in resources:
            self._exact.setdefault(r.name, r.id)
            self._folded.setdefault(r.name.strip().casefold(), r.id)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> ResourceDirectory:
        return cls(Resource(id=rid, name=name) for rid, name in pairs)

    def resolve(self, name: str) -> str | None:
        if name in self._exact:
            return self._exact[name]
        return self._folded.get(name.strip().casefold())

    __call__ = resolve


@dataclass
class ImportResult:
    graph: TaskGraph
    warnings: list[str] = field(default_factory=list)
    task_id_map: dict[int, int] = field(default_factory=dict)
    link_id_map: dict[int, int] = field(default_factory=dict)

    @property
    def added_task_ids(self) -> list[int]:
        return list(self.task_id_map.values())


@dataclass
class _ImportedTask:
    original_id: int
    name: str
    start: datetime
    duration: int
    progress: float
    parent: int
    kind: TaskKind
    raw: dict[str, Any]
    extension: dict[str, Any]


@dataclass
class _ImportedLink:
    original_id: int
    source: int
    target: int
    type: str
    extension: dict[str, Any]


@dataclass
class _ImportContext:
    resources: dict[str, str]  # import resource id -> name
    assignments: dict[int, list[tuple[str, float | None]]]  # task id -> (resource id, pct)
    warnings: list[str]


# ---------------------------------------------------------------------------
# Parsing (all-or-nothing)
# ---------------------------------------------------------------------------


def _int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise ImportParseError(f"{what} must be an integer, got {value!r}")
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise ImportParseError(f"{what} must be an integer, got {value!r}") from None
    if not as_float.is_integer():
        raise ImportParseError(f"{what} must be an integer, got {value!r}")
    return int(as_float)


def _list(doc: dict, key: str) -> list:
    value = doc.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ImportParseError(f'"{key}" must be an array')
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ImportParseError(f'"{key}" entry {i} is not an object')
    return value


def _parse_task(raw: dict, index: int) -> _ImportedTask:
    if "id" not in raw:
        raise ImportParseError(f"Task at index {index} has no id")
    name = raw.get("name", raw.get("text"))
    if not isinstance(name, str):
        raise ImportParseError(f"Task at index {index} has no name")
    start_raw = raw.get("start", raw.get("start_date"))
    try:
        start = parse_date(start_raw)
    except ScheduleValidationError as e:
        raise ImportParseError(f"Task '{name}': {e}") from None

    duration = _int(raw.get("duration") or 0, f"Task '{name}' duration")
    if duration < 0:
        raise ImportParseError(f"Task '{name}' has a negative duration")
    try:
        progress = float(raw.get("progress") or 0)
    except (TypeError, ValueError):
        raise ImportParseError(f"Task '{name}' progress must be a number") from None
    if progress > 1:
        progress /= 100  # percent-complete exports

    if raw.get("milestone") is True:
        kind = TaskKind.MILESTONE
    else:
        try:
            kind = TaskKind(raw.get("type") or TaskKind.TASK)
        except ValueError:
            raise ImportParseError(f"Task '{name}' has unknown type {raw.get('type')!r}") from None

    return _ImportedTask(
        original_id=_int(raw["id"], f"Task at index {index} id"),
        name=name,
        start=start,
        duration=duration,
        progress=min(max(progress, 0.0), 1.0),
        parent=_int(raw.get("parent") or ROOT_ID, f"Task '{name}' parent"),
        kind=kind,
        raw=raw,
        extension={k: v for k, v in raw.items() if k not in _TASK_FIELDS},
    )


def _parse_link(raw: dict, index: int) -> _ImportedLink:
    for key in ("source", "target"):
        if key not in raw:
            raise ImportParseError(f"Link at index {index} has no {key}")
    return _ImportedLink(
        original_id=_int(raw.get("id", index + 1), f"Link at index {index} id"),
        source=_int(raw["source"], f"Link at index {index} source"),
        target=_int(raw["target"], f"Link at index {index} target"),
        type=str(raw.get("type", FINISH_TO_START)),
        extension={k: v for k, v in raw.items() if k not in _LINK_FIELDS},
    )


def _parse_assignment_pct(raw: dict) -> float | None:
    if raw.get("allocation") is not None:
        return float(raw["allocation"])
    if raw.get("units") is not None:
        return float(raw["units"]) * 100  # units are a fraction of full time
    return None


def _parse_document(document: Any) -> tuple[list[_ImportedTask], list[_ImportedLink], _ImportContext]:
    if not isinstance(document, dict):
        raise ImportParseError("Import document must be an object")
    if not isinstance(document.get("tasks"), list):
        raise ImportParseError('Import document must have a "tasks" array')

    tasks = [_parse_task(raw, i) for i, raw in enumerate(_list(document, "tasks"))]
    seen: set[int] = set()
    for t in tasks:
        if t.original_id in seen:
            raise ImportParseError(f"Duplicate task id {t.original_id} in import")
        seen.add(t.original_id)

    links = [_parse_link(raw, i) for i, raw in enumerate(_list(document, "links"))]

    resources: dict[str, str] = {}
    for i, raw in enumerate(_list(document, "resources")):
        if "id" not in raw or not isinstance(raw.get("name"), str):
            raise ImportParseError(f"Resource at index {i} needs an id and a name")
        resources[str(raw["id"])] = raw["name"]

    assignments: dict[int, list[tuple[str, float | None]]] = {}
    for i, raw in enumerate(_list(document, "resourceAssignments")):
        if "task_id" not in raw or "resource_id" not in raw:
            raise ImportParseError(f"Resource assignment at index {i} needs task_id and resource_id")
        try:
            pct = _parse_assignment_pct(raw)
        except (TypeError, ValueError):
            raise ImportParseError(f"Resource assignment at index {i} has a bad allocation") from None
        task_id = _int(raw["task_id"], f"Resource assignment at index {i} task_id")
        assignments.setdefault(task_id, []).append((str(raw["resource_id"]), pct))

    return tasks, links, _ImportContext(resources=resources, assignments=assignments, warnings=[])


# ---------------------------------------------------------------------------
# Resource name strategies, highest priority first
# ---------------------------------------------------------------------------

NameList = list[tuple[str, "float | None"]]


def names_from_assignments(ctx: _ImportContext, task: _ImportedTask) -> NameList:
    names = []
    for rid, pct in ctx.assignments.get(task.original_id, []):
        name = ctx.resources.get(rid)
        if name is None:
            ctx.warnings.append(f"Task '{task.name}': assignment references unknown resource {rid}")
            continue
        names.append((name, pct))
    return names


def names_from_text_field(ctx: _ImportContext, task: _ImportedTask) -> NameList:
    text = task.raw.get("resources")
    if not isinstance(text, str):
        return []
    return [(part.strip(), None) for part in text.split(",") if part.strip()]


def names_from_owner_fields(ctx: _ImportContext, task: _ImportedTask) -> NameList:
    for key in ("owner", "owner_name"):
        value = task.raw.get(key)
        if isinstance(value, str) and value.strip():
            return [(value.strip(), None)]
    return []


RESOURCE_STRATEGIES: tuple[Callable[[_ImportContext, _ImportedTask], NameList], ...] = (
    names_from_assignments,
    names_from_text_field,
    names_from_owner_fields,
)


def _lookup(resolve: Resolver, name: str) -> str | None:
    rid = resolve(name)
    if rid is None and name.strip() != name:
        rid = resolve(name.strip())
    return rid


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def _break_parent_cycles(parents: dict[int, int], names: dict[int, str], warnings: list[str]) -> None:
    for tid in parents:
        current = parents[tid]
        for _ in range(len(parents)):
            if current == ROOT_ID or current not in parents:
                break
            if current == tid:
                warnings.append(f"Task '{names[tid]}': parent cycle broken, moved to root")
                parents[tid] = ROOT_ID
                break
            current = parents[current]


def reconcile_import(graph: TaskGraph, document: Any, resolve: Resolver) -> ImportResult:
    """Append the tasks and links of *document* to *graph*.

    *resolve* maps a team-member name to a resource id (or None). Raises
    ImportParseError, leaving *graph* untouched, when the document is
    malformed.
    """
    imported, imported_links, ctx = _parse_document(document)
    warnings = ctx.warnings

    next_task_id = graph.next_task_id()
    next_link_id = graph.next_link_id()
    id_map: dict[int, int] = {}
    for offset, item in enumerate(imported):
        id_map[item.original_id] = next_task_id + offset

    parents: dict[int, int] = {}
    for item in imported:
        parents[id_map[item.original_id]] = id_map.get(item.parent, ROOT_ID)
    _break_parent_cycles(parents, {id_map[i.original_id]: i.name for i in imported}, warnings)

    max_pct = graph.config.max_allocation_percent
    new_tasks: list[Task] = []
    for item in imported:
        found: NameList = []
        for strategy in RESOURCE_STRATEGIES:
            found = strategy(ctx, item)
            if found:
                break

        matched_ids: list[str] = []
        matched_names: list[str] = []
        unmatched: list[str] = []
        allocations: dict[str, float] = {}
        for name, pct in found:
            rid = _lookup(resolve, name)
            if rid is None:
                unmatched.append(name.strip())
                warnings.append(f"Task '{item.name}': resource '{name.strip()}' not found in team directory")
                continue
            if rid in matched_ids:
                continue
            matched_ids.append(rid)
            matched_names.append(name.strip())
            if pct is not None:
                if not 0 <= pct <= max_pct:
                    warnings.append(f"Task '{item.name}': allocation {pct:g}% for '{name}' clamped to 0-{max_pct:g}")
                    pct = min(max(pct, 0.0), max_pct)
                allocations[rid] = pct

        task = Task(
            id=id_map[item.original_id],
            name=item.name,
            start_date=item.start,
            duration_days=item.duration,
            kind=item.kind,
            progress=item.progress,
            parent_id=parents[id_map[item.original_id]],
            resource_ids=matched_ids,
            resource_names=matched_names + unmatched,
            allocations=allocations,
            owner_id=matched_ids[0] if matched_ids else None,
            owner_name=(matched_names + unmatched)[0] if (matched_names or unmatched) else None,
            extension_fields=item.extension,
        )
        task.work_hours = task.compute_work_hours(graph.config.hours_per_day)
        new_tasks.append(task)

    existing_pairs = {(l.source, l.target, l.type) for l in graph.links}
    # Imported tasks are new, so only imported links can close a cycle.
    dag = nx.DiGraph()
    dag.add_nodes_from(t.id for t in new_tasks)
    link_map: dict[int, int] = {}
    new_links: list[DependencyLink] = []
    for item in imported_links:
        source = id_map.get(item.source)
        target = id_map.get(item.target)
        if source is None or target is None:
            warnings.append(f"Link {item.original_id} dropped: endpoint {item.source} -> {item.target} was not imported")
            continue
        if source == target:
            warnings.append(f"Link {item.original_id} dropped: task cannot depend on itself")
            continue
        if (source, target, item.type) in existing_pairs:
            warnings.append(f"Link {item.original_id} dropped: duplicate dependency")
            continue
        if nx.has_path(dag, target, source):
            warnings.append(f"Link {item.original_id} dropped: {item.source} -> {item.target} would create a dependency cycle")
            continue
        dag.add_edge(source, target)
        existing_pairs.add((source, target, item.type))
        link = DependencyLink(
            id=next_link_id + len(new_links),
            source=source,
            target=target,
            type=item.type,
            extension_fields=item.extension,
        )
        link_map[item.original_id] = link.id
        new_links.append(link)

    try:
        graph.extend(new_tasks, new_links)
    except ScheduleValidationError as e:
        raise ImportParseError(f"Import rejected: {e}") from e

    for w in warnings:
        logger.warning(w)
    logger.info("Imported %d task(s) and %d link(s) with %d warning(s)", len(new_tasks), len(new_links), len(warnings))
    return ImportResult(graph=graph, warnings=warnings, task_id_map=id_map, link_id_map=link_map)
