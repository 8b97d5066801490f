"""Resource-lane view of a schedule: one synthetic header per resource."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime

from gantry.graph import TaskGraph
from gantry.models import RESERVED_ID_BASE, Task, TaskKind
from gantry.workdays import calculate_end_date, format_date

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"


@dataclass
class GroupHeader:
    """A resource lane. Not a real task and never persisted."""

    id: int
    resource_id: str | None
    name: str
    read_only: bool = True
    expanded: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.name,
            "type": TaskKind.SUMMARY.value,
            "resource_id": self.resource_id,
            "readonly": self.read_only,
            "open": self.expanded,
            "parent": 0,
        }


@dataclass
class GroupedTask:
    """One copy of a task placed under a resource lane."""

    id: int
    group_id: int
    source_task_id: int
    source_parent_id: int
    task: Task

    @property
    def end_date(self) -> datetime:
        return calculate_end_date(self.task.start_date, self.task.duration_days)

    def to_dict(self) -> dict:
        d = self.task.to_dict()
        d["id"] = self.id
        d["parent"] = self.group_id
        d["source_task_id"] = self.source_task_id
        d["source_parent_id"] = self.source_parent_id
        d["end_date"] = format_date(self.end_date)
        return d


@dataclass
class GroupedView:
    """Read-only projection produced by :func:`group_by_resource`."""

    headers: list[GroupHeader]
    rows: dict[int, list[GroupedTask]]
    original: TaskGraph = field(repr=False)

    def lane(self, resource_id: str | None) -> list[GroupedTask]:
        for header in self.headers:
            if header.resource_id == resource_id:
                return self.rows[header.id]
        return []

    def copies_of(self, task_id: int) -> list[GroupedTask]:
        return [row for rows in self.rows.values() for row in rows if row.source_task_id == task_id]

    def ungroup(self) -> TaskGraph:
        """The schedule as it was before grouping, links included."""
        return self.original.copy()

    def to_document(self) -> dict:
        data: list[dict] = []
        for header in self.headers:
            data.append(header.to_dict())
            data.extend(row.to_dict() for row in self.rows[header.id])
        return {"data": data, "links": []}


def _lane_keys(task: Task) -> list[tuple[str, str]]:
    """Valid (resource id, display name) pairs; malformed ids are skipped."""
    keys = []
    for rid, name in task.resource_pairs():
        if not isinstance(rid, str) or not rid.strip():
            logger.warning("Task %s has a malformed resource id %r; treating as unassigned", task.id, rid)
            continue
        keys.append((rid, name or rid))
    return keys


def group_by_resource(graph: TaskGraph, id_base: int = RESERVED_ID_BASE) -> GroupedView:
    """Group tasks under one header per assigned resource.

    A task with several resources appears once in each of their lanes; tasks
    without a usable resource go to a trailing "Unassigned" lane. Links are
    not carried into the view. The source graph is not modified.
    """
    original = graph.copy()
    lanes: dict[str, str] = {}
    members: dict[str | None, list[Task]] = {}
    for task in original:
        keys = _lane_keys(task)
        if not keys:
            members.setdefault(None, []).append(task)
            continue
        for rid, name in keys:
            lanes.setdefault(rid, name)
            members.setdefault(rid, []).append(task)

    ordered: list[tuple[str | None, str]] = sorted(lanes.items(), key=lambda kv: (kv[1], kv[0]))
    if None in members:
        ordered.append((None, UNASSIGNED))

    headers = [
        GroupHeader(id=id_base + i, resource_id=rid, name=name)
        for i, (rid, name) in enumerate(ordered)
    ]
    next_id = id_base + len(headers)
    rows: dict[int, list[GroupedTask]] = {}
    for header in headers:
        lane_rows = []
        for task in sorted(members[header.resource_id], key=lambda t: t.id):
            lane_rows.append(
                GroupedTask(
                    id=next_id,
                    group_id=header.id,
                    source_task_id=task.id,
                    source_parent_id=task.parent_id,
                    task=copy.deepcopy(task),
                )
            )
            next_id += 1
        rows[header.id] = lane_rows

    logger.debug("Grouped %d task(s) into %d lane(s)", len(original), len(headers))
    return GroupedView(headers=headers, rows=rows, original=original)
