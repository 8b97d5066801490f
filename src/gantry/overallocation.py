"""Scheduling-conflict detection: a resource booked on overlapping tasks."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from gantry.graph import TaskGraph
from gantry.models import Task
from gantry.workdays import calculate_end_date

logger = logging.getLogger(__name__)

# (graph index, task id): task ids are only unique within one project.
TaskKey = tuple[int, int]


@dataclass(frozen=True)
class Span:
    key: TaskKey
    task: Task
    start: datetime
    end: datetime  # exclusive

    def overlaps(self, other: Span) -> bool:
        # Touching ends do not overlap.
        return other.start < self.end and other.end > self.start


@dataclass(frozen=True)
class Conflict:
    """*task* shares *resource_id* with *other* over an overlapping span."""

    task: TaskKey
    other: TaskKey
    resource_id: str


def _spans(graphs: Iterable[TaskGraph]) -> list[Span]:
    spans = []
    for gi, graph in enumerate(graphs):
        for task in graph:
            if task.is_summary:
                continue
            try:
                end = calculate_end_date(task.start_date, task.duration_days)
            except ValueError as e:
                logger.warning("Skipping task %s in graph %d: %s", task.id, gi, e)
                continue
            spans.append(Span(key=(gi, task.id), task=task, start=task.start_date, end=end))
    return spans


def _by_resource(spans: list[Span]) -> dict[str, list[Span]]:
    index: dict[str, list[Span]] = defaultdict(list)
    for span in spans:
        for rid in dict.fromkeys(span.task.resource_ids):
            if isinstance(rid, str) and rid:
                index[rid].append(span)
    return index


def find_conflicts(graphs: Iterable[TaskGraph]) -> dict[TaskKey, list[Conflict]]:
    """Every task that shares a resource with an overlapping task, mapped to
    the conflicts that flag it. Hours are not summed: two 50% bookings over
    the same days still conflict."""
    index = _by_resource(_spans(graphs))
    conflicts: dict[TaskKey, list[Conflict]] = defaultdict(list)
    for rid, spans in index.items():
        ordered = sorted(spans, key=lambda s: (s.start, s.end))
        for i, span in enumerate(ordered):
            for other in ordered[i + 1:]:
                if other.start >= span.end:
                    break
                if span.overlaps(other):
                    conflicts[span.key].append(Conflict(span.key, other.key, rid))
                    conflicts[other.key].append(Conflict(other.key, span.key, rid))
    return dict(conflicts)


def find_overallocated(graphs: Iterable[TaskGraph]) -> set[TaskKey]:
    return set(find_conflicts(graphs))


def is_overallocated(task: Task, others: Iterable[Task]) -> bool:
    """Check one task against a comparison set. Entries with the same id as
    *task* are taken to be the task itself and ignored."""
    try:
        mine = Span((0, task.id), task, task.start_date, calculate_end_date(task.start_date, task.duration_days))
    except ValueError as e:
        logger.warning("Cannot check task %s: %s", task.id, e)
        return False
    resources = {rid for rid in task.resource_ids if isinstance(rid, str) and rid}
    for other in others:
        if other.id == task.id or not resources.intersection(other.resource_ids):
            continue
        try:
            theirs = Span((1, other.id), other, other.start_date,
                          calculate_end_date(other.start_date, other.duration_days))
        except ValueError as e:
            logger.warning("Skipping task %s: %s", other.id, e)
            continue
        if mine.overlaps(theirs):
            return True
    return False
