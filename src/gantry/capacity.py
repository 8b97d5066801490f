"""Weekly allocated hours per resource across every project (the heatmap)."""

from __future__ import annotations

import enum
import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from gantry.errors import ScheduleValidationError
from gantry.graph import TaskGraph
from gantry.models import EngineConfig, Task
from gantry.workdays import add_business_days, count_business_days, parse_date, week_start

logger = logging.getLogger(__name__)

Resolver = Callable[[str], "str | None"]


class Load(enum.StrEnum):
    IDLE = "idle"
    LIGHT = "light"
    NEAR_CAPACITY = "near_capacity"
    OVERALLOCATED = "overallocated"


def classify_hours(hours: float) -> Load:
    """Heatmap bucket for a week's hours: 0 idle, up to 30 light, up to 40
    near capacity, above 40 overallocated."""
    if hours <= 0:
        return Load.IDLE
    if hours <= 30:
        return Load.LIGHT
    if hours <= 40:
        return Load.NEAR_CAPACITY
    return Load.OVERALLOCATED


def round_hours(hours: float) -> int:
    """Round half up to a whole hour."""
    return int(math.floor(hours + 0.5))


@dataclass
class CapacityReport:
    """Allocated hours per resource per week, plus the weeks used."""

    week_starts: list[datetime]
    hours: dict[str, dict[int, int]] = field(default_factory=dict)
    exact_hours: dict[str, dict[int, float]] = field(default_factory=dict)

    def for_resource(self, resource_id: str) -> list[int]:
        weeks = self.hours.get(resource_id, {})
        return [weeks.get(i, 0) for i in range(len(self.week_starts))]

    def classification(self, resource_id: str) -> list[Load]:
        return [classify_hours(h) for h in self.for_resource(resource_id)]

    def week_labels(self) -> list[str]:
        """"Jan 8 - Jan 12" style Monday-Friday labels."""
        labels = []
        for start in self.week_starts:
            friday = start + timedelta(days=4)
            labels.append(f"{start:%b} {start.day} - {friday:%b} {friday.day}")
        return labels


def _task_matches(task: Task, resource_id: str, resolve: Resolver | None) -> bool:
    if resource_id in task.resource_ids:
        return True
    if task.owner_id is not None and task.owner_id == resource_id:
        return True
    if resolve is None:
        return False
    names = list(task.unmatched_names)
    if not task.resource_ids and task.owner_name:
        names.append(task.owner_name)
    return any(resolve(name) == resource_id for name in names)


def _task_week_hours(
    task: Task,
    resource_id: str,
    week_begin: datetime,
    hours_per_day: float,
) -> float:
    task_start = parse_date(task.start_date)
    task_end = add_business_days(task_start, task.duration_days)
    window_end = week_begin + timedelta(days=5)  # the Saturday after Friday
    overlap_start = max(task_start, week_begin)
    overlap_end = min(task_end, window_end)
    if overlap_start >= overlap_end:
        return 0.0
    pct = task.allocation_for(resource_id)
    return count_business_days(overlap_start, overlap_end) * hours_per_day * pct / 100


def aggregate_capacity(
    resource_ids: Iterable[str],
    graphs: Iterable[TaskGraph],
    weeks: int | None = None,
    today: date | datetime | None = None,
    resolve: Resolver | None = None,
    config: EngineConfig | None = None,
) -> CapacityReport:
    """Allocated hours per resource for *weeks* weeks starting on the Monday
    on or before *today*, across every supplied graph.

    Reads only; calls over the same graphs may run concurrently.
    """
    config = config or EngineConfig()
    weeks = config.heatmap_weeks if weeks is None else weeks
    if weeks < 0:
        raise ScheduleValidationError(f"Week count cannot be negative: {weeks}")
    anchor = week_start(today or date.today())
    week_starts = [anchor + timedelta(weeks=i) for i in range(weeks)]

    all_tasks = [task for graph in graphs for task in graph if not task.is_summary]
    report = CapacityReport(week_starts=week_starts)

    for rid in resource_ids:
        exact = {i: 0.0 for i in range(weeks)}
        matched = []
        for task in all_tasks:
            try:
                if _task_matches(task, rid, resolve):
                    matched.append(task)
            except (TypeError, ValueError) as e:
                logger.warning("Skipping task %s for resource %s: %s", task.id, rid, e)

        for task in matched:
            for i, begin in enumerate(week_starts):
                try:
                    exact[i] += _task_week_hours(task, rid, begin, config.hours_per_day)
                except (TypeError, ValueError) as e:
                    logger.warning("Treating task %s as unassigned for %s: %s", task.id, rid, e)
                    break

        report.exact_hours[rid] = exact
        report.hours[rid] = {i: round_hours(h) for i, h in exact.items()}

    logger.debug("Aggregated %d week(s) for %d resource(s)", weeks, len(report.hours))
    return report


def collect_resources(graphs: Iterable[TaskGraph]) -> dict[str, str]:
    """Every (resource id -> display name) assigned in *graphs*, name-sorted."""
    found: dict[str, str] = {}
    for graph in graphs:
        for task in graph:
            for rid, name in task.resource_pairs():
                found.setdefault(rid, name)
            if task.owner_id and task.owner_id not in found:
                found[task.owner_id] = task.owner_name or task.owner_id
    return dict(sorted(found.items(), key=lambda kv: (kv[1], kv[0])))
