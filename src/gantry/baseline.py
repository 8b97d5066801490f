"""Numbered baseline snapshots of task start/end pairs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from gantry.errors import ScheduleValidationError
from gantry.graph import TaskGraph
from gantry.models import MAX_BASELINE_SLOT, BaselineSnapshot
from gantry.workdays import calculate_end_date, count_business_days

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BaselinePair:
    """Planned (baseline) next to current dates, for display."""

    task_id: int
    name: str
    baseline_start: datetime
    baseline_end: datetime
    current_start: datetime
    current_end: datetime


def _check_slot(slot: int) -> int:
    if isinstance(slot, bool) or not isinstance(slot, int) or not 0 <= slot <= MAX_BASELINE_SLOT:
        raise ScheduleValidationError(f"Baseline slot must be 0-{MAX_BASELINE_SLOT}, got {slot!r}")
    return slot


def set_baseline(graph: TaskGraph, slot: int = 0) -> int:
    """Snapshot every task's (start, exclusive end) into *slot*.

    Summary tasks are skipped. Returns the number of tasks captured.
    """
    _check_slot(slot)
    captured = []
    for task in graph:
        if task.is_summary:
            continue
        # A fresh snapshot supersedes any half pair carried over from import.
        for part in ("StartDate", "EndDate"):
            task.extension_fields.pop(f"baseline{slot}_{part}", None)
        task.baselines[slot] = BaselineSnapshot(
            start=task.start_date,
            end=calculate_end_date(task.start_date, task.duration_days),
        )
        captured.append(task)
    graph.upsert_many(captured)
    logger.info("Baseline %d set for %d task(s)", slot, len(captured))
    return len(captured)


def clear_baseline(graph: TaskGraph, slot: int) -> int:
    _check_slot(slot)
    cleared = [task for task in graph if task.baselines.pop(slot, None) is not None]
    graph.upsert_many(cleared)
    return len(cleared)


def baseline_pairs(graph: TaskGraph, slot: int = 0) -> list[BaselinePair]:
    _check_slot(slot)
    pairs = []
    for task in graph:
        snap = task.baselines.get(slot)
        if snap is None:
            continue
        pairs.append(
            BaselinePair(
                task_id=task.id,
                name=task.name,
                baseline_start=snap.start,
                baseline_end=snap.end,
                current_start=task.start_date,
                current_end=calculate_end_date(task.start_date, task.duration_days),
            )
        )
    return pairs


def restore_baseline(graph: TaskGraph, slot: int) -> int:
    """Move every snapshotted task back to its baseline dates.

    The duration becomes the number of working days in the snapshot span.
    Returns the number of tasks restored.
    """
    _check_slot(slot)
    restored = []
    for task in graph:
        snap = task.baselines.get(slot)
        if snap is None or task.is_summary:
            continue
        task.start_date = snap.start
        task.duration_days = count_business_days(snap.start, snap.end)
        restored.append(task)

    graph.upsert_many(restored)
    logger.info("Restored baseline %d for %d task(s)", slot, len(restored))
    return len(restored)
