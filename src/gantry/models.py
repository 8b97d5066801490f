"""Task, link and resource models plus engine configuration."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from gantry.errors import ScheduleValidationError
from gantry.workdays import format_date, parse_date

ROOT_ID = 0
# Ids from here up belong to synthetic rows of the grouped view.
RESERVED_ID_BASE = 999900
DEFAULT_ALLOCATION = 100.0
FINISH_TO_START = "0"
MAX_BASELINE_SLOT = 10

_TASK_KEYS = {
    "id",
    "text",
    "type",
    "start_date",
    "duration",
    "progress",
    "parent",
    "resource_ids",
    "resource_names",
    "resource_allocations",
    "owner_id",
    "owner_name",
    "work_hours",
    "end_date",
}
_LINK_KEYS = {"id", "source", "target", "type"}
_BASELINE_KEY = re.compile(r"^baseline(\d+)_(StartDate|EndDate)$")


class TaskKind(enum.StrEnum):
    TASK = "task"
    MILESTONE = "milestone"
    SUMMARY = "project"


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise ScheduleValidationError(f"{what} must be an integer, got {value!r}")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    if isinstance(value, int):
        return value
    raise ScheduleValidationError(f"{what} must be an integer, got {value!r}")


def _as_float(value: Any, what: str) -> float:
    if isinstance(value, bool):
        raise ScheduleValidationError(f"{what} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ScheduleValidationError(f"{what} must be a number, got {value!r}") from None


@dataclass
class EngineConfig:
    """Project-level settings stored alongside the task document."""

    hours_per_day: float = 8.0
    heatmap_weeks: int = 12
    max_allocation_percent: float = 300.0
    snap_start_to_workday: bool = False

    def to_dict(self) -> dict:
        return {
            "hours_per_day": self.hours_per_day,
            "heatmap_weeks": self.heatmap_weeks,
            "max_allocation_percent": self.max_allocation_percent,
            "snap_start_to_workday": self.snap_start_to_workday,
        }

    @classmethod
    def from_dict(cls, d: dict) -> EngineConfig:
        return cls(
            hours_per_day=d.get("hours_per_day", 8.0),
            heatmap_weeks=d.get("heatmap_weeks", 12),
            max_allocation_percent=d.get("max_allocation_percent", 300.0),
            snap_start_to_workday=d.get("snap_start_to_workday", False),
        )


@dataclass(frozen=True)
class Resource:
    """A directory entry. The engine only reads these."""

    id: str
    name: str


@dataclass(frozen=True)
class BaselineSnapshot:
    start: datetime
    end: datetime


@dataclass
class Task:
    """A single scheduled unit of work."""

    id: int
    name: str
    start_date: datetime
    duration_days: int = 0
    kind: TaskKind = TaskKind.TASK
    progress: float = 0.0
    parent_id: int = ROOT_ID
    resource_ids: list[str] = field(default_factory=list)
    resource_names: list[str] = field(default_factory=list)
    allocations: dict[str, float] = field(default_factory=dict)
    owner_id: str | None = None
    owner_name: str | None = None
    work_hours: float = 0.0
    end_date: datetime | None = None  # cache only; see TaskGraph
    baselines: dict[int, BaselineSnapshot] = field(default_factory=dict)
    extension_fields: dict[str, Any] = field(default_factory=dict)

    @property
    def is_summary(self) -> bool:
        return self.kind == TaskKind.SUMMARY

    @property
    def is_milestone(self) -> bool:
        return self.kind == TaskKind.MILESTONE

    def allocation_for(self, resource_id: str) -> float:
        return self.allocations.get(resource_id, DEFAULT_ALLOCATION)

    def resource_pairs(self) -> list[tuple[str, str]]:
        """(id, display name) for every matched resource, in order."""
        pairs = []
        for i, rid in enumerate(self.resource_ids):
            name = self.resource_names[i] if i < len(self.resource_names) else rid
            pairs.append((rid, name))
        return pairs

    @property
    def unmatched_names(self) -> list[str]:
        """Resource names kept without an id (unresolved on import)."""
        return self.resource_names[len(self.resource_ids):]

    def compute_work_hours(self, hours_per_day: float = 8.0) -> float:
        return sum(
            self.duration_days * hours_per_day * self.allocation_for(rid) / 100
            for rid in self.resource_ids
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "text": self.name,
            "type": self.kind.value,
            "start_date": format_date(self.start_date),
            "duration": self.duration_days,
            "progress": self.progress,
            "parent": self.parent_id,
            "resource_ids": list(self.resource_ids),
            "resource_names": list(self.resource_names),
        }
        if self.allocations:
            d["resource_allocations"] = dict(self.allocations)
        if self.owner_id is not None:
            d["owner_id"] = self.owner_id
        if self.owner_name is not None:
            d["owner_name"] = self.owner_name
        d["work_hours"] = self.work_hours
        if self.end_date is not None:
            d["end_date"] = format_date(self.end_date)
        for slot in sorted(self.baselines):
            snap = self.baselines[slot]
            d[f"baseline{slot}_StartDate"] = format_date(snap.start)
            d[f"baseline{slot}_EndDate"] = format_date(snap.end)
        d.update(self.extension_fields)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Task:
        if not isinstance(d, dict):
            raise ScheduleValidationError(f"Task must be an object, got {type(d).__name__}")
        if "id" not in d or "start_date" not in d:
            raise ScheduleValidationError(f"Task is missing 'id' or 'start_date': {d!r}")

        try:
            kind = TaskKind(d.get("type") or TaskKind.TASK)
        except ValueError:
            raise ScheduleValidationError(f"Unknown task type {d.get('type')!r}") from None

        raw_baselines: dict[int, dict[str, tuple[str, Any]]] = {}
        extension: dict[str, Any] = {}
        for key, value in d.items():
            if key in _TASK_KEYS:
                continue
            m = _BASELINE_KEY.match(key)
            if m and value:
                raw_baselines.setdefault(int(m.group(1)), {})[m.group(2)] = (key, value)
            else:
                extension[key] = value

        baselines = {}
        for slot, parts in raw_baselines.items():
            if "StartDate" in parts and "EndDate" in parts:
                baselines[slot] = BaselineSnapshot(
                    start=parse_date(parts["StartDate"][1]), end=parse_date(parts["EndDate"][1])
                )
            else:
                # Half a pair is not a snapshot; pass it through untouched.
                extension.update(parts.values())

        allocations = {
            str(rid): _as_float(pct, f"Allocation for {rid}")
            for rid, pct in (d.get("resource_allocations") or {}).items()
        }
        end_raw = d.get("end_date")
        return cls(
            id=_as_int(d["id"], "Task id"),
            name=d.get("text", ""),
            start_date=parse_date(d["start_date"]),
            duration_days=_as_int(d.get("duration") or 0, "Duration"),
            kind=kind,
            progress=_as_float(d.get("progress") or 0, "Progress"),
            parent_id=_as_int(d.get("parent") or ROOT_ID, "Parent id"),
            resource_ids=[str(r) for r in d.get("resource_ids") or []],
            resource_names=[str(n) for n in d.get("resource_names") or []],
            allocations=allocations,
            owner_id=d.get("owner_id"),
            owner_name=d.get("owner_name"),
            work_hours=_as_float(d.get("work_hours") or 0, "Work hours"),
            end_date=parse_date(end_raw) if end_raw else None,
            baselines=baselines,
            extension_fields=extension,
        )


@dataclass
class DependencyLink:
    """Predecessor -> successor link between two tasks of one graph."""

    id: int
    source: int
    target: int
    type: str = FINISH_TO_START
    extension_fields: dict[str, Any] = field(default_factory=dict)

    @property
    def is_finish_to_start(self) -> bool:
        return self.type == FINISH_TO_START

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": self.type,
        }
        d.update(self.extension_fields)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> DependencyLink:
        if not isinstance(d, dict):
            raise ScheduleValidationError(f"Link must be an object, got {type(d).__name__}")
        for key in ("id", "source", "target"):
            if key not in d:
                raise ScheduleValidationError(f"Link is missing '{key}': {d!r}")
        return cls(
            id=_as_int(d["id"], "Link id"),
            source=_as_int(d["source"], "Link source"),
            target=_as_int(d["target"], "Link target"),
            type=str(d.get("type", FINISH_TO_START)),
            extension_fields={k: v for k, v in d.items() if k not in _LINK_KEYS},
        )
