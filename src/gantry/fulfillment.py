"""Replace placeholder ("Generic ...") resources with named people."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from gantry.errors import ScheduleValidationError
from gantry.graph import TaskGraph
from gantry.models import Resource

logger = logging.getLogger(__name__)


def is_generic(name: str | None) -> bool:
    return bool(name) and "generic" in name.lower()


@dataclass(frozen=True)
class GenericAssignment:
    graph_index: int
    task_id: int
    task_name: str
    resource_id: str
    resource_name: str
    allocation: float


@dataclass(frozen=True)
class FulfillmentRecord:
    task_id: int
    generic_resource_id: str
    generic_resource_name: str
    named_resource_id: str
    named_resource_name: str
    allocated_hours: float


def find_generic_assignments(graphs: Iterable[TaskGraph]) -> list[GenericAssignment]:
    """Every resource slot still held by a generic placeholder."""
    found = []
    for gi, graph in enumerate(graphs):
        for task in graph:
            for rid, name in task.resource_pairs():
                if is_generic(name):
                    found.append(
                        GenericAssignment(
                            graph_index=gi,
                            task_id=task.id,
                            task_name=task.name,
                            resource_id=rid,
                            resource_name=name,
                            allocation=task.allocation_for(rid),
                        )
                    )
    return found


def fulfill_generic(
    graph: TaskGraph,
    task_id: int,
    generic_resource_id: str,
    resource: Resource,
) -> FulfillmentRecord:
    """Swap *generic_resource_id* on a task for *resource*, keeping its slot
    and allocation."""
    task = graph.get(task_id)
    try:
        index = task.resource_ids.index(generic_resource_id)
    except ValueError:
        raise ScheduleValidationError(
            f"Task {task_id} has no resource {generic_resource_id}"
        ) from None
    if resource.id in task.resource_ids:
        raise ScheduleValidationError(f"Task {task_id} already has resource {resource.id}")

    generic_name = task.resource_names[index]
    task.resource_ids[index] = resource.id
    task.resource_names[index] = resource.name
    if generic_resource_id in task.allocations:
        task.allocations[resource.id] = task.allocations.pop(generic_resource_id)
    if index == 0:
        task.owner_id = resource.id
        task.owner_name = resource.name

    stored = graph.upsert_task(task)
    hours = stored.duration_days * graph.config.hours_per_day * stored.allocation_for(resource.id) / 100
    logger.info("Task %s: %s fulfilled by %s", task_id, generic_name, resource.name)
    return FulfillmentRecord(
        task_id=task_id,
        generic_resource_id=generic_resource_id,
        generic_resource_name=generic_name,
        named_resource_id=resource.id,
        named_resource_name=resource.name,
        allocated_hours=hours,
    )
