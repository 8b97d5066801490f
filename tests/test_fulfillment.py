from datetime import datetime

import pytest

from gantry.errors import ScheduleValidationError
from gantry.fulfillment import find_generic_assignments, fulfill_generic, is_generic
from gantry.graph import TaskGraph
from gantry.models import Resource, Task


def _graph():
    g = TaskGraph()
    g.upsert_task(
        Task(
            id=1,
            name="Build",
            start_date=datetime(2024, 1, 8),
            duration_days=5,
            resource_ids=["g-dev", "r-bob"],
            resource_names=["Generic Developer", "Bob"],
            allocations={"g-dev": 50},
            owner_id="g-dev",
            owner_name="Generic Developer",
        )
    )
    g.upsert_task(
        Task(id=2, name="Test", start_date=datetime(2024, 1, 15), duration_days=2,
             resource_ids=["r-bob"], resource_names=["Bob"])
    )
    return g


def test_is_generic():
    assert is_generic("Generic QA")
    assert is_generic("designer (generic)")
    assert not is_generic("Genevieve")
    assert not is_generic(None)


def test_find_generic_assignments_across_projects():
    found = find_generic_assignments([TaskGraph(), _graph()])
    assert len(found) == 1
    slot = found[0]
    assert (slot.graph_index, slot.task_id, slot.resource_id) == (1, 1, "g-dev")
    assert slot.allocation == 50


def test_fulfill_keeps_slot_and_allocation():
    g = _graph()
    record = fulfill_generic(g, 1, "g-dev", Resource(id="r-ann", name="Ann"))

    task = g.get(1)
    assert task.resource_ids == ["r-ann", "r-bob"]
    assert task.resource_names == ["Ann", "Bob"]
    assert task.allocation_for("r-ann") == 50
    assert "g-dev" not in task.allocations
    assert (task.owner_id, task.owner_name) == ("r-ann", "Ann")
    assert task.work_hours == 20 + 40
    assert record.generic_resource_name == "Generic Developer"
    assert record.allocated_hours == 20
    assert find_generic_assignments([g]) == []


def test_fulfill_rejects_unknown_slot_and_duplicates():
    g = _graph()
    before = g.to_document()
    with pytest.raises(ScheduleValidationError):
        fulfill_generic(g, 2, "g-dev", Resource(id="r-ann", name="Ann"))
    with pytest.raises(ScheduleValidationError):
        fulfill_generic(g, 1, "g-dev", Resource(id="r-bob", name="Bob"))
    with pytest.raises(ScheduleValidationError):
        fulfill_generic(g, 42, "g-dev", Resource(id="r-ann", name="Ann"))
    assert g.to_document() == before
