from dataclasses import replace
from datetime import datetime

import pytest

from gantry.errors import ScheduleValidationError
from gantry.graph import TaskGraph
from gantry.models import DependencyLink, EngineConfig, Task, TaskKind


def _task(tid, name=None, start="2024-01-08", days=1, **kw):
    return Task(id=tid, name=name or f"Task {tid}", start_date=datetime.fromisoformat(start), duration_days=days, **kw)


def _sample() -> TaskGraph:
    g = TaskGraph()
    g.upsert_task(_task(1, "Phase", kind=TaskKind.SUMMARY))
    g.upsert_task(_task(2, "Design", days=3, parent_id=1))
    g.upsert_task(_task(3, "Build", start="2024-01-11", days=5, parent_id=1))
    g.upsert_task(_task(4, "Launch", start="2024-01-18", kind=TaskKind.MILESTONE))
    g.set_dependencies(3, [2])
    g.set_dependencies(4, [3])
    return g


def test_upsert_derives_end_date_and_work_hours():
    g = TaskGraph()
    stored = g.upsert_task(
        _task(1, start="2024-01-05", days=3, resource_ids=["a"], resource_names=["Alice"], allocations={"a": 50})
    )
    assert stored.end_date == datetime(2024, 1, 10)
    assert stored.work_hours == 12

    moved = _task(1, start="2024-01-08", days=3, resource_ids=["a"], resource_names=["Alice"])
    stored = g.upsert_task(moved)
    assert stored.end_date == datetime(2024, 1, 11)
    assert stored.work_hours == 24


def test_milestone_forced_to_zero_duration_and_progress():
    g = TaskGraph()
    m = g.upsert_task(_task(1, days=4, progress=0.8, kind=TaskKind.MILESTONE))
    assert m.duration_days == 0
    assert m.progress == 0
    assert m.end_date == m.start_date


def test_summary_rolls_up_children():
    g = _sample()
    phase = g.get(1)
    assert phase.start_date == datetime(2024, 1, 8)
    # Design Mon-Wed, Build Thu 11th + 5 days -> exclusive Thu 18th
    assert phase.end_date == datetime(2024, 1, 18)
    assert phase.duration_days == 8

    g.upsert_task(_task(2, "Design", days=3, parent_id=1, progress=1.0))
    assert g.get(1).progress == pytest.approx(3 / 8)


def test_validation_leaves_graph_unchanged():
    g = _sample()
    before = g.to_document()

    with pytest.raises(ScheduleValidationError):
        g.upsert_task(_task(5, parent_id=99))
    with pytest.raises(ScheduleValidationError):
        g.upsert_task(_task(5, days=-1))
    with pytest.raises(ScheduleValidationError):
        g.upsert_task(_task(5, progress=1.5))
    with pytest.raises(ScheduleValidationError):
        g.upsert_task(_task(999901))
    with pytest.raises(ScheduleValidationError):
        g.upsert_task(_task(5, resource_ids=["a"], resource_names=["A"], allocations={"b": 50}))
    with pytest.raises(ScheduleValidationError):
        g.upsert_task(_task(5, resource_ids=["a"], resource_names=["A"], allocations={"a": 301}))

    assert g.to_document() == before


def test_cyclic_parent_rejected():
    g = _sample()
    g.upsert_task(_task(5, parent_id=2))
    with pytest.raises(ScheduleValidationError, match="cycle"):
        g.upsert_task(_task(2, "Design", days=3, parent_id=5))
    with pytest.raises(ScheduleValidationError):
        g.upsert_task(_task(5, parent_id=5))
    assert g.get(2).parent_id == 1


def test_traversal_and_outline_codes():
    g = _sample()
    g.upsert_task(_task(5, "Review", parent_id=3))
    assert [t.id for t in g.children(1)] == [2, 3]
    assert [t.id for t in g.ancestors(5)] == [3, 1]
    assert g.is_descendant(5, 1)
    assert not g.is_descendant(1, 5)
    assert g.outline_codes() == {1: "1", 2: "1.1", 3: "1.2", 5: "1.2.1", 4: "2"}


def test_delete_removes_links_and_reparents_children():
    g = _sample()
    g.upsert_task(_task(5, "Review", parent_id=3))
    g.delete_task(3)
    assert 3 not in g
    assert all(3 not in (l.source, l.target) for l in g.links)
    assert g.get(5).parent_id == 1
    with pytest.raises(ScheduleValidationError):
        g.delete_task(3)


def test_set_dependencies_replaces_incoming_links():
    g = _sample()
    g.upsert_task(_task(5))
    g.set_dependencies(3, [2, 5, 2])
    assert sorted(t.id for t in g.predecessors(3)) == [2, 5]
    assert all(l.type == "0" for l in g.links)

    g.set_dependencies(3, [])
    assert g.predecessors(3) == []
    assert [t.id for t in g.successors(3)] == [4]


def test_set_dependencies_rejects_unknown_and_cycles():
    g = _sample()
    before = [l.to_dict() for l in g.links]
    with pytest.raises(ScheduleValidationError):
        g.set_dependencies(3, [42])
    with pytest.raises(ScheduleValidationError, match="Circular"):
        g.set_dependencies(2, [4])
    with pytest.raises(ScheduleValidationError):
        g.set_dependencies(2, [2])
    assert [l.to_dict() for l in g.links] == before


def test_add_link_validates_endpoints():
    g = _sample()
    with pytest.raises(ScheduleValidationError):
        g.add_link(DependencyLink(id=50, source=2, target=77))
    link = g.add_link(DependencyLink(id=50, source=2, target=4, type="1"))
    assert link.type == "1"
    with pytest.raises(ScheduleValidationError):
        g.add_link(DependencyLink(id=50, source=2, target=3))
    g.remove_link(50)
    assert 50 not in {l.id for l in g.links}


def test_assign_resources_defaults_and_owner():
    g = _sample()
    t = g.assign_resources(3, ["a", "b"], ["Alice", "Bob"], {"b": 50})
    assert t.allocation_for("a") == 100
    assert t.work_hours == 5 * 8 + 5 * 8 * 0.5
    assert (t.owner_id, t.owner_name) == ("a", "Alice")

    with pytest.raises(ScheduleValidationError):
        g.assign_resources(3, ["a", "b"], ["Alice"])
    assert g.get(3).resource_ids == ["a", "b"]

    t = g.assign_resources(3, [], [])
    assert t.work_hours == 0
    assert t.owner_id is None


def test_cached_end_date_never_stale_after_duration_change():
    g = _sample()
    g.upsert_task(replace(g.get(2), duration_days=10))
    assert g.get(2).end_date == datetime(2024, 1, 20)
    assert g.get(1).end_date == datetime(2024, 1, 20)


def test_snap_start_to_workday_config():
    g = TaskGraph(config=EngineConfig(snap_start_to_workday=True))
    t = g.upsert_task(_task(1, start="2024-01-06"))
    assert t.start_date == datetime(2024, 1, 8)


def test_search_is_case_insensitive():
    g = _sample()
    assert [t.id for t in g.search("BUI")] == [3]
    assert len(g.search("")) == 4


def test_document_round_trip():
    doc = {
        "data": [
            {"id": 1, "text": "A", "start_date": "2024-01-08 00:00", "duration": 2, "custom": [1, 2]},
            {"id": 2, "text": "B", "start_date": "2024-01-10 00:00", "duration": 1, "parent": 1},
        ],
        "links": [{"id": 1, "source": 1, "target": 2, "type": "0", "color": "red"}],
        "collections": {"kept": True},
    }
    g = TaskGraph.from_document(doc)
    out = g.to_document()
    assert out["collections"] == {"kept": True}
    assert out["data"][0]["custom"] == [1, 2]
    assert out["data"][0]["end_date"] == "2024-01-10 00:00"
    assert out["links"] == [{"id": 1, "source": 1, "target": 2, "type": "0", "color": "red"}]
    assert TaskGraph.from_document(out).to_document() == out


def test_document_drops_dangling_links_and_orphans():
    doc = {
        "data": [{"id": 1, "text": "A", "start_date": "2024-01-08", "duration": 1, "parent": 9}],
        "links": [{"id": 1, "source": 1, "target": 5, "type": "0"}],
    }
    g = TaskGraph.from_document(doc)
    assert g.links == []
    assert g.get(1).parent_id == 0


def test_next_ids():
    g = _sample()
    assert g.next_task_id() == 5
    assert g.next_link_id() == 3
    assert TaskGraph().next_task_id() == 1


def test_returned_tasks_are_detached_from_the_graph():
    g = TaskGraph()
    t = g.upsert_task(_task(1, days=1))
    t.duration_days = 10
    g.get(1).start_date = datetime(2024, 3, 4)
    for task in g:
        task.name = "changed"
    g.tasks[0].resource_ids.append("x")
    g.links.append(DependencyLink(id=9, source=1, target=1))

    stored = g.get(1)
    assert stored.duration_days == 1
    assert stored.start_date == datetime(2024, 1, 8)
    assert stored.end_date == datetime(2024, 1, 9)
    assert stored.name == "Task 1"
    assert stored.resource_ids == []
    assert g.links == []

    g.upsert_task(replace(stored, duration_days=10))
    assert g.get(1).end_date == datetime(2024, 1, 20)
