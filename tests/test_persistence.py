import json
from datetime import datetime

import pytest

from gantry.errors import ScheduleValidationError
from gantry.graph import TaskGraph
from gantry.models import EngineConfig, Task
from gantry.persistence import Store, load_graphs


def test_missing_file_is_empty_project(tmp_path):
    config, graph = Store(tmp_path / "nope.json").load()
    assert config is None
    assert len(graph) == 0


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "p.json"
    g = TaskGraph()
    g.upsert_task(Task(id=1, name="A", start_date=datetime(2024, 1, 8), duration_days=2))
    g.upsert_task(Task(id=2, name="B", start_date=datetime(2024, 1, 10), duration_days=1))
    g.set_dependencies(2, [1])
    g.extension_fields["collections"] = {"owners": []}
    config = EngineConfig(hours_per_day=6.0)

    Store(path).save(config, g)
    raw = json.loads(path.read_text())
    assert raw["config"]["hours_per_day"] == 6.0
    assert raw["collections"] == {"owners": []}

    loaded_config, loaded = Store(path).load()
    assert loaded_config == config
    assert loaded.config == config
    assert loaded.to_document() == g.to_document()


def test_invalid_json_raises(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(ScheduleValidationError):
        Store(path).load()


def test_load_graphs_keeps_order(tmp_path):
    paths = []
    for i in (1, 2):
        g = TaskGraph()
        g.upsert_task(Task(id=1, name=f"Project {i}", start_date=datetime(2024, 1, 8)))
        path = tmp_path / f"p{i}.json"
        Store(path).save(None, g)
        paths.append(path)
    graphs = load_graphs(paths)
    assert [g.get(1).name for g in graphs] == ["Project 1", "Project 2"]
