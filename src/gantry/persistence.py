"""JSON file persistence for a project's task document."""

from __future__ import annotations

import json
from pathlib import Path

from gantry.errors import ScheduleValidationError
from gantry.graph import TaskGraph
from gantry.models import EngineConfig

DEFAULT_DB_FILE = "schedule.json"


class Store:
    """Reads and writes one project document (JSON file)."""

    def __init__(self, db_path: str | Path = DEFAULT_DB_FILE):
        self.db_path = Path(db_path)

    def load(self) -> tuple[EngineConfig | None, TaskGraph]:
        """Return (config_or_None, graph). A missing file is an empty project."""
        if not self.db_path.exists():
            return None, TaskGraph()

        try:
            raw = json.loads(self.db_path.read_text())
        except json.JSONDecodeError as e:
            raise ScheduleValidationError(f"{self.db_path}: invalid JSON ({e})") from e

        # {"config": {...}, "data": [...], "links": [...]}; config is optional
        config = None
        if isinstance(raw, dict) and "config" in raw:
            config = EngineConfig.from_dict(raw["config"])

        return config, TaskGraph.from_document(raw, config=config)

    def save(self, config: EngineConfig | None, graph: TaskGraph) -> None:
        """Persist config + graph to disk."""
        raw: dict = {}
        if config is not None:
            raw["config"] = config.to_dict()
        raw.update(graph.to_document())
        self.db_path.write_text(json.dumps(raw, indent=4))


def load_graphs(paths: list[str | Path]) -> list[TaskGraph]:
    """Load several project files for the cross-project views."""
    graphs = []
    for path in paths:
        _, graph = Store(path).load()
        graphs.append(graph)
    return graphs
