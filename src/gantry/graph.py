"""In-memory schedule for one project: tasks, hierarchy and dependency links."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Iterator

import networkx as nx

from gantry.errors import ScheduleValidationError
from gantry.models import (
    FINISH_TO_START,
    RESERVED_ID_BASE,
    ROOT_ID,
    DependencyLink,
    EngineConfig,
    Task,
    TaskKind,
)
from gantry.workdays import adjust_to_workday, calculate_end_date, count_business_days

logger = logging.getLogger(__name__)

_DOCUMENT_KEYS = {"data", "links", "config"}


def build_dependency_dag(tasks: Iterable[int], links: Iterable[DependencyLink]) -> nx.DiGraph:
    """Construct the dependency DAG. Raises ScheduleValidationError on cycle
    or missing endpoints."""
    G = nx.DiGraph()
    G.add_nodes_from(tasks)
    for link in links:
        for end in (link.source, link.target):
            if end not in G:
                raise ScheduleValidationError(f"Link {link.id} references non-existent task {end}")
        if link.source == link.target:
            raise ScheduleValidationError(f"Task {link.source} cannot depend on itself")
        G.add_edge(link.source, link.target, link_id=link.id)
    if not nx.is_directed_acyclic_graph(G):
        raise ScheduleValidationError("Circular dependency detected")
    return G


class TaskGraph:
    """The authoritative schedule of one project.

    Every mutation validates against a trial copy and only then commits, so a
    rejected call leaves the graph exactly as it was.
    """

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        links: Iterable[DependencyLink] = (),
        config: EngineConfig | None = None,
    ):
        self.config = config or EngineConfig()
        self.extension_fields: dict = {}
        self._tasks: dict[int, Task] = {}
        self._links: dict[int, DependencyLink] = {}
        tasks = list(tasks)
        links = list(links)
        if tasks or links:
            self.extend(tasks, links)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    # Read access hands out copies; stored tasks change only through the
    # mutation methods, so cached end dates cannot go stale.
    @property
    def tasks(self) -> list[Task]:
        return copy.deepcopy(list(self._tasks.values()))

    @property
    def links(self) -> list[DependencyLink]:
        return copy.deepcopy(list(self._links.values()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get(self, task_id: int) -> Task:
        return copy.deepcopy(self._task(task_id))

    def _task(self, task_id: int) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise ScheduleValidationError(f"Task {task_id} not found") from None

    def get_link(self, link_id: int) -> DependencyLink:
        try:
            return copy.deepcopy(self._links[link_id])
        except KeyError:
            raise ScheduleValidationError(f"Link {link_id} not found") from None

    def next_task_id(self) -> int:
        return max(self._tasks, default=0) + 1

    def next_link_id(self) -> int:
        return max(self._links, default=0) + 1

    def copy(self) -> TaskGraph:
        clone = TaskGraph(config=self.config)
        clone.extension_fields = copy.deepcopy(self.extension_fields)
        clone._tasks = copy.deepcopy(self._tasks)
        clone._links = copy.deepcopy(self._links)
        return clone

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def children(self, task_id: int = ROOT_ID) -> list[Task]:
        return copy.deepcopy(self._children(task_id))

    def _children(self, task_id: int) -> list[Task]:
        return [t for t in self._tasks.values() if t.parent_id == task_id]

    def ancestors(self, task_id: int) -> list[Task]:
        """Parent first, up to (not including) the root."""
        return copy.deepcopy(self._ancestors(task_id))

    def _ancestors(self, task_id: int) -> list[Task]:
        result: list[Task] = []
        seen = {task_id}
        current = self._task(task_id).parent_id
        while current != ROOT_ID and current in self._tasks and current not in seen:
            seen.add(current)
            result.append(self._tasks[current])
            current = self._tasks[current].parent_id
        return result

    def is_descendant(self, task_id: int, ancestor_id: int) -> bool:
        """True when *ancestor_id* lies on the parent chain of *task_id*."""
        if task_id not in self._tasks:
            return False
        return any(a.id == ancestor_id for a in self._ancestors(task_id))

    def depth(self, task_id: int) -> int:
        return len(self._ancestors(task_id))

    def outline_codes(self) -> dict[int, str]:
        """Hierarchical "1.2.3" numbering in display order."""
        codes: dict[int, str] = {}

        def walk(parent_id: int, prefix: str) -> None:
            for i, child in enumerate(self._children(parent_id), start=1):
                code = f"{prefix}{i}"
                codes[child.id] = code
                walk(child.id, f"{code}.")

        walk(ROOT_ID, "")
        return codes

    def predecessors(self, task_id: int) -> list[Task]:
        return copy.deepcopy([self._tasks[l.source] for l in self._links.values() if l.target == task_id])

    def successors(self, task_id: int) -> list[Task]:
        return copy.deepcopy([self._tasks[l.target] for l in self._links.values() if l.source == task_id])

    def search(self, query: str) -> list[Task]:
        """Tasks whose name contains *query*, case-insensitively."""
        q = query.strip().lower()
        if not q:
            return self.tasks
        return copy.deepcopy([t for t in self._tasks.values() if q in t.name.lower()])

    def dependency_dag(self) -> nx.DiGraph:
        return build_dependency_dag(self._tasks, self._links.values())

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def upsert_task(self, task: Task) -> Task:
        """Insert or replace a task, re-deriving its cached values."""
        trial = self.copy()
        candidate = trial._prepare(task)
        trial._tasks[candidate.id] = candidate
        trial._check_parent(candidate)
        trial._rollup_summaries()
        self._commit(trial)
        logger.debug("Upserted task %s (%s)", candidate.id, candidate.name)
        return self.get(candidate.id)

    def upsert_many(self, tasks: Iterable[Task]) -> list[Task]:
        """Upsert several tasks as one all-or-nothing change."""
        trial = self.copy()
        prepared = []
        for task in tasks:
            candidate = trial._prepare(task)
            trial._tasks[candidate.id] = candidate
            prepared.append(candidate)
        for candidate in prepared:
            trial._check_parent(candidate)
        trial._rollup_summaries()
        self._commit(trial)
        return [self.get(t.id) for t in prepared]

    def delete_task(self, task_id: int) -> Task:
        """Remove a task and every link touching it.

        Children move up to the deleted task's parent.
        """
        trial = self.copy()
        removed = trial._tasks.pop(self._task(task_id).id)
        for child in trial._children(task_id):
            child.parent_id = removed.parent_id
        dropped = [lid for lid, l in trial._links.items() if task_id in (l.source, l.target)]
        for lid in dropped:
            del trial._links[lid]
        trial._rollup_summaries()
        self._commit(trial)
        logger.debug("Deleted task %s and %d link(s)", task_id, len(dropped))
        return removed

    def set_dependencies(self, task_id: int, predecessor_ids: Iterable[int]) -> list[DependencyLink]:
        """Replace every link into *task_id* with finish-to-start links from
        *predecessor_ids*."""
        self._task(task_id)
        preds = list(dict.fromkeys(predecessor_ids))
        for pid in preds:
            if pid not in self._tasks:
                raise ScheduleValidationError(f"Predecessor {pid} of task {task_id} not found")

        trial = self.copy()
        for lid in [lid for lid, l in trial._links.items() if l.target == task_id]:
            del trial._links[lid]
        created = []
        for pid in preds:
            link = DependencyLink(id=trial.next_link_id(), source=pid, target=task_id, type=FINISH_TO_START)
            trial._links[link.id] = link
            created.append(link)
        trial.dependency_dag()
        self._commit(trial)
        return created

    def add_link(self, link: DependencyLink) -> DependencyLink:
        if link.id in self._links:
            raise ScheduleValidationError(f"Link id {link.id} already exists")
        trial = self.copy()
        trial._links[link.id] = copy.deepcopy(link)
        trial.dependency_dag()
        self._commit(trial)
        return self.get_link(link.id)

    def remove_link(self, link_id: int) -> DependencyLink:
        link = self.get_link(link_id)
        del self._links[link_id]
        return link

    def assign_resources(
        self,
        task_id: int,
        resource_ids: list[str],
        resource_names: list[str],
        allocations: dict[str, float] | None = None,
    ) -> Task:
        """Replace the resource set of a task.

        Resources without an explicit allocation get 100%.
        """
        if len(resource_ids) != len(resource_names):
            raise ScheduleValidationError(
                f"Task {task_id}: {len(resource_ids)} resource id(s) but {len(resource_names)} name(s)"
            )
        task = self.get(task_id)
        task.resource_ids = list(resource_ids)
        task.resource_names = list(resource_names)
        task.allocations = dict(allocations or {})
        task.owner_id = task.resource_ids[0] if task.resource_ids else None
        task.owner_name = task.resource_names[0] if task.resource_names else None
        return self.upsert_task(task)

    def extend(self, tasks: Iterable[Task], links: Iterable[DependencyLink] = ()) -> None:
        """Append new tasks and links atomically. Existing ids are never
        overwritten."""
        trial = self.copy()
        added = []
        for task in tasks:
            if task.id in trial._tasks:
                raise ScheduleValidationError(f"Task id {task.id} already exists")
            candidate = trial._prepare(task)
            trial._tasks[candidate.id] = candidate
            added.append(candidate)
        for task in added:
            trial._check_parent(task)
        for link in links:
            if link.id in trial._links:
                raise ScheduleValidationError(f"Link id {link.id} already exists")
            trial._links[link.id] = copy.deepcopy(link)
        trial.dependency_dag()
        trial._rollup_summaries()
        self._commit(trial)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, trial: TaskGraph) -> None:
        self._tasks = trial._tasks
        self._links = trial._links

    def _prepare(self, task: Task) -> Task:
        """Validate a task on its own and return a normalized copy."""
        t = copy.deepcopy(task)
        if isinstance(t.id, bool) or not isinstance(t.id, int) or t.id <= ROOT_ID:
            raise ScheduleValidationError(f"Task id must be a positive integer, got {t.id!r}")
        if t.id >= RESERVED_ID_BASE:
            raise ScheduleValidationError(f"Task id {t.id} is in the reserved range (>= {RESERVED_ID_BASE})")
        if not isinstance(t.kind, TaskKind):
            raise ScheduleValidationError(f"Task {t.id}: invalid kind {t.kind!r}")
        if isinstance(t.duration_days, bool) or not isinstance(t.duration_days, int):
            raise ScheduleValidationError(f"Task {t.id}: duration must be an integer number of days")
        if t.duration_days < 0:
            raise ScheduleValidationError(f"Task {t.id}: duration cannot be negative")
        if not 0.0 <= t.progress <= 1.0:
            raise ScheduleValidationError(f"Task {t.id}: progress must be between 0 and 1")

        if len(set(t.resource_ids)) != len(t.resource_ids):
            raise ScheduleValidationError(f"Task {t.id}: duplicate resource ids")
        if len(t.resource_names) < len(t.resource_ids):
            raise ScheduleValidationError(f"Task {t.id}: every resource id needs a name")
        stray = set(t.allocations) - set(t.resource_ids)
        if stray:
            raise ScheduleValidationError(f"Task {t.id}: allocation for unassigned resource(s) {sorted(stray)}")
        for rid, pct in t.allocations.items():
            if not 0 <= pct <= self.config.max_allocation_percent:
                raise ScheduleValidationError(
                    f"Task {t.id}: allocation {pct} for {rid} outside 0-{self.config.max_allocation_percent:g}"
                )

        if t.kind == TaskKind.MILESTONE:
            t.duration_days = 0
            t.progress = 0.0
        if self.config.snap_start_to_workday:
            t.start_date = adjust_to_workday(t.start_date)
        self._refresh_derived(t)
        return t

    def _check_parent(self, task: Task) -> None:
        if task.parent_id == ROOT_ID:
            return
        if task.parent_id == task.id:
            raise ScheduleValidationError(f"Task {task.id} cannot be its own parent")
        if task.parent_id not in self._tasks:
            raise ScheduleValidationError(f"Task {task.id}: parent {task.parent_id} not found")
        seen = {task.id}
        current = task.parent_id
        while current != ROOT_ID:
            if current in seen:
                raise ScheduleValidationError(f"Task {task.id}: parent {task.parent_id} would create a cycle")
            seen.add(current)
            parent = self._tasks.get(current)
            if parent is None:
                break
            current = parent.parent_id

    def _refresh_derived(self, task: Task) -> None:
        task.end_date = calculate_end_date(task.start_date, task.duration_days)
        task.work_hours = task.compute_work_hours(self.config.hours_per_day)

    def _rollup_summaries(self) -> None:
        """Derive start, duration and progress of summary tasks from their
        children, deepest summaries first."""
        summaries = [t for t in self._tasks.values() if t.is_summary]
        summaries.sort(key=lambda t: self.depth(t.id), reverse=True)
        for summary in summaries:
            kids = self._children(summary.id)
            if not kids:
                summary.duration_days = 0
                summary.progress = 0.0
                self._refresh_derived(summary)
                continue
            start = min(k.start_date for k in kids)
            end = max(calculate_end_date(k.start_date, k.duration_days) for k in kids)
            summary.start_date = start
            summary.duration_days = count_business_days(start, end)
            total = sum(k.duration_days for k in kids)
            if total:
                summary.progress = sum(k.progress * k.duration_days for k in kids) / total
            else:
                summary.progress = sum(k.progress for k in kids) / len(kids)
            self._refresh_derived(summary)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @classmethod
    def from_document(cls, doc: dict, config: EngineConfig | None = None) -> TaskGraph:
        """Build a graph from a ``{"data": [...], "links": [...]}`` document.

        Links with a missing endpoint are dropped and tasks whose parent is
        missing move to the root, both with a warning; anything else that
        fails validation raises.
        """
        if not isinstance(doc, dict) or not isinstance(doc.get("data", []), list):
            raise ScheduleValidationError('Document must be an object with a "data" array')
        if not isinstance(doc.get("links") or [], list):
            raise ScheduleValidationError('"links" must be an array')

        tasks = [Task.from_dict(raw) for raw in doc.get("data", [])]
        ids = {t.id for t in tasks}
        for t in tasks:
            if t.parent_id != ROOT_ID and t.parent_id not in ids:
                logger.warning("Task %s has unknown parent %s; moving it to the root", t.id, t.parent_id)
                t.parent_id = ROOT_ID

        links = []
        for raw in doc.get("links") or []:
            link = DependencyLink.from_dict(raw)
            if link.source not in ids or link.target not in ids:
                logger.warning("Dropping dangling link %s (%s -> %s)", link.id, link.source, link.target)
                continue
            links.append(link)

        graph = cls(tasks, links, config=config)
        graph.extension_fields = {k: v for k, v in doc.items() if k not in _DOCUMENT_KEYS}
        return graph

    def to_document(self) -> dict:
        doc = {
            "data": [t.to_dict() for t in self._tasks.values()],
            "links": [l.to_dict() for l in self._links.values()],
        }
        doc.update(self.extension_fields)
        return doc
