from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterable

from .errors import DependencyValidationError
from .task_models import DEPENDENCY_TYPES, DependencyEdge, Task, TaskId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cycle:
    """Represents a detected cycle path for error reporting."""

    path: list[TaskId]

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return " -> ".join(str(node) for node in self.path)


class DependencyGraph:
    """
    Adjacency-list graph over task ids.

    Nodes are stored in an arena: every task id maps to a contiguous integer
    handle and adjacency lists hold handles, never task objects. Handles follow
    insertion order, which keeps every traversal deterministic.
    """

    def __init__(self, task_ids: Iterable[TaskId] = ()) -> None:
        self._ids: list[TaskId] = []
        self._handles: dict[TaskId, int] = {}
        self._prerequisites: list[list[int]] = []
        self._dependents: list[list[int]] = []
        self._edges: set[tuple[int, int]] = set()
        for task_id in task_ids:
            self.add_node(task_id)

    @classmethod
    def from_snapshot(cls, tasks: Iterable[Task], dependencies: Iterable[DependencyEdge]) -> "DependencyGraph":
        """Build the graph for a task snapshot; edges naming unknown tasks are skipped."""

        graph = cls(task.id for task in tasks)
        for edge in dependencies:
            if not graph.add_edge(edge.dependent_task_id, edge.depends_on_task_id, create_nodes=False):
                logger.debug(
                    "Skipping dependency %s -> %s: task not in snapshot",
                    edge.depends_on_task_id,
                    edge.dependent_task_id,
                )
        return graph

    @classmethod
    def from_edges(cls, dependencies: Iterable[DependencyEdge]) -> "DependencyGraph":
        graph = cls()
        for edge in dependencies:
            graph.add_edge(edge.dependent_task_id, edge.depends_on_task_id)
        return graph

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._handles

    def add_node(self, task_id: TaskId) -> int:
        handle = self._handles.get(task_id)
        if handle is not None:
            return handle
        handle = len(self._ids)
        self._ids.append(task_id)
        self._handles[task_id] = handle
        self._prerequisites.append([])
        self._dependents.append([])
        return handle

    def add_edge(self, dependent_id: TaskId, depends_on_id: TaskId, create_nodes: bool = True) -> bool:
        """Record that `dependent_id` depends on `depends_on_id`; return False if an endpoint is unknown."""

        if create_nodes:
            dependent = self.add_node(dependent_id)
            prerequisite = self.add_node(depends_on_id)
        else:
            dependent = self._handles.get(dependent_id)
            prerequisite = self._handles.get(depends_on_id)
            if dependent is None or prerequisite is None:
                return False

        if (dependent, prerequisite) in self._edges:
            return True
        self._edges.add((dependent, prerequisite))
        self._prerequisites[dependent].append(prerequisite)
        self._dependents[prerequisite].append(dependent)
        return True

    def handle(self, task_id: TaskId) -> int | None:
        return self._handles.get(task_id)

    def task_id(self, handle: int) -> TaskId:
        return self._ids[handle]

    def handles(self) -> range:
        return range(len(self._ids))

    def prerequisites(self, handle: int) -> list[int]:
        return self._prerequisites[handle]

    def dependents(self, handle: int) -> list[int]:
        return self._dependents[handle]

    def topological_order(self) -> tuple[list[int], list[int]]:
        """
        Return (ordered, unresolved) handles using Kahn's algorithm.

        Seeds and ties follow insertion order. `unresolved` holds the handles
        that sit on or downstream of a cycle, in insertion order; it is empty
        for a DAG.
        """

        indegree = [len(prereqs) for prereqs in self._prerequisites]
        queue = deque(handle for handle in self.handles() if indegree[handle] == 0)
        ordered: list[int] = []

        while queue:
            current = queue.popleft()
            ordered.append(current)
            for child in self._dependents[current]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    queue.append(child)

        if len(ordered) == len(self._ids):
            return ordered, []
        seen = set(ordered)
        return ordered, [handle for handle in self.handles() if handle not in seen]

    def find_cycle(self) -> Cycle | None:
        """Return the first dependency cycle found by an iterative DFS, or None."""

        state: dict[int, str] = {}
        for root in self.handles():
            if root in state:
                continue
            stack: list[tuple[int, int]] = [(root, 0)]
            path: list[int] = [root]
            state[root] = "visiting"
            while stack:
                node, next_index = stack[-1]
                prereqs = self._prerequisites[node]
                if next_index < len(prereqs):
                    stack[-1] = (node, next_index + 1)
                    dep = prereqs[next_index]
                    dep_state = state.get(dep)
                    if dep_state == "visiting":
                        start = path.index(dep)
                        return Cycle([self._ids[h] for h in path[start:]] + [self._ids[dep]])
                    if dep_state is None:
                        state[dep] = "visiting"
                        stack.append((dep, 0))
                        path.append(dep)
                else:
                    stack.pop()
                    path.pop()
                    state[node] = "done"
        return None

    def depends_on_path(self, start_id: TaskId, goal_id: TaskId) -> list[TaskId] | None:
        """
        Breadth-first search along depends_on links from `start_id`.

        Returns the id chain from `start_id` to `goal_id` when `start_id`
        transitively depends on `goal_id`, else None.
        """

        start = self._handles.get(start_id)
        goal = self._handles.get(goal_id)
        if start is None or goal is None:
            return None
        if start == goal:
            return [start_id]

        came_from: dict[int, int] = {start: start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for prereq in self._prerequisites[current]:
                if prereq in came_from:
                    continue
                came_from[prereq] = current
                if prereq == goal:
                    chain = [prereq]
                    while chain[-1] != start:
                        chain.append(came_from[chain[-1]])
                    return [self._ids[h] for h in reversed(chain)]
                queue.append(prereq)
        return None

    def reaches(self, start_id: TaskId, goal_id: TaskId) -> bool:
        return self.depends_on_path(start_id, goal_id) is not None


def validate_no_cycle(dependencies: Iterable[DependencyEdge], candidate: DependencyEdge) -> bool:
    """
    Return True when `candidate` can be added without closing a cycle.

    The candidate makes `dependent_task_id` wait for `depends_on_task_id`; it
    closes a cycle iff the prerequisite already (transitively) depends on the
    dependent, or both ends are the same task.
    """

    return _cycle_through(dependencies, candidate) is None


def _cycle_through(dependencies: Iterable[DependencyEdge], candidate: DependencyEdge) -> Cycle | None:
    if candidate.dependent_task_id == candidate.depends_on_task_id:
        return Cycle([candidate.dependent_task_id, candidate.dependent_task_id])
    graph = DependencyGraph.from_edges(dependencies)
    path = graph.depends_on_path(candidate.depends_on_task_id, candidate.dependent_task_id)
    if path is None:
        return None
    return Cycle([candidate.dependent_task_id] + path)


def validate_edge_fields(
    dependency_type: str | None = None,
    lag_days: int | None = None,
    from_point: int | None = None,
    to_point: int | None = None,
) -> None:
    """Validate the mutable edge attributes; None means 'not supplied'."""

    if dependency_type is not None and dependency_type not in DEPENDENCY_TYPES:
        raise DependencyValidationError(
            f"Unknown dependency_type '{dependency_type}', expected one of {list(DEPENDENCY_TYPES)}",
            reason="invalid_type",
        )
    if lag_days is not None and (isinstance(lag_days, bool) or not isinstance(lag_days, int)):
        raise DependencyValidationError(f"lag_days must be an integer, got {lag_days!r}", reason="invalid_lag")
    for name, value in (("from_point", from_point), ("to_point", to_point)):
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
            raise DependencyValidationError(f"{name} must be an integer between 0 and 100, got {value!r}", reason="invalid_point")


def validate_new_edge(
    edge: DependencyEdge,
    tasks: Iterable[Task],
    existing: Iterable[DependencyEdge],
) -> None:
    """
    Check a dependency edge before insertion; raise DependencyValidationError on rejection.

    `tasks` must contain both endpoints; `existing` is every edge already
    stored for the project.
    """

    if edge.dependent_task_id is None or edge.depends_on_task_id is None:
        raise DependencyValidationError(
            "Both dependent_task_id and depends_on_task_id are required", reason="missing_task_id"
        )
    if edge.dependent_task_id == edge.depends_on_task_id:
        raise DependencyValidationError(
            f"Task '{edge.dependent_task_id}' cannot depend on itself", reason="self_reference"
        )

    lookup = {task.id: task for task in tasks}
    dependent = lookup.get(edge.dependent_task_id)
    prerequisite = lookup.get(edge.depends_on_task_id)
    for task_id, task in ((edge.dependent_task_id, dependent), (edge.depends_on_task_id, prerequisite)):
        if task is None:
            raise DependencyValidationError(f"Task '{task_id}' not found", reason="unknown_task")
    if dependent.project_id != prerequisite.project_id:
        raise DependencyValidationError(
            "Cannot create dependency between tasks in different projects", reason="cross_project"
        )

    validate_edge_fields(edge.dependency_type, edge.lag_days, edge.from_point, edge.to_point)

    existing = list(existing)
    if any(other.pair == edge.pair for other in existing):
        raise DependencyValidationError("This dependency already exists", reason="duplicate")

    cycle = _cycle_through(existing, edge)
    if cycle is not None:
        raise DependencyValidationError(
            f"Cannot create dependency: would create a circular dependency ({cycle})", reason="circular"
        )
