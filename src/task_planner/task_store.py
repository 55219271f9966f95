from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterator, Protocol

from .task_models import DependencyEdge, Task, TaskId


class TaskRepository(Protocol):
    """Task storage as seen by the status machine and the service layer."""

    def get_task(self, task_id: TaskId) -> Task | None: ...

    def list_tasks(self, project_id: TaskId) -> list[Task]: ...

    def list_children(self, parent_id: TaskId) -> list[Task]: ...

    def update_status(
        self, task_id: TaskId, status: str, completed_at: datetime | None, updated_at: datetime | None
    ) -> None: ...


class DependencyRepository(Protocol):
    """Dependency edge storage."""

    def list_dependencies(self, project_id: TaskId) -> list[DependencyEdge]: ...

    def list_task_dependencies(self, task_id: TaskId) -> list[DependencyEdge]: ...

    def add_dependency(self, edge: DependencyEdge) -> DependencyEdge: ...

    def delete_dependency(self, edge_id: TaskId) -> bool: ...

    def dependency_exists(self, dependent_task_id: TaskId, depends_on_task_id: TaskId) -> bool: ...


class InMemoryTaskStore:
    """
    Dict-backed task and dependency repository.

    Reads return copies with `subtask_count` filled in, so callers never hold
    live references into the store. `transaction()` serialises writers and
    restores the previous state if the block raises.
    """

    def __init__(self) -> None:
        self._tasks: dict[TaskId, Task] = {}
        self._edges: dict[TaskId, DependencyEdge] = {}
        self._next_task_id = 1
        self._next_edge_id = 1
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator["InMemoryTaskStore"]:
        with self._lock:
            outermost = self._depth == 0
            saved = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                if saved is not None:
                    self._restore(saved)
                raise
            finally:
                self._depth -= 1

    def _snapshot(self) -> tuple[Any, ...]:
        return (copy.deepcopy(self._tasks), copy.deepcopy(self._edges), self._next_task_id, self._next_edge_id)

    def _restore(self, saved: tuple[Any, ...]) -> None:
        self._tasks, self._edges, self._next_task_id, self._next_edge_id = saved

    # Tasks

    def add_task(self, task: Task) -> Task:
        with self._lock:
            if task.id is None:
                task = replace(task, id=self._next_task_id)
            if task.id in self._tasks:
                raise KeyError(f"task id {task.id!r} already stored")
            if isinstance(task.id, int):
                self._next_task_id = max(self._next_task_id, task.id + 1)
            self._tasks[task.id] = replace(task, subtask_count=0)
            return self._read(task.id)

    def get_task(self, task_id: TaskId) -> Task | None:
        with self._lock:
            if task_id not in self._tasks:
                return None
            return self._read(task_id)

    def list_tasks(self, project_id: TaskId) -> list[Task]:
        with self._lock:
            tasks = [self._read(tid) for tid, task in self._tasks.items() if task.project_id == project_id]
        return sorted(tasks, key=lambda t: (t.depth_level, t.position))

    def list_children(self, parent_id: TaskId) -> list[Task]:
        with self._lock:
            children = [self._read(tid) for tid, task in self._tasks.items() if task.parent_task_id == parent_id]
        return sorted(children, key=lambda t: t.position)

    def next_position(self, project_id: TaskId, parent_id: TaskId | None) -> int:
        with self._lock:
            positions = [
                task.position
                for task in self._tasks.values()
                if task.project_id == project_id and task.parent_task_id == parent_id
            ]
        return max(positions, default=0) + 1

    def update_status(
        self, task_id: TaskId, status: str, completed_at: datetime | None, updated_at: datetime | None
    ) -> None:
        self.update_task(task_id, status=status, completed_at=completed_at, updated_at=updated_at)

    def update_task(self, task_id: TaskId, **fields: Any) -> Task:
        with self._lock:
            stored = self._tasks[task_id]
            self._tasks[task_id] = replace(stored, **fields)
            return self._read(task_id)

    def delete_task(self, task_id: TaskId) -> Task | None:
        """Remove a task and every edge touching it; children are left in place."""

        with self._lock:
            removed = self._tasks.pop(task_id, None)
            if removed is None:
                return None
            self._edges = {
                eid: edge
                for eid, edge in self._edges.items()
                if task_id not in (edge.dependent_task_id, edge.depends_on_task_id)
            }
            return removed

    def _read(self, task_id: TaskId) -> Task:
        count = sum(1 for task in self._tasks.values() if task.parent_task_id == task_id)
        return replace(self._tasks[task_id], subtask_count=count)

    # Dependencies

    def list_dependencies(self, project_id: TaskId) -> list[DependencyEdge]:
        with self._lock:
            return [
                replace(edge)
                for edge in self._edges.values()
                if self._project_of(edge.dependent_task_id) == project_id
            ]

    def list_task_dependencies(self, task_id: TaskId) -> list[DependencyEdge]:
        with self._lock:
            return [
                replace(edge)
                for edge in self._edges.values()
                if task_id in (edge.dependent_task_id, edge.depends_on_task_id)
            ]

    def get_dependency(self, edge_id: TaskId) -> DependencyEdge | None:
        with self._lock:
            edge = self._edges.get(edge_id)
            return replace(edge) if edge is not None else None

    def add_dependency(self, edge: DependencyEdge) -> DependencyEdge:
        with self._lock:
            if self.dependency_exists(edge.dependent_task_id, edge.depends_on_task_id):
                raise KeyError(f"dependency {edge.pair!r} already stored")
            if edge.id is None:
                edge = replace(edge, id=self._next_edge_id)
            if isinstance(edge.id, int):
                self._next_edge_id = max(self._next_edge_id, edge.id + 1)
            self._edges[edge.id] = replace(edge)
            return replace(edge)

    def update_dependency(self, edge_id: TaskId, **fields: Any) -> DependencyEdge:
        with self._lock:
            self._edges[edge_id] = replace(self._edges[edge_id], **fields)
            return replace(self._edges[edge_id])

    def delete_dependency(self, edge_id: TaskId) -> bool:
        with self._lock:
            return self._edges.pop(edge_id, None) is not None

    def dependency_exists(self, dependent_task_id: TaskId, depends_on_task_id: TaskId) -> bool:
        with self._lock:
            return any(
                edge.pair == (dependent_task_id, depends_on_task_id) for edge in self._edges.values()
            )

    def _project_of(self, task_id: TaskId) -> TaskId | None:
        task = self._tasks.get(task_id)
        return task.project_id if task is not None else None
