from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable

from .dependency_graph import validate_edge_fields, validate_new_edge
from .errors import NotFoundError, TaskValidationError
from .scheduling import compute_schedule
from .status_machine import (
    apply_status_change,
    check_status_value,
    completion_timestamp,
    guard_direct_status_write,
    on_child_status_changed,
    task_progress,
)
from .task_models import TASK_PRIORITIES, DependencyEdge, ScheduleResult, StatusChange, Task, TaskId
from .task_store import InMemoryTaskStore

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"title", "description", "start_date", "end_date", "status", "priority", "position"})


class ProjectService:
    """
    Orchestration layer between the API/UI and the scheduling core.

    Every write runs inside one store transaction: guards and validation come
    first, then the write, then the status cascade. A failure anywhere rolls
    the whole request back.
    """

    def __init__(
        self,
        store: InMemoryTaskStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store if store is not None else InMemoryTaskStore()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # Tasks

    def create_task(
        self,
        project_id: TaskId,
        title: str,
        description: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        status: str = "todo",
        priority: str = "medium",
        parent_task_id: TaskId | None = None,
    ) -> Task:
        """Create a task; sub-tasks get depth from their parent and the next sibling position."""

        _check_title(title)
        check_status_value(status)
        _check_priority(priority)
        _check_dates(start_date, end_date)

        with self.store.transaction():
            depth_level = 0
            if parent_task_id is not None:
                parent = self.store.get_task(parent_task_id)
                if parent is None:
                    raise NotFoundError(f"Parent task '{parent_task_id}' not found")
                if parent.project_id != project_id:
                    raise TaskValidationError("Parent task must be in the same project")
                depth_level = parent.depth_level + 1

            now = self._clock()
            task = self.store.add_task(
                Task(
                    id=None,
                    project_id=project_id,
                    title=title.strip(),
                    description=description,
                    start_date=start_date,
                    end_date=end_date,
                    status=status,
                    priority=priority,
                    parent_task_id=parent_task_id,
                    depth_level=depth_level,
                    position=self.store.next_position(project_id, parent_task_id),
                    completed_at=completion_timestamp(status, "todo", None, now),
                    updated_at=now,
                )
            )
            if parent_task_id is not None:
                on_child_status_changed(self.store, parent_task_id, now=now)

        logger.info("Created task %s in project %s", task.id, project_id)
        return self.get_task(task.id)

    def get_task(self, task_id: TaskId) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task '{task_id}' not found")
        return task

    def list_tasks(self, project_id: TaskId) -> list[Task]:
        """Tasks of a project ordered by depth level, then sibling position."""

        return self.store.list_tasks(project_id)

    def update_task(self, task_id: TaskId, **changes: Any) -> Task:
        """
        Apply field changes to a task.

        A `status` change is rejected with StatusGuardError when the task has
        sub-tasks; otherwise it is written and cascaded to the ancestors.
        A `position` must be a positive int no sibling already holds. `None`
        values mean "keep the stored value", so fields cannot be cleared here.
        """

        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise TaskValidationError(f"Unexpected fields {unknown}")
        status = changes.pop("status", None)
        fields = {key: value for key, value in changes.items() if value is not None}

        with self.store.transaction():
            task = self.get_task(task_id)
            if status is not None:
                check_status_value(status)
                guard_direct_status_write(task)
            if "title" in fields:
                _check_title(fields["title"])
                fields["title"] = fields["title"].strip()
            if "priority" in fields:
                _check_priority(fields["priority"])
            if "position" in fields:
                self._check_position(task, fields["position"])
            _check_dates(fields.get("start_date", task.start_date), fields.get("end_date", task.end_date))

            now = self._clock()
            if fields:
                self.store.update_task(task_id, updated_at=now, **fields)
            if status is not None:
                apply_status_change(self.store, task_id, status, now=now)

        return self.get_task(task_id)

    def set_status(self, task_id: TaskId, status: str) -> list[StatusChange]:
        """Write a leaf status and return every write made, leaf first, then ancestors."""

        with self.store.transaction():
            changes = apply_status_change(self.store, task_id, status, now=self._clock())
        for change in changes[1:]:
            logger.info("Task %s status derived: %s -> %s", change.task_id, change.old_status, change.new_status)
        return changes

    def delete_task(self, task_id: TaskId) -> None:
        """Delete a task with its edges; the former parent is re-derived if it still has children."""

        with self.store.transaction():
            task = self.get_task(task_id)
            self.store.delete_task(task_id)
            parent_id = task.parent_task_id
            if parent_id is not None and self.store.get_task(parent_id) is not None:
                if self.store.list_children(parent_id):
                    on_child_status_changed(self.store, parent_id, now=self._clock())
        logger.info("Deleted task %s", task_id)

    def _check_position(self, task: Task, position: Any) -> None:
        if isinstance(position, bool) or not isinstance(position, int) or position < 1:
            raise TaskValidationError(f"position must be a positive integer, got {position!r}")
        for sibling in self.store.list_tasks(task.project_id):
            if sibling.id != task.id and sibling.parent_task_id == task.parent_task_id and sibling.position == position:
                raise TaskValidationError(f"position {position} is already taken by task '{sibling.id}'")

    # Dependencies

    def add_dependency(
        self,
        dependent_task_id: TaskId,
        depends_on_task_id: TaskId,
        dependency_type: str = "finish_to_start",
        lag_days: int = 0,
        from_point: int = 100,
        to_point: int = 0,
    ) -> DependencyEdge:
        """Validate and store a dependency edge; raises DependencyValidationError on rejection."""

        edge = DependencyEdge(
            dependent_task_id=dependent_task_id,
            depends_on_task_id=depends_on_task_id,
            dependency_type=dependency_type,
            lag_days=lag_days,
            from_point=from_point,
            to_point=to_point,
        )
        with self.store.transaction():
            endpoints = [
                task
                for task in (self.store.get_task(dependent_task_id), self.store.get_task(depends_on_task_id))
                if task is not None
            ]
            existing = self.store.list_dependencies(endpoints[0].project_id) if endpoints else []
            validate_new_edge(edge, endpoints, existing)
            stored = self.store.add_dependency(edge)
        logger.info("Task %s now depends on task %s", dependent_task_id, depends_on_task_id)
        return stored

    def update_dependency(
        self,
        edge_id: TaskId,
        dependency_type: str | None = None,
        lag_days: int | None = None,
        from_point: int | None = None,
        to_point: int | None = None,
    ) -> DependencyEdge:
        validate_edge_fields(dependency_type, lag_days, from_point, to_point)
        fields = {
            key: value
            for key, value in (
                ("dependency_type", dependency_type),
                ("lag_days", lag_days),
                ("from_point", from_point),
                ("to_point", to_point),
            )
            if value is not None
        }
        with self.store.transaction():
            if self.store.get_dependency(edge_id) is None:
                raise NotFoundError(f"Dependency '{edge_id}' not found")
            return self.store.update_dependency(edge_id, **fields)

    def remove_dependency(self, edge_id: TaskId) -> None:
        with self.store.transaction():
            if not self.store.delete_dependency(edge_id):
                raise NotFoundError(f"Dependency '{edge_id}' not found")

    def list_dependencies(self, project_id: TaskId) -> list[DependencyEdge]:
        return self.store.list_dependencies(project_id)

    def task_dependencies(self, task_id: TaskId) -> dict[str, list[DependencyEdge]]:
        """Edges split into what the task waits for ("depends_on") and what it holds up ("blocks")."""

        self.get_task(task_id)
        edges = self.store.list_task_dependencies(task_id)
        return {
            "depends_on": [edge for edge in edges if edge.dependent_task_id == task_id],
            "blocks": [edge for edge in edges if edge.depends_on_task_id == task_id],
        }

    # Schedule and views

    def get_schedule(self, project_id: TaskId) -> ScheduleResult:
        with self.store.transaction():
            tasks = self.store.list_tasks(project_id)
            dependencies = self.store.list_dependencies(project_id)
        return compute_schedule(tasks, dependencies)

    def task_progress(self, task_id: TaskId) -> int:
        """Percent complete: share of done sub-tasks for parents, a fixed value per status for leaves."""

        task = self.get_task(task_id)
        return task_progress(task, self.store.list_children(task_id))

    def filter_tasks(
        self,
        project_id: TaskId,
        statuses: Iterable[str] | None = None,
        priorities: Iterable[str] | None = None,
        parents_only: bool = False,
        critical_only: bool = False,
    ) -> list[Task]:
        tasks = self.list_tasks(project_id)
        if statuses:
            wanted = set(statuses)
            tasks = [task for task in tasks if task.status in wanted]
        if priorities:
            wanted = set(priorities)
            tasks = [task for task in tasks if task.priority in wanted]
        if parents_only:
            tasks = [task for task in tasks if task.has_subtasks]
        if critical_only:
            critical = self.get_schedule(project_id).critical_task_ids
            tasks = [task for task in tasks if task.id in critical]
        return tasks


def _check_title(title: Any) -> None:
    if not isinstance(title, str) or not title.strip():
        raise TaskValidationError("Task title is required")


def _check_priority(priority: str) -> None:
    if priority not in TASK_PRIORITIES:
        raise TaskValidationError(f"Invalid priority '{priority}', expected one of {list(TASK_PRIORITIES)}")


def _check_dates(start_date: date | None, end_date: date | None) -> None:
    for name, value in (("start_date", start_date), ("end_date", end_date)):
        if value is not None and (not isinstance(value, date) or isinstance(value, datetime)):
            raise TaskValidationError(f"{name} must be a calendar date without a time, got {value!r}")
    if start_date is not None and end_date is not None and end_date < start_date:
        raise TaskValidationError(f"end_date {end_date} precedes start_date {start_date}")
