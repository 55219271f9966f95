from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Hashable, Literal


TaskId = Hashable
"""Opaque task identity (database integer ids or strings)."""

TaskStatus = Literal["todo", "in_progress", "review", "done"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
DependencyType = Literal["finish_to_start", "start_to_start", "finish_to_finish", "start_to_finish"]

TASK_STATUSES: tuple[str, ...] = ("todo", "in_progress", "review", "done")
TASK_PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "urgent")
DEPENDENCY_TYPES: tuple[str, ...] = ("finish_to_start", "start_to_start", "finish_to_finish", "start_to_finish")

NodeKind = Literal["bar", "bracket"]
"""Allowed render node types: bar (leaf task), bracket (task with sub-tasks)."""


@dataclass
class Task:
    """A project task; tasks with children take their status from them."""

    id: TaskId
    project_id: TaskId
    title: str
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    status: str = "todo"
    priority: str = "medium"
    parent_task_id: TaskId | None = None
    depth_level: int = 0
    position: int = 0
    subtask_count: int = 0
    completed_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_subtasks(self) -> bool:
        return self.subtask_count > 0

    @property
    def is_root(self) -> bool:
        return self.parent_task_id is None


@dataclass
class DependencyEdge:
    """
    Typed edge between two tasks of the same project.

    `dependent_task_id` is blocked by `depends_on_task_id`. `from_point` and
    `to_point` are percentage markers on the prerequisite and dependent bars.
    """

    dependent_task_id: TaskId
    depends_on_task_id: TaskId
    dependency_type: str = "finish_to_start"
    lag_days: int = 0
    from_point: int = 100
    to_point: int = 0
    id: TaskId | None = None

    @property
    def pair(self) -> tuple[TaskId, TaskId]:
        return (self.dependent_task_id, self.depends_on_task_id)


@dataclass(frozen=True)
class TaskSchedule:
    """Earliest/latest times for one task, in days from the project origin."""

    duration: int
    earliest_start: int
    earliest_finish: int
    latest_start: int
    latest_finish: int

    @property
    def slack(self) -> int:
        return self.latest_start - self.earliest_start

    @property
    def is_critical(self) -> bool:
        return self.slack == 0


@dataclass(frozen=True)
class ScheduleResult:
    """Output of the critical path engine for one project snapshot."""

    critical_task_ids: frozenset = frozenset()
    schedule: dict[TaskId, TaskSchedule] = field(default_factory=dict)
    project_end: int = 0
    has_cycle: bool = False

    def is_critical(self, task_id: TaskId) -> bool:
        return task_id in self.critical_task_ids


@dataclass(frozen=True)
class StatusChange:
    """One status write performed by a direct update or a cascade step."""

    task_id: TaskId
    old_status: str
    new_status: str
    derived: bool

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status


@dataclass
class FlatRenderRow:
    """
    Flattened view of a scheduled task used by renderers.

    Rows are in hierarchical order; `indent` mirrors the task depth.
    """

    order: int
    indent: int
    node_type: NodeKind
    task_id: TaskId
    name: str
    status: str
    progress: int
    is_critical: bool = False
    slack: int = 0
    depends_on: list[TaskId] = field(default_factory=list)
    start_date: date | None = None
    finish_date: date | None = None
