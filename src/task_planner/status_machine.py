from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, Literal

from .errors import NotFoundError, StatusGuardError, TaskValidationError
from .task_models import TASK_STATUSES, StatusChange, Task, TaskId

if TYPE_CHECKING:
    from .task_store import TaskRepository

logger = logging.getLogger(__name__)

StatusKind = Literal["leaf", "derived"]


@dataclass(frozen=True)
class StatusState:
    """
    Status tagged with where it comes from.

    A "leaf" status is written by users; a "derived" status belongs to a task
    with sub-tasks and is only ever produced by `derive_parent_status`.
    """

    kind: StatusKind
    status: str

    @classmethod
    def for_task(cls, task: Task) -> "StatusState":
        return cls("derived" if task.has_subtasks else "leaf", task.status)

    @property
    def writable(self) -> bool:
        return self.kind == "leaf"


def derive_parent_status(child_statuses: Iterable[str]) -> str:
    """
    Derive a parent's status from its children's statuses.

    First match wins:
    - no children -> todo
    - all done -> done
    - all done or review, at least one review -> review
    - any in_progress -> in_progress
    - otherwise -> todo
    """

    statuses = list(child_statuses)
    if not statuses:
        return "todo"
    if all(status == "done" for status in statuses):
        return "done"
    if all(status in ("done", "review") for status in statuses):
        return "review"
    if any(status == "in_progress" for status in statuses):
        return "in_progress"
    return "todo"


def can_set_status_directly(task: Task) -> bool:
    return StatusState.for_task(task).writable


def completion_timestamp(
    new_status: str,
    old_status: str,
    previous: datetime | None,
    now: datetime,
) -> datetime | None:
    """Completion stamp after a status write: set on entering done, kept while done, cleared otherwise."""

    if new_status != "done":
        return None
    if old_status == "done" and previous is not None:
        return previous
    return now


def check_status_value(status: str) -> None:
    if status not in TASK_STATUSES:
        raise TaskValidationError(f"Invalid status '{status}', expected one of {list(TASK_STATUSES)}")


def guard_direct_status_write(task: Task) -> None:
    """Reject a direct status write to a task whose status is derived."""

    if not can_set_status_directly(task):
        raise StatusGuardError(task.id, task.subtask_count)


def apply_status_change(
    repo: "TaskRepository",
    task_id: TaskId,
    status: str,
    now: datetime | None = None,
) -> list[StatusChange]:
    """
    Write a status to a leaf task and cascade the change up its ancestors.

    Validation and the guard run before any write. Returns the writes in the
    order they were applied: the task itself first, then each ancestor.
    """

    now = now or datetime.now(timezone.utc)
    check_status_value(status)
    task = repo.get_task(task_id)
    if task is None:
        raise NotFoundError(f"Task '{task_id}' not found")
    guard_direct_status_write(task)

    repo.update_status(
        task.id,
        status,
        completion_timestamp(status, task.status, task.completed_at, now),
        now,
    )
    changes = [StatusChange(task.id, task.status, status, derived=False)]
    if task.parent_task_id is not None:
        changes.extend(on_child_status_changed(repo, task.parent_task_id, now=now))
    return changes


def on_child_status_changed(
    repo: "TaskRepository",
    parent_id: TaskId,
    now: datetime | None = None,
    stop_when_unchanged: bool = True,
) -> list[StatusChange]:
    """
    Re-derive the status of `parent_id` and its ancestors from their children.

    Every step reads all current children of the ancestor, never a cached
    value. The walk ends at a root, at a missing ancestor, or (when
    `stop_when_unchanged`) at the first ancestor whose status is unaffected.
    """

    now = now or datetime.now(timezone.utc)
    changes: list[StatusChange] = []
    visited: set[TaskId] = set()
    current: TaskId | None = parent_id

    while current is not None:
        if current in visited:
            logger.warning("Parent chain revisits task '%s'; stopping status cascade", current)
            break
        visited.add(current)

        parent = repo.get_task(current)
        if parent is None:
            logger.debug("Ancestor '%s' no longer exists; stopping status cascade", current)
            break

        derived = derive_parent_status(child.status for child in repo.list_children(current))
        if derived == parent.status and stop_when_unchanged:
            break

        repo.update_status(
            parent.id,
            derived,
            completion_timestamp(derived, parent.status, parent.completed_at, now),
            now,
        )
        changes.append(StatusChange(parent.id, parent.status, derived, derived=True))
        logger.debug("Derived status of task '%s': %s -> %s", parent.id, parent.status, derived)
        current = parent.parent_task_id

    return changes


LEAF_PROGRESS = {"done": 100, "review": 75, "in_progress": 50, "todo": 0}


def task_progress(task: Task, children: Iterable[Task]) -> int:
    """Percent complete: share of done sub-tasks for parents, a fixed value per status for leaves."""

    children = list(children)
    if task.has_subtasks or children:
        if not children:
            return 0
        done = sum(1 for child in children if child.status == "done")
        return math.floor(done * 100 / len(children) + 0.5)
    return LEAF_PROGRESS.get(task.status, 0)
