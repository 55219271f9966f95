from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, List

from .status_machine import task_progress
from .task_models import DependencyEdge, FlatRenderRow, ScheduleResult, Task, TaskId, TaskSchedule


def hierarchical_order(tasks: Iterable[Task]) -> list[Task]:
    """
    Order tasks so every parent directly precedes its sub-tasks.

    Roots (and orphans whose parent is missing) come first by position; each
    task is followed depth-first by its children, also by position. Tasks
    caught in a broken parent loop are appended in input order.
    """

    tasks = list(tasks)
    known = {task.id for task in tasks}
    children: dict[TaskId | None, list[Task]] = {}
    for task in tasks:
        parent = task.parent_task_id if task.parent_task_id in known else None
        children.setdefault(parent, []).append(task)
    for siblings in children.values():
        siblings.sort(key=lambda t: t.position)

    ordered: list[Task] = []
    seen: set[TaskId] = set()
    stack = list(reversed(children.get(None, [])))
    while stack:
        task = stack.pop()
        if task.id in seen:
            continue
        seen.add(task.id)
        ordered.append(task)
        stack.extend(reversed(children.get(task.id, [])))

    ordered.extend(task for task in tasks if task.id not in seen)
    return ordered


def to_render_rows(
    tasks: Iterable[Task],
    result: ScheduleResult,
    dependencies: Iterable[DependencyEdge] = (),
    origin: date | None = None,
) -> list[FlatRenderRow]:
    """
    Convert a scheduled task snapshot into a flat list of render rows.

    Undated tasks are placed at `origin` plus their earliest start; `origin`
    defaults to the earliest start date in the snapshot (today if none).
    """

    tasks = list(tasks)
    if origin is None:
        starts = [task.start_date for task in tasks if task.start_date is not None]
        origin = min(starts) if starts else date.today()

    prerequisites: dict[TaskId, list[TaskId]] = {}
    for edge in dependencies:
        prerequisites.setdefault(edge.dependent_task_id, []).append(edge.depends_on_task_id)

    children: dict[TaskId, list[Task]] = {}
    for task in tasks:
        if task.parent_task_id is not None:
            children.setdefault(task.parent_task_id, []).append(task)

    rows: List[FlatRenderRow] = []
    for order, task in enumerate(hierarchical_order(tasks)):
        entry = result.schedule.get(task.id)
        start, finish = _display_span(task, entry, origin)
        own_children = children.get(task.id, [])
        rows.append(
            FlatRenderRow(
                order=order,
                indent=task.depth_level,
                node_type="bracket" if own_children else "bar",
                task_id=task.id,
                name=task.title,
                status=task.status,
                progress=task_progress(task, own_children),
                is_critical=result.is_critical(task.id),
                slack=entry.slack if entry is not None else 0,
                depends_on=list(prerequisites.get(task.id, [])),
                start_date=start,
                finish_date=finish,
            )
        )
    return rows


def _display_span(task: Task, entry: TaskSchedule | None, origin: date) -> tuple[date, date]:
    """Inclusive (start, finish) calendar span for drawing."""

    if task.start_date is not None and task.end_date is not None:
        return task.start_date, max(task.start_date, task.end_date)
    if task.start_date is not None:
        return task.start_date, task.start_date
    if task.end_date is not None:
        return task.end_date, task.end_date
    offset = entry.earliest_start if entry is not None else 0
    duration = entry.duration if entry is not None else 1
    start = origin + timedelta(days=offset)
    return start, start + timedelta(days=duration - 1)
