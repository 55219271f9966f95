from __future__ import annotations

import logging
import math
from typing import Iterable, Sequence

from .dependency_graph import DependencyGraph
from .task_models import DependencyEdge, ScheduleResult, Task, TaskId, TaskSchedule

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def task_duration(task: Task) -> int:
    """
    Scheduling duration in whole days.

    Both dates present: max(1, ceil(end - start)); otherwise 1. Stored
    dates are never modified.
    """

    if task.start_date is None or task.end_date is None:
        return 1
    delta_days = (task.end_date - task.start_date).total_seconds() / SECONDS_PER_DAY
    return max(1, math.ceil(delta_days))


def compute_critical_path(tasks: Sequence[Task], dependencies: Iterable[DependencyEdge]) -> frozenset:
    """Return the ids of zero-slack tasks for one project snapshot."""

    return compute_schedule(tasks, dependencies).critical_task_ids


def compute_schedule(tasks: Sequence[Task], dependencies: Iterable[DependencyEdge]) -> ScheduleResult:
    """
    Run the Critical Path Method over a task/dependency snapshot.

    - Forward pass in topological order gives earliest start/finish.
    - Backward pass in reverse order gives latest start/finish against the
      project end (the largest earliest finish).
    - Tasks whose latest start equals their earliest start are critical.

    Edges naming tasks outside the snapshot are ignored. Dependency cycles
    do not raise: unresolved nodes are appended in input order and any
    prerequisite not yet computed contributes nothing.
    """

    tasks = list(tasks)
    if not tasks:
        return ScheduleResult()

    graph = DependencyGraph.from_snapshot(tasks, dependencies)
    durations = [1] * len(graph)
    for task in tasks:
        durations[graph.handle(task.id)] = task_duration(task)

    ordered, unresolved = graph.topological_order()
    if unresolved:
        logger.warning(
            "Dependency cycle among %d task(s); scheduling them in input order",
            len(unresolved),
        )
    order = ordered + unresolved

    earliest_finish = _forward_pass(graph, order, durations)
    project_end = max(earliest_finish)
    latest_start = _backward_pass(graph, order, durations, project_end)

    schedule: dict[TaskId, TaskSchedule] = {}
    critical: set[TaskId] = set()
    for task in tasks:
        handle = graph.handle(task.id)
        if task.id in schedule:
            continue
        duration = durations[handle]
        entry = TaskSchedule(
            duration=duration,
            earliest_start=earliest_finish[handle] - duration,
            earliest_finish=earliest_finish[handle],
            latest_start=latest_start[handle],
            latest_finish=latest_start[handle] + duration,
        )
        schedule[task.id] = entry
        if entry.is_critical:
            critical.add(task.id)

    logger.debug("Scheduled %d task(s); project end %d; %d critical", len(schedule), project_end, len(critical))
    return ScheduleResult(
        critical_task_ids=frozenset(critical),
        schedule=schedule,
        project_end=project_end,
        has_cycle=bool(unresolved),
    )


def _forward_pass(graph: DependencyGraph, order: list[int], durations: list[int]) -> list[int]:
    computed: list[int | None] = [None] * len(graph)
    for handle in order:
        start = 0
        for prereq in graph.prerequisites(handle):
            finish = computed[prereq]
            if finish is not None:
                start = max(start, finish)
        computed[handle] = start + durations[handle]
    return [value if value is not None else 0 for value in computed]


def _backward_pass(graph: DependencyGraph, order: list[int], durations: list[int], project_end: int) -> list[int]:
    computed: list[int | None] = [None] * len(graph)
    for handle in reversed(order):
        finish = project_end
        for dependent in graph.dependents(handle):
            start = computed[dependent]
            if start is not None:
                finish = min(finish, start)
        computed[handle] = finish - durations[handle]
    return [value if value is not None else 0 for value in computed]
