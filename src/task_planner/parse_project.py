from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass, field
from typing import Any

import yaml

from .dependency_graph import validate_no_cycle
from .errors import ProjectFileError
from .status_machine import derive_parent_status
from .task_models import DEPENDENCY_TYPES, TASK_PRIORITIES, TASK_STATUSES, DependencyEdge, Task, TaskId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Path:
    """Helper to produce readable YAML path strings like tasks[0].status."""

    parts: tuple[str, ...] = ()

    def child(self, segment: str) -> "_Path":
        return _Path(self.parts + (segment,))

    def __str__(self) -> str:  # pragma: no cover - trivial
        return ".".join(self.parts) if self.parts else "root"


@dataclass
class ProjectSnapshot:
    """All tasks and dependency edges of one project, as loaded from YAML."""

    id: TaskId
    name: str
    tasks: list[Task] = field(default_factory=list)
    dependencies: list[DependencyEdge] = field(default_factory=list)


def load_project(path: str) -> ProjectSnapshot:
    """Load a project snapshot from a YAML file at the given path (no scheduling)."""

    with open(path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    return parse_project(raw)


def parse_project(data: Any) -> ProjectSnapshot:
    """
    Build a snapshot from already-decoded YAML data.

    Depth, sibling position and sub-task counts are derived from the parent
    links; statuses of tasks with children are derived bottom-up.
    """

    path = _Path()
    if not isinstance(data, dict):
        raise ProjectFileError(f"{path}: expected mapping at top level")
    _assert_allowed_keys(data, {"project", "tasks", "dependencies"}, path)

    project_raw = data.get("project")
    if not isinstance(project_raw, dict):
        raise ProjectFileError(f"{path}: missing required mapping 'project'")
    _assert_allowed_keys(project_raw, {"id", "name"}, path.child("project"))
    name = _require_str(project_raw, "name", path.child("project"))
    project_id = project_raw.get("id", name)

    tasks_raw = data.get("tasks")
    if tasks_raw is None:
        raise ProjectFileError(f"{path}: missing required field 'tasks'")
    if not isinstance(tasks_raw, list):
        raise ProjectFileError(f"{path}.tasks: expected list")

    tasks: list[Task] = []
    explicit_status: set[TaskId] = set()
    for idx, task_raw in enumerate(tasks_raw):
        task, has_status = _parse_task(task_raw, path.child(f"tasks[{idx}]"), project_id)
        if any(existing.id == task.id for existing in tasks):
            raise ProjectFileError(f"{path.child(f'tasks[{idx}]').child('id')}: duplicate task id '{task.id}'")
        if has_status:
            explicit_status.add(task.id)
        tasks.append(task)

    _resolve_hierarchy(tasks, explicit_status, path.child("tasks"))

    deps_raw = data.get("dependencies") or []
    if not isinstance(deps_raw, list):
        raise ProjectFileError(f"{path}.dependencies: expected list")
    known = {task.id for task in tasks}
    dependencies: list[DependencyEdge] = []
    for idx, dep_raw in enumerate(deps_raw):
        dep_path = path.child(f"dependencies[{idx}]")
        edge = _parse_dependency(dep_raw, dep_path, known)
        if any(other.pair == edge.pair for other in dependencies):
            raise ProjectFileError(f"{dep_path}: duplicate dependency {edge.depends_on_task_id} -> {edge.dependent_task_id}")
        if not validate_no_cycle(dependencies, edge):
            raise ProjectFileError(f"{dep_path}: dependency would create a circular dependency")
        dependencies.append(edge)

    logger.debug("Loaded project '%s': %d task(s), %d dependency edge(s)", name, len(tasks), len(dependencies))
    return ProjectSnapshot(id=project_id, name=name, tasks=tasks, dependencies=dependencies)


def _parse_task(data: Any, path: _Path, project_id: TaskId) -> tuple[Task, bool]:
    if not isinstance(data, dict):
        raise ProjectFileError(f"{path}: expected mapping for task")

    _assert_allowed_keys(
        data,
        {"id", "title", "description", "start_date", "end_date", "status", "priority", "parent"},
        path,
    )
    task_id = _require_id(data, "id", path)
    title = _require_str(data, "title", path)

    description = data.get("description")
    if description is not None and not isinstance(description, str):
        raise ProjectFileError(f"{path.child('description')}: expected string")

    start_date = _parse_optional_date(data.get("start_date"), path.child("start_date"))
    end_date = _parse_optional_date(data.get("end_date"), path.child("end_date"))

    status = data.get("status", "todo")
    if status not in TASK_STATUSES:
        raise ProjectFileError(f"{path.child('status')}: expected one of {list(TASK_STATUSES)}")
    priority = data.get("priority", "medium")
    if priority not in TASK_PRIORITIES:
        raise ProjectFileError(f"{path.child('priority')}: expected one of {list(TASK_PRIORITIES)}")

    parent = data.get("parent")
    if parent is not None:
        parent = _check_id(parent, path.child("parent"))

    task = Task(
        id=task_id,
        project_id=project_id,
        title=title,
        description=description,
        start_date=start_date,
        end_date=end_date,
        status=status,
        priority=priority,
        parent_task_id=parent,
    )
    return task, "status" in data


def _resolve_hierarchy(tasks: list[Task], explicit_status: set[TaskId], path: _Path) -> None:
    lookup = {task.id: task for task in tasks}
    children: dict[TaskId, list[Task]] = {}
    for idx, task in enumerate(tasks):
        if task.parent_task_id is None:
            continue
        if task.parent_task_id not in lookup:
            raise ProjectFileError(f"{path}[{idx}].parent: unknown task id '{task.parent_task_id}'")
        children.setdefault(task.parent_task_id, []).append(task)

    positions: dict[TaskId | None, int] = {}
    depths: dict[TaskId, int] = {}

    def depth_of(task: Task) -> int:
        chain: list[Task] = []
        current: Task | None = task
        while current is not None and current.id not in depths:
            if any(node.id == current.id for node in chain):
                raise ProjectFileError(f"{path}: parent cycle through task '{current.id}'")
            chain.append(current)
            current = lookup.get(current.parent_task_id) if current.parent_task_id is not None else None
        base = depths[current.id] if current is not None else -1
        for offset, node in enumerate(reversed(chain), start=1):
            depths[node.id] = base + offset
        return depths[task.id]

    for task in tasks:
        task.depth_level = depth_of(task)
        positions[task.parent_task_id] = positions.get(task.parent_task_id, 0) + 1
        task.position = positions[task.parent_task_id]
        task.subtask_count = len(children.get(task.id, []))
        if task.subtask_count and task.id in explicit_status:
            raise ProjectFileError(
                f"{path}: task '{task.id}' has sub-tasks; its status is derived and must not be set"
            )

    # Deepest first so every parent sees its children's final status.
    for task in sorted(tasks, key=lambda t: t.depth_level, reverse=True):
        if task.subtask_count:
            task.status = derive_parent_status(child.status for child in children[task.id])


def _parse_dependency(data: Any, path: _Path, known: set[TaskId]) -> DependencyEdge:
    if not isinstance(data, dict):
        raise ProjectFileError(f"{path}: expected mapping for dependency")

    _assert_allowed_keys(data, {"task", "depends_on", "type", "lag_days", "from_point", "to_point"}, path)
    dependent = _require_id(data, "task", path)
    prerequisite = _require_id(data, "depends_on", path)
    for key, value in (("task", dependent), ("depends_on", prerequisite)):
        if value not in known:
            raise ProjectFileError(f"{path.child(key)}: unknown task id '{value}'")

    dependency_type = data.get("type", "finish_to_start")
    if dependency_type not in DEPENDENCY_TYPES:
        raise ProjectFileError(f"{path.child('type')}: expected one of {list(DEPENDENCY_TYPES)}")

    lag_days = _optional_int(data, "lag_days", 0, path)
    from_point = _optional_int(data, "from_point", 100, path)
    to_point = _optional_int(data, "to_point", 0, path)
    for key, value in (("from_point", from_point), ("to_point", to_point)):
        if not 0 <= value <= 100:
            raise ProjectFileError(f"{path.child(key)}: expected integer between 0 and 100")

    return DependencyEdge(
        dependent_task_id=dependent,
        depends_on_task_id=prerequisite,
        dependency_type=dependency_type,
        lag_days=lag_days,
        from_point=from_point,
        to_point=to_point,
    )


def _assert_allowed_keys(data: dict[str, Any], allowed: set[str], path: _Path) -> None:
    extras = sorted(set(data.keys()) - allowed)
    if extras:
        raise ProjectFileError(f"{path}: unexpected fields {extras}")


def _require_str(data: dict[str, Any], key: str, path: _Path) -> str:
    value = _require_value(data, key, path)
    if not isinstance(value, str) or not value.strip():
        raise ProjectFileError(f"{path.child(key)}: expected non-empty string")
    return value


def _require_id(data: dict[str, Any], key: str, path: _Path) -> TaskId:
    return _check_id(_require_value(data, key, path), path.child(key))


def _check_id(value: Any, path: _Path) -> TaskId:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ProjectFileError(f"{path}: expected integer or string id")
    return value


def _require_value(data: dict[str, Any], key: str, path: _Path) -> Any:
    if key not in data:
        raise ProjectFileError(f"{path}: missing required field '{key}'")
    return data[key]


def _optional_int(data: dict[str, Any], key: str, default: int, path: _Path) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProjectFileError(f"{path.child(key)}: expected integer")
    return value


def _parse_optional_date(value: Any, path: _Path) -> _dt.date | None:
    # PyYAML already turns unquoted YYYY-MM-DD scalars into dates.
    if value is None:
        return None
    if isinstance(value, _dt.datetime):
        raise ProjectFileError(f"{path}: expected a calendar date without time")
    if isinstance(value, _dt.date):
        return value
    if not isinstance(value, str):
        raise ProjectFileError(f"{path}: expected YYYY-MM-DD string")
    try:
        return _dt.date.fromisoformat(value)
    except ValueError as exc:
        raise ProjectFileError(f"{path}: expected YYYY-MM-DD string") from exc
