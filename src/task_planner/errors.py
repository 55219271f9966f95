from __future__ import annotations


class PlannerError(Exception):
    """Base class for errors the planner surfaces to its callers."""

    code = "planner_error"


class DependencyValidationError(PlannerError):
    """Raised when a dependency edge is rejected (cycle, duplicate, bad endpoints or fields)."""

    code = "invalid_dependency"

    def __init__(self, message: str, reason: str = "invalid") -> None:
        super().__init__(message)
        self.reason = reason


class StatusGuardError(PlannerError):
    """Raised when a status is written directly to a task whose status is derived from sub-tasks."""

    code = "status_derived"

    def __init__(self, task_id, subtask_count: int) -> None:
        super().__init__(
            f"Cannot manually change status of task '{task_id}': "
            f"status is derived from its {subtask_count} sub-task(s)"
        )
        self.task_id = task_id
        self.subtask_count = subtask_count


class TaskValidationError(PlannerError):
    """Raised when task fields are invalid (status, priority, title, parent, dates)."""

    code = "invalid_task"


class NotFoundError(PlannerError):
    """Raised when a task or dependency id does not resolve."""

    code = "not_found"


class ProjectFileError(PlannerError):
    """Raised when a YAML project snapshot is malformed."""

    code = "invalid_project_file"
