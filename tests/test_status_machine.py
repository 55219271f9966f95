import datetime as dt

import pytest

from task_planner.errors import NotFoundError, StatusGuardError, TaskValidationError
from task_planner.status_machine import (
    StatusState,
    apply_status_change,
    can_set_status_directly,
    completion_timestamp,
    derive_parent_status,
    on_child_status_changed,
    task_progress,
)
from task_planner.task_models import StatusChange, Task
from task_planner.task_store import InMemoryTaskStore

NOW = dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.timezone.utc)
LATER = NOW + dt.timedelta(hours=5)


def _store_with(*tasks):
    store = InMemoryTaskStore()
    for task in tasks:
        store.add_task(task)
    return store


def _task(task_id, parent=None, status="todo", **kwargs):
    return Task(id=task_id, project_id=1, title=f"Task {task_id}", parent_task_id=parent, status=status, **kwargs)


@pytest.mark.parametrize(
    "statuses, expected",
    [
        (["done", "done"], "done"),
        (["done", "review"], "review"),
        (["review", "review"], "review"),
        (["done", "review", "in_progress"], "in_progress"),
        (["todo", "in_progress"], "in_progress"),
        (["todo", "todo"], "todo"),
        (["done", "todo"], "todo"),
        (["review", "todo"], "todo"),
        ([], "todo"),
    ],
)
def test_derive_parent_status_precedence(statuses, expected):
    assert derive_parent_status(statuses) == expected


def test_status_state_tags_derived_tasks():
    leaf = _task(1, status="review")
    parent = _task(2, subtask_count=3, status="in_progress")

    assert StatusState.for_task(leaf) == StatusState("leaf", "review")
    assert StatusState.for_task(parent) == StatusState("derived", "in_progress")
    assert can_set_status_directly(leaf)
    assert not can_set_status_directly(parent)


@pytest.mark.parametrize("status", ["todo", "in_progress", "review", "done"])
def test_guard_rejects_direct_write_to_task_with_subtasks(status):
    store = _store_with(_task(1), _task(2, parent=1), _task(3, parent=1))
    assert store.get_task(1).subtask_count == 2

    with pytest.raises(StatusGuardError) as excinfo:
        apply_status_change(store, 1, status, now=NOW)

    assert excinfo.value.code == "status_derived"
    assert excinfo.value.subtask_count == 2
    assert "derived" in str(excinfo.value)
    assert store.get_task(1).status == "todo"


def test_cascade_walks_three_levels_in_order():
    store = _store_with(_task("G"), _task("P", parent="G"), _task("L", parent="P"))

    changes = apply_status_change(store, "L", "done", now=NOW)

    assert changes == [
        StatusChange("L", "todo", "done", derived=False),
        StatusChange("P", "todo", "done", derived=True),
        StatusChange("G", "todo", "done", derived=True),
    ]
    for task_id in ("L", "P", "G"):
        task = store.get_task(task_id)
        assert task.status == "done"
        assert task.completed_at == NOW
        assert task.updated_at == NOW


def test_leaving_done_clears_completion_timestamps():
    store = _store_with(_task("G"), _task("P", parent="G"), _task("L", parent="P"))
    apply_status_change(store, "L", "done", now=NOW)

    apply_status_change(store, "L", "in_progress", now=LATER)

    for task_id in ("L", "P", "G"):
        task = store.get_task(task_id)
        assert task.status == "in_progress"
        assert task.completed_at is None


def test_cascade_reads_all_siblings():
    store = _store_with(_task(1), _task(2, parent=1, status="done"), _task(3, parent=1))

    changes = apply_status_change(store, 3, "review", now=NOW)

    assert [c.task_id for c in changes] == [3, 1]
    assert store.get_task(1).status == "review"


def test_cascade_stops_when_ancestor_is_unchanged():
    store = _store_with(
        _task(1, status="in_progress"),
        _task(2, parent=1, status="in_progress"),
        _task(3, parent=2, status="in_progress"),
        _task(4, parent=2),
    )

    changes = apply_status_change(store, 4, "in_progress", now=NOW)

    assert changes == [StatusChange(4, "todo", "in_progress", derived=False)]


def test_cascade_can_walk_to_root_when_asked():
    store = _store_with(
        _task(1, status="in_progress"),
        _task(2, parent=1, status="in_progress"),
        _task(3, parent=2, status="in_progress"),
    )

    changes = on_child_status_changed(store, 2, now=NOW, stop_when_unchanged=False)

    assert [(c.task_id, c.changed) for c in changes] == [(2, False), (1, False)]
    assert store.get_task(1).updated_at == NOW


def test_cascade_stops_at_missing_ancestor():
    store = _store_with(_task(2, parent=99), _task(3, parent=2))

    changes = apply_status_change(store, 3, "done", now=NOW)

    assert [c.task_id for c in changes] == [3, 2]
    assert store.get_task(2).status == "done"


def test_staying_done_keeps_original_completion_time():
    assert completion_timestamp("done", "todo", None, NOW) == NOW
    assert completion_timestamp("done", "done", NOW, LATER) == NOW
    assert completion_timestamp("review", "done", NOW, LATER) is None


def test_invalid_status_and_unknown_task_are_rejected():
    store = _store_with(_task(1))
    with pytest.raises(TaskValidationError):
        apply_status_change(store, 1, "blocked", now=NOW)
    with pytest.raises(NotFoundError):
        apply_status_change(store, 2, "done", now=NOW)


def test_task_progress_for_leaves_and_parents():
    assert task_progress(_task(1, status="review"), []) == 75
    assert task_progress(_task(1, status="in_progress"), []) == 50
    children = [_task(2, status="done"), _task(3), _task(4, status="done")]
    assert task_progress(_task(1, subtask_count=3), children) == 67
    assert task_progress(_task(1, subtask_count=2), []) == 0
