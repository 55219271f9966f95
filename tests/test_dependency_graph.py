import pytest

from task_planner.dependency_graph import (
    DependencyGraph,
    validate_edge_fields,
    validate_new_edge,
    validate_no_cycle,
)
from task_planner.errors import DependencyValidationError, PlannerError
from task_planner.task_models import DependencyEdge, Task


def _dep(dependent, depends_on, **kwargs):
    return DependencyEdge(dependent_task_id=dependent, depends_on_task_id=depends_on, **kwargs)


def _tasks(*ids, project_id=1):
    return [Task(id=task_id, project_id=project_id, title=str(task_id)) for task_id in ids]


def test_reverse_edge_is_rejected_as_cycle():
    existing = [_dep("B", "A")]  # B depends on A
    assert validate_no_cycle(existing, _dep("A", "B")) is False


def test_transitive_cycle_is_rejected():
    existing = [_dep("B", "A"), _dep("C", "B")]
    assert validate_no_cycle(existing, _dep("A", "C")) is False


def test_acyclic_candidate_is_accepted():
    existing = [_dep("B", "A"), _dep("C", "B")]
    assert validate_no_cycle(existing, _dep("C", "A")) is True
    assert validate_no_cycle(existing, _dep("D", "C")) is True
    assert validate_no_cycle([], _dep("B", "A")) is True


def test_self_dependency_counts_as_cycle():
    assert validate_no_cycle([], _dep("A", "A")) is False


def test_snapshot_graph_skips_unknown_tasks_and_keeps_isolated_nodes():
    graph = DependencyGraph.from_snapshot(_tasks(1, 2, 3), [_dep(2, 1), _dep(2, 99)])

    assert len(graph) == 3
    assert 99 not in graph
    isolated = graph.handle(3)
    assert graph.prerequisites(isolated) == []
    assert graph.dependents(isolated) == []
    assert [graph.task_id(h) for h in graph.prerequisites(graph.handle(2))] == [1]


def test_topological_order_breaks_ties_by_insertion_order():
    graph = DependencyGraph.from_snapshot(_tasks(1, 2, 3, 4), [_dep(3, 1), _dep(4, 3)])

    ordered, unresolved = graph.topological_order()

    assert [graph.task_id(h) for h in ordered] == [1, 2, 3, 4]
    assert unresolved == []


def test_topological_order_reports_cycle_members():
    graph = DependencyGraph.from_snapshot(_tasks("A", "B", "C", "D"), [_dep("A", "B"), _dep("B", "A"), _dep("D", "A")])

    ordered, unresolved = graph.topological_order()

    assert [graph.task_id(h) for h in ordered] == ["C"]
    assert [graph.task_id(h) for h in unresolved] == ["A", "B", "D"]


def test_find_cycle_returns_path():
    graph = DependencyGraph.from_edges([_dep("A", "B"), _dep("B", "A")])
    cycle = graph.find_cycle()
    assert cycle is not None
    assert cycle.path == ["A", "B", "A"]

    assert DependencyGraph.from_edges([_dep("B", "A"), _dep("C", "B")]).find_cycle() is None


def test_depends_on_path_follows_prerequisites():
    graph = DependencyGraph.from_edges([_dep("B", "A"), _dep("C", "B")])
    assert graph.depends_on_path("C", "A") == ["C", "B", "A"]
    assert graph.reaches("C", "A")
    assert not graph.reaches("A", "C")
    assert graph.depends_on_path("C", "missing") is None


def test_validate_new_edge_accepts_valid_edge():
    validate_new_edge(_dep(2, 1, lag_days=-2, from_point=50, to_point=25), _tasks(1, 2), [])


@pytest.mark.parametrize(
    "edge, reason",
    [
        (_dep(None, 1), "missing_task_id"),
        (_dep(1, 1), "self_reference"),
        (_dep(2, 42), "unknown_task"),
        (_dep(2, 1, dependency_type="before"), "invalid_type"),
        (_dep(2, 1, lag_days=1.5), "invalid_lag"),
        (_dep(2, 1, from_point=101), "invalid_point"),
        (_dep(2, 1, to_point=-1), "invalid_point"),
    ],
)
def test_validate_new_edge_rejections(edge, reason):
    with pytest.raises(DependencyValidationError) as excinfo:
        validate_new_edge(edge, _tasks(1, 2), [])
    assert excinfo.value.reason == reason
    assert excinfo.value.code == "invalid_dependency"
    assert isinstance(excinfo.value, PlannerError)


def test_validate_new_edge_rejects_duplicates_and_cycles():
    existing = [_dep(2, 1)]
    with pytest.raises(DependencyValidationError) as duplicate:
        validate_new_edge(_dep(2, 1), _tasks(1, 2), existing)
    assert duplicate.value.reason == "duplicate"

    with pytest.raises(DependencyValidationError) as circular:
        validate_new_edge(_dep(1, 2), _tasks(1, 2), existing)
    assert circular.value.reason == "circular"
    assert "circular" in str(circular.value)


def test_validate_new_edge_rejects_cross_project_edges():
    tasks = _tasks(1) + _tasks(2, project_id=7)
    with pytest.raises(DependencyValidationError) as excinfo:
        validate_new_edge(_dep(2, 1), tasks, [])
    assert excinfo.value.reason == "cross_project"


def test_validate_edge_fields_ignores_unsupplied_values():
    validate_edge_fields()
    validate_edge_fields(dependency_type="start_to_finish", lag_days=0, from_point=0, to_point=100)
    with pytest.raises(DependencyValidationError):
        validate_edge_fields(lag_days=True)
