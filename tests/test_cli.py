import textwrap

from task_planner.__main__ import main

PROJECT_YAML = """
project:
  name: Scenario
tasks:
  - id: A
    title: Foundation
    start_date: 2024-01-01
    end_date: 2024-01-04
  - id: B
    title: Walls
    start_date: 2024-01-04
    end_date: 2024-01-06
  - id: C
    title: Permits
    start_date: 2024-01-01
    end_date: 2024-01-05
dependencies:
  - task: B
    depends_on: A
"""


def _write(tmp_path, text, name="project.yaml"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def test_cli_prints_schedule(tmp_path, capsys):
    path = _write(tmp_path, PROJECT_YAML)

    assert main([str(path), "--no-view"]) == 0

    out = capsys.readouterr().out
    assert out.startswith("Scenario")
    assert "Project end: day 5; 2 critical task(s)" in out
    walls = next(line for line in out.splitlines() if "Walls" in line)
    assert walls.rstrip().endswith("*")
    permits = next(line for line in out.splitlines() if "Permits" in line)
    assert not permits.rstrip().endswith("*")


def test_cli_critical_only(tmp_path, capsys):
    path = _write(tmp_path, PROJECT_YAML)

    assert main([str(path), "--critical-only"]) == 0

    out = capsys.readouterr().out
    assert "Permits" not in out
    assert "Foundation" in out


def test_cli_renders_svg(tmp_path):
    path = _write(tmp_path, PROJECT_YAML)
    out_file = tmp_path / "out" / "chart.svg"

    assert main([str(path), "--out", str(out_file), "--no-view"]) == 0
    assert out_file.exists()


def test_cli_missing_file_returns_1(tmp_path, capsys):
    assert main([str(tmp_path / "nope.yaml")]) == 1
    assert "project file not found" in capsys.readouterr().err


def test_cli_invalid_project_returns_2(tmp_path, capsys):
    path = _write(tmp_path, "project:\n  name: Broken\ntasks:\n  - id: 1\n")

    assert main([str(path)]) == 2
    assert "missing required field 'title'" in capsys.readouterr().err


def test_cli_yaml_syntax_error_returns_2(tmp_path):
    path = _write(tmp_path, "project: [unclosed\n")
    assert main([str(path)]) == 2


def test_cli_empty_project(tmp_path, capsys):
    path = _write(tmp_path, "project:\n  name: Empty\ntasks: []\n")
    assert main([str(path)]) == 0
    assert "has no tasks" in capsys.readouterr().out
