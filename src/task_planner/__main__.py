from __future__ import annotations

import argparse
import logging
import sys
import webbrowser
from pathlib import Path

import yaml

from .errors import PlannerError
from .parse_project import ProjectSnapshot, load_project
from .render_gantt import render_gantt
from .render_rows import hierarchical_order, to_render_rows
from .scheduling import compute_schedule
from .task_models import ScheduleResult

logger = logging.getLogger("task_planner")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="task-planner",
        description="Critical path schedule for a project snapshot",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("project", help="Path to project YAML")
    parser.add_argument("--out", help="Render a Gantt chart SVG to this path")
    parser.add_argument("--critical-only", action="store_true", help="Only list critical tasks")
    parser.add_argument(
        "--view",
        dest="view",
        action="store_true",
        default=False,
        help="Best-effort open the rendered chart",
    )
    parser.add_argument("--no-view", dest="view", action="store_false", help="Do not open the rendered chart")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("matplotlib").setLevel(logging.WARNING)


def format_schedule(snapshot: ProjectSnapshot, result: ScheduleResult, critical_only: bool = False) -> str:
    """Plain-text schedule table, one row per task in hierarchical order."""

    header = f"{'id':>6}  {'task':<32} {'dur':>4} {'ES':>4} {'EF':>4} {'LS':>4} {'LF':>4} {'slack':>5}  "
    lines = [header.rstrip(), "-" * len(header.rstrip())]
    for task in hierarchical_order(snapshot.tasks):
        entry = result.schedule[task.id]
        if critical_only and not entry.is_critical:
            continue
        title = ("  " * task.depth_level + task.title)[:32]
        marker = "*" if entry.is_critical else ""
        lines.append(
            f"{str(task.id):>6}  {title:<32} {entry.duration:>4} {entry.earliest_start:>4} "
            f"{entry.earliest_finish:>4} {entry.latest_start:>4} {entry.latest_finish:>4} {entry.slack:>5}  {marker}".rstrip()
        )
    lines.append("")
    lines.append(f"Project end: day {result.project_end}; {len(result.critical_task_ids)} critical task(s) marked *")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    project_path = Path(args.project)

    try:
        snapshot = load_project(str(project_path))
    except (yaml.YAMLError, PlannerError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except FileNotFoundError:
        print(f"Error: project file not found: {project_path}", file=sys.stderr)
        return 1
    except Exception as exc:  # Unexpected
        logger.exception("Unexpected error while loading project")
        print(f"Unexpected error while loading project: {exc}", file=sys.stderr)
        return 1

    if not snapshot.tasks:
        print(f"Project '{snapshot.name}' has no tasks")
        return 0

    result = compute_schedule(snapshot.tasks, snapshot.dependencies)
    print(snapshot.name)
    print(format_schedule(snapshot, result, critical_only=args.critical_only))

    if not args.out:
        return 0

    rows = to_render_rows(snapshot.tasks, result, snapshot.dependencies)
    try:
        render_gantt(rows=rows, out_path=args.out, title=snapshot.name)
    except Exception as exc:
        logger.exception("Rendering failed")
        print(f"Unexpected error while rendering: {exc}", file=sys.stderr)
        return 1

    if args.view:
        try:
            webbrowser.open(Path(args.out).resolve().as_uri())
        except webbrowser.Error as exc:
            logger.warning("Could not open %s: %s", args.out, exc)

    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
