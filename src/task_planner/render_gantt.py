from __future__ import annotations

import datetime as dt
import math
from importlib import metadata
from pathlib import Path
from typing import Iterable

import matplotlib

matplotlib.use("Agg")  # ensure headless, deterministic output
import matplotlib.dates as mdates
import matplotlib.path as mpath
import matplotlib.pyplot as plt
from matplotlib.patches import FancyArrowPatch

from .task_models import FlatRenderRow

ROUTE_X_PAD = 0.35  # horizontal gap from bar edges to start/end of connector
BRACKET_LW = 2.5
TIMELINE_PAD_DAYS = 7  # add breathing room before first and after last date
TITLE_FONT = 14
LABEL_FONT = 10
FOOTER_FONT = 8
TICK_FONT = 9
TOP_MARGIN_FRAC = 0.85
TITLE_Y = 0.985

STATUS_COLORS = {
    "todo": "#9e9e9e",
    "in_progress": "#3f88c5",
    "review": "#f2a541",
    "done": "#44af69",
}
CRITICAL_EDGE = "#d62828"


def render_gantt(
    rows: list[FlatRenderRow],
    out_path: str,
    title: str,
    min_date: dt.date | None = None,
    max_date: dt.date | None = None,
) -> None:
    """
    Render a static SVG Gantt chart to `out_path`.

    - Expects rows from `to_render_rows` (dates already resolved).
    - Leaf tasks are bars coloured by status, with a progress overlay;
      tasks with sub-tasks are brackets spanning their own dates.
    - Critical tasks get a red outline and red labels.
    """

    if not rows:
        raise ValueError("rows must not be empty")

    min_date, max_date = _resolve_date_window(rows, min_date, max_date)
    row_height = 0.6

    span_days = (max_date - min_date).days + 1
    fig_height = max(3.0, row_height * len(rows) + 2.0)
    fig_width = max(12.0, min(24.0, span_days / 7.0 * 2.0 + 6.0))
    fig = plt.figure(figsize=(fig_width, fig_height))
    gs = fig.add_gridspec(1, 2, width_ratios=[1.2, 4.0], wspace=0.05, left=0.06, right=0.98, top=TOP_MARGIN_FRAC, bottom=0.1)
    label_ax = fig.add_subplot(gs[0, 0])
    ax = fig.add_subplot(gs[0, 1], sharey=label_ax)

    ax.set_ylim(-1, len(rows))
    ax.invert_yaxis()
    ax.set_xlim(
        mdates.date2num(min_date - dt.timedelta(days=TIMELINE_PAD_DAYS)),
        mdates.date2num(max_date + dt.timedelta(days=TIMELINE_PAD_DAYS)),
    )
    ax.xaxis_date()
    ax.xaxis.tick_top()
    major_locator, major_formatter = _major_tick_strategy(span_days)
    ax.xaxis.set_major_locator(major_locator)
    ax.xaxis.set_major_formatter(major_formatter)
    ax.xaxis.set_minor_locator(mdates.DayLocator(interval=1))
    ax.grid(True, axis="x", which="major", linestyle="--", alpha=0.4)
    ax.grid(True, axis="x", which="minor", linestyle=":", alpha=0.2)
    ax.tick_params(axis="x", labelrotation=30, labelsize=TICK_FONT, pad=4)
    ax.set_yticks([])

    label_ax.set_ylim(-1, len(rows))
    label_ax.invert_yaxis()
    label_ax.set_xlim(0, 1)
    label_ax.axis("off")

    fig.suptitle(title, x=0.5, fontsize=TITLE_FONT, y=TITLE_Y)
    footer = f"task_planner v{_tool_version()} · critical path in red"
    fig.text(0.99, 0.01, footer, ha="right", va="bottom", fontsize=FOOTER_FONT, alpha=0.8)

    bar_rects: dict[object, tuple[float, float, float, float]] = {}
    critical_ids = {row.task_id for row in rows if row.is_critical}

    for idx, row in enumerate(rows):
        y = idx
        label = "    " * row.indent + row.name
        label_ax.text(
            0.98,
            y,
            label,
            ha="right",
            va="center",
            fontsize=LABEL_FONT,
            fontweight="bold" if row.node_type == "bracket" else "normal",
            color=CRITICAL_EDGE if row.is_critical else "black",
            transform=label_ax.transData,
        )
        if row.start_date is None or row.finish_date is None:
            continue

        x_start = mdates.date2num(row.start_date)
        x_end = mdates.date2num(row.finish_date + dt.timedelta(days=1))
        color = STATUS_COLORS.get(row.status, "#999999")

        if row.node_type == "bar":
            edge = CRITICAL_EDGE if row.is_critical else "black"
            ax.barh(
                y,
                width=x_end - x_start,
                left=x_start,
                height=row_height,
                color=color,
                alpha=0.45,
                edgecolor=edge,
                linewidth=1.6 if row.is_critical else 0.5,
            )
            if row.progress:
                ax.barh(
                    y,
                    width=(x_end - x_start) * row.progress / 100.0,
                    left=x_start,
                    height=row_height * 0.5,
                    color=color,
                    linewidth=0,
                )
        else:
            cap = row_height / 2.2
            line_color = CRITICAL_EDGE if row.is_critical else color
            ax.plot([x_start, x_end], [y, y], color=line_color, linewidth=BRACKET_LW, zorder=2)
            ax.plot([x_start, x_start], [y - cap, y + cap], color=line_color, linewidth=BRACKET_LW, zorder=2)
            ax.plot([x_end, x_end], [y - cap, y + cap], color=line_color, linewidth=BRACKET_LW, zorder=2)
        bar_rects[row.task_id] = (x_start, x_end, y - row_height / 2, y + row_height / 2)

    _draw_dependencies(ax, rows, bar_rects, critical_ids)

    Path(out_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, format="svg", bbox_inches="tight")
    plt.close(fig)


def _resolve_date_window(
    rows: Iterable[FlatRenderRow], min_date: dt.date | None, max_date: dt.date | None
) -> tuple[dt.date, dt.date]:
    starts = [row.start_date for row in rows if row.start_date]
    finishes = [row.finish_date for row in rows if row.finish_date]
    if not starts and min_date is None:
        raise ValueError("Cannot infer min_date; no date values present")
    computed_min = min_date or min(starts)
    candidates = finishes + starts
    if not candidates and max_date is None:
        raise ValueError("Cannot infer max_date; no date values present")
    computed_max = max_date or max(candidates)
    return computed_min, computed_max


def _tool_version() -> str:
    try:
        return metadata.version("task_planner")
    except metadata.PackageNotFoundError:
        return "0.0.0"


def _major_tick_strategy(span_days: int) -> tuple[mdates.DateLocator, mdates.DateFormatter]:
    """Coarser ticks for longer timelines so labels never overlap."""
    if span_days > 180:
        return mdates.MonthLocator(), mdates.DateFormatter("%b %Y")
    if span_days > 45:
        weeks = 2 if span_days > 90 else 1
        return mdates.WeekdayLocator(byweekday=mdates.MO, interval=weeks), mdates.DateFormatter("%b %d")
    return mdates.DayLocator(interval=2 if span_days > 14 else 1), mdates.DateFormatter("%b %d")


def route_dependency(
    a_rect: tuple[float, float, float, float],
    b_rect: tuple[float, float, float, float],
) -> list[tuple[float, float]]:
    """
    Orthogonal connector from the end of bar `a` to the start of bar `b`.

    Right → vertical → right when `b` starts after `a` ends; otherwise a
    detour that drops between the rows and doubles back left of `b`.
    """

    axmin, axmax, aymin, aymax = a_rect
    bxmin, bxmax, bymin, bymax = b_rect
    start = (axmax + ROUTE_X_PAD, (aymin + aymax) / 2)
    goal = (bxmin - ROUTE_X_PAD, (bymin + bymax) / 2)

    if goal[0] >= start[0]:
        x_lane = (start[0] + goal[0]) / 2
        points = [start, (x_lane, start[1]), (x_lane, goal[1]), goal]
    else:
        y_mid = (start[1] + goal[1]) / 2
        points = [
            start,
            (start[0] + ROUTE_X_PAD, start[1]),
            (start[0] + ROUTE_X_PAD, y_mid),
            (goal[0] - ROUTE_X_PAD, y_mid),
            (goal[0] - ROUTE_X_PAD, goal[1]),
            goal,
        ]
    return points


def _chamfer_corners(points: list[tuple[float, float]], size: float = 0.6) -> list[tuple[float, float]]:
    """Cut each elbow of a connector with a short diagonal."""
    if len(points) < 3:
        return points
    cut = [points[0]]
    for before, corner, after in zip(points, points[1:], points[2:]):
        cut.append(_step_toward(corner, before, size))
        cut.append(_step_toward(corner, after, size))
    cut.append(points[-1])
    return cut


def _step_toward(origin: tuple[float, float], target: tuple[float, float], size: float) -> tuple[float, float]:
    dx, dy = target[0] - origin[0], target[1] - origin[1]
    length = math.hypot(dx, dy)
    if not length:
        return origin
    step = min(size, length / 2)
    return origin[0] + dx / length * step, origin[1] + dy / length * step


def _draw_dependencies(
    ax: plt.Axes,
    rows: list[FlatRenderRow],
    bar_rects: dict[object, tuple[float, float, float, float]],
    critical_ids: set[object],
) -> None:
    for row in rows:
        b_rect = bar_rects.get(row.task_id)
        if b_rect is None:
            continue
        for dep_id in row.depends_on:
            a_rect = bar_rects.get(dep_id)
            if a_rect is None:
                continue
            on_path = dep_id in critical_ids and row.task_id in critical_ids
            polyline = _chamfer_corners(route_dependency(a_rect, b_rect))
            arrow = FancyArrowPatch(
                path=mpath.Path(polyline),
                arrowstyle="-|>",
                mutation_scale=8.0,
                lw=1.2 if on_path else 0.9,
                color=CRITICAL_EDGE if on_path else "#3a3a3a",
                shrinkA=0.5,
                shrinkB=0.5,
            )
            ax.add_patch(arrow)
