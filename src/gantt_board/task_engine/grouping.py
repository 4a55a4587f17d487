"""Grouping projector: lay a flat chart dataset out under synthetic groups.

The projection is a pure function of its input.  Real tasks are copied
and re-parented under one read-only group row per bucket; subtask rows
follow their owning task unchanged.  Nothing in the input list is
mutated, and every input row appears exactly once in the output.
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum
from typing import Any, Sequence

from ..constants import (
    COLOR_DEFAULT,
    GROUP_ID_BASE,
    WORKLOAD_BUSY_ABOVE,
    WORKLOAD_OVERLOADED_ABOVE,
)
from ..utils import _now_ts
from .model import ChartTask, chart_duration

MISSING_LABEL = "None"
NO_SPRINT_LABEL = "No Sprint"


class GroupBy(str, Enum):
    NONE = "none"
    ASSIGNEE = "assignee"
    CATEGORY = "category"
    SPRINT = "sprint"

    @classmethod
    def parse(cls, raw: Any) -> "GroupBy":
        """Resolve a request value; ``group`` means category, unknown means none."""
        text = str(raw or "").strip().lower()
        if text == "group":
            return cls.CATEGORY
        try:
            return cls(text)
        except ValueError:
            return cls.NONE


def bucket_label(task: ChartTask, mode: GroupBy) -> str:
    if mode == GroupBy.ASSIGNEE:
        label = task.assignee
    elif mode == GroupBy.CATEGORY:
        label = task.category
    elif mode == GroupBy.SPRINT:
        label = task.text if task.is_sprint else (task.sprint or NO_SPRINT_LABEL)
    else:
        label = ""
    return label or MISSING_LABEL


def _group_row(group_id: int, mode: GroupBy, label: str, rows: Sequence[ChartTask]) -> ChartTask:
    start = min(r.start for r in rows) if rows else _now_ts()
    end = max(r.end for r in rows) if rows else start
    progress = sum(r.progress for r in rows) / len(rows) if rows else 0.0
    return ChartTask(
        id=group_id,
        text=f"{mode.value.capitalize()}: {label}",
        start=start,
        end=end,
        duration=chart_duration(start, end),
        progress=progress,
        color=COLOR_DEFAULT,
        parent=0,
        readonly=True,
        kind="project",
        open=True,
    )


def project_groups(tasks: Sequence[ChartTask], group_by: Any) -> list[ChartTask]:
    """Return *tasks* laid out under synthetic group rows.

    With mode ``none`` the input is returned as a new list of the same
    objects.  Group ids count down from ``-100000`` in bucket order, which
    is the order each label is first seen.
    """
    mode = GroupBy.parse(group_by)
    if mode == GroupBy.NONE:
        return list(tasks)

    buckets: dict[str, list[ChartTask]] = {}
    subtasks: list[ChartTask] = []
    for task in tasks:
        if task.is_subtask:
            subtasks.append(task)
            continue
        buckets.setdefault(bucket_label(task, mode), []).append(task)

    placed: set[int] = set()
    out: list[ChartTask] = []
    group_id = GROUP_ID_BASE
    for label, rows in buckets.items():
        out.append(_group_row(group_id, mode, label, rows))
        for row in rows:
            out.append(replace(row, parent=group_id))
            for index, sub in enumerate(subtasks):
                if index not in placed and str(sub.parent) == str(row.id):
                    out.append(sub)
                    placed.add(index)
        group_id -= 1

    # subtasks whose owning task is not in the dataset keep their place at the end
    out.extend(sub for index, sub in enumerate(subtasks) if index not in placed)
    return out


# rich markup style per workload status
WORKLOAD_STYLES = {"available": "green", "busy": "yellow", "overloaded": "red"}


def workload_status(count: int) -> str:
    if count > WORKLOAD_OVERLOADED_ABOVE:
        return "overloaded"
    if count > WORKLOAD_BUSY_ABOVE:
        return "busy"
    return "available"


def workload(tasks: Sequence[ChartTask]) -> list[dict[str, Any]]:
    """Per-assignee task counts with a busyness status.

    Subtask and group rows are not counted.  Entries come in order of
    first appearance; unassigned tasks are reported under owner ``0``.
    """
    people: dict[int, dict[str, Any]] = {}
    for task in tasks:
        if task.is_subtask or (isinstance(task.id, int) and task.id < 0):
            continue
        entry = people.setdefault(
            task.owner_id,
            {"owner_id": task.owner_id, "name": task.assignee or "Unassigned", "tasks": []},
        )
        entry["tasks"].append(task.id)
    out = []
    for entry in people.values():
        count = len(entry["tasks"])
        out.append({**entry, "task_count": count, "status": workload_status(count)})
    return out
