"""Sprint date aggregation and child-list reconciliation."""

from __future__ import annotations

from typing import Iterable, Sequence

from .model import ChartTask, TaskType


def aggregate_sprint(sprint: ChartTask, children: Sequence[ChartTask]) -> bool:
    """Stretch *sprint* to cover its children.

    Start becomes the earliest child start and end the latest child end.
    Only tasks whose type is exactly ``sprint`` are touched, and a sprint
    with no children keeps its own dates.  Returns ``True`` when the span
    changed.
    """
    if sprint.task_type != TaskType.SPRINT or not children:
        return False
    start = min(child.start for child in children)
    end = max(child.end for child in children)
    if (start, end) == (sprint.start, sprint.end):
        return False
    sprint.set_span(start, end)
    return True


def aggregate_sprints(tasks: list[ChartTask]) -> list[ChartTask]:
    """Apply :func:`aggregate_sprint` to every sprint in *tasks*.

    Children are taken from each sprint's ``child_tasks``; ids outside the
    dataset are ignored.  The list is updated in place and returned.
    """
    by_id = {task.id: task for task in tasks}
    for task in tasks:
        if not task.is_sprint:
            continue
        children = [by_id[c] for c in task.child_tasks if c in by_id and c != task.id]
        aggregate_sprint(task, children)
    return tasks


def diff_children(existing: Iterable[int], requested: Iterable[int]) -> tuple[list[int], list[int]]:
    """Return ``(to_add, to_remove)`` turning *existing* into *requested*.

    Zero and non-positive ids in *requested* are dropped.
    """
    have = {int(c) for c in existing}
    want = {int(c) for c in requested if int(c) > 0}
    return sorted(want - have), sorted(have - want)
