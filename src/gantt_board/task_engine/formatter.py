"""Build the chart payload (``data`` + ``links``) from a board snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..constants import (
    COLOR_DEFAULT,
    COLOR_MILESTONE,
    COLOR_SPRINT,
    CHART_LINK_FINISH_TO_START,
    DONE_COLUMN_NAME,
    SECONDS_PER_DAY,
    SUBTASK_ID_PREFIX,
    SUBTASK_STATUS_DONE,
)
from ..utils import _now_ts
from .grouping import NO_SPRINT_LABEL, project_groups
from .links import LinkIndex
from .model import ChartLink, ChartTask, Subtask, Task, TaskPriority, TaskType, chart_duration
from .sprints import aggregate_sprints
from .store import BoardState

logger = logging.getLogger(__name__)

UNASSIGNED_LABEL = "Unassigned"
UNCATEGORIZED_LABEL = "Uncategorized"

SORT_BOARD = "board"
SORT_DATE = "date"

_SUBTASK_PROGRESS = {0: 0.0, 1: 0.5, 2: 1.0}
_SUBTASK_COLORS = {0: "#bdc3c7", 1: "#f39c12", 2: "#2ecc71"}


@dataclass
class ChartPayload:
    tasks: list[ChartTask] = field(default_factory=list)
    links: list[ChartLink] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [t.to_dict() for t in self.tasks],
            "links": [link.to_dict() for link in self.links],
        }


def is_done_column(title: str) -> bool:
    return title.strip().lower() == DONE_COLUMN_NAME


def column_progress(task: Task, column_ids: list[int]) -> float:
    """Progress implied by the task's column: its index over the column count."""
    if not task.is_active:
        return 1.0
    if not column_ids:
        return 0.0
    position = column_ids.index(task.column_id) if task.column_id in column_ids else len(column_ids)
    return round(position / len(column_ids), 3)


def stored_progress(meta: dict[str, str]) -> Optional[float]:
    raw = meta.get("gantt_progress", "")
    if raw == "":
        return None
    try:
        return float(raw) / 100
    except ValueError:
        logger.warning("Ignoring malformed gantt_progress %r", raw)
        return None


def matches_search(task: ChartTask, search: str) -> bool:
    """``assignee:<name>`` filters by assignee; other text matches title or assignee."""
    query = search.strip().lower()
    if not query:
        return True
    if query.startswith("assignee:"):
        name = query[len("assignee:"):].strip()
        return name in task.assignee.lower()
    return query in task.text.lower() or query in task.assignee.lower()


class ChartFormatter:
    """Turn one project's rows into chart rows.

    Parameters
    ----------
    state:
        Snapshot of the board.
    project_id:
        Project whose tasks are rendered.
    now:
        Unix time used for tasks and subtasks without dates.
    """

    def __init__(self, state: BoardState, project_id: int, now: Optional[int] = None) -> None:
        self.state = state
        self.project_id = project_id
        self.now = _now_ts() if now is None else now
        self.index = LinkIndex(state.project_links(project_id))
        columns = state.project_columns(project_id)
        self._column_ids = [c.id for c in columns]
        self._column_titles = {c.id: c.title for c in columns}
        self._column_pos = {c.id: i for i, c in enumerate(columns)}

    def _is_sprint(self, task_id: int) -> bool:
        row = self.state.get_task(task_id)
        return (
            row is not None
            and row.project_id == self.project_id
            and self.state.task_type_of(task_id) == TaskType.SPRINT.value
        )

    # -- per-row formatting -------------------------------------------------

    def visible_tasks(self) -> list[Task]:
        out = []
        for task in self.state.project_tasks(self.project_id):
            if not task.is_active:
                continue
            if is_done_column(self._column_titles.get(task.column_id, "")):
                continue
            out.append(task)
        return out

    def format_task(self, task: Task) -> ChartTask:
        meta = self.state.metadata(task.id)
        task_type = TaskType.coerce(meta.get("task_type"))
        is_milestone = meta.get("is_milestone") == "1" or task_type == TaskType.MILESTONE

        start = task.date_started or self.now
        end = task.date_due or (start + SECONDS_PER_DAY)

        parent = self.index.parent(task.id)
        sprint_id = _meta_int(meta.get("sprint_id"))
        if sprint_id and not self._is_sprint(sprint_id):
            sprint_id = 0
        if not sprint_id and parent and self._is_sprint(parent):
            sprint_id = parent
        sprint_row = self.state.get_task(sprint_id) if sprint_id else None

        owner = self.state.get_user(task.owner_id) if task.owner_id else None
        category = self.state.get_category(task.category_id) if task.category_id else None

        if is_milestone:
            color = COLOR_MILESTONE
        elif task_type == TaskType.SPRINT:
            color = COLOR_SPRINT
        elif category is not None and category.color:
            color = category.color
        else:
            color = COLOR_DEFAULT

        progress = stored_progress(meta)
        if progress is None:
            progress = column_progress(task, self._column_ids)

        return ChartTask(
            id=task.id,
            text=task.title,
            start=start,
            end=end,
            duration=0 if is_milestone else chart_duration(start, end),
            progress=progress,
            priority=TaskPriority.from_host(task.priority).value,
            color=color,
            owner_id=task.owner_id,
            task_type=task_type,
            sprint_id=sprint_id,
            child_tasks=self.index.children(task.id) if task_type == TaskType.SPRINT else [],
            parent=parent,
            is_milestone=is_milestone,
            readonly=not task.is_active,
            assignee=owner.label if owner else UNASSIGNED_LABEL,
            category=category.name if category and category.name else UNCATEGORIZED_LABEL,
            sprint=sprint_row.title if sprint_row else NO_SPRINT_LABEL,
            category_id=task.category_id,
            column_title=self._column_titles.get(task.column_id, ""),
            kind="project" if task_type == TaskType.SPRINT else "task",
        )

    def format_subtask(self, subtask: Subtask, owner: ChartTask) -> ChartTask:
        if subtask.due_date:
            start, end = subtask.due_date - 3 * SECONDS_PER_DAY, subtask.due_date
        else:
            start, end = self.now, self.now + SECONDS_PER_DAY
        return ChartTask(
            id=f"{SUBTASK_ID_PREFIX}{subtask.id}",
            text=subtask.title,
            start=start,
            end=end,
            duration=chart_duration(start, end),
            progress=_SUBTASK_PROGRESS.get(subtask.status, 0.0),
            color=_SUBTASK_COLORS.get(subtask.status, "#ecf0f1"),
            owner_id=owner.owner_id,
            parent=owner.id,
            readonly=subtask.status == SUBTASK_STATUS_DONE,
            assignee=owner.assignee,
            category=owner.category,
            sprint=owner.sprint,
        )

    def format_links(self, task_ids: set[int]) -> list[ChartLink]:
        links: list[ChartLink] = []
        seen: set[tuple[int, int]] = set()
        for link_id, source, target in self.index.dependency_links():
            if source not in task_ids or target not in task_ids:
                continue
            if not self.index.same_level(source, target):
                continue
            if (source, target) in seen:
                continue
            seen.add((source, target))
            links.append(ChartLink(id=link_id, source=source, target=target, type=CHART_LINK_FINISH_TO_START))
        return links

    # -- full payload -------------------------------------------------------

    def build(self, group_by: Any = "none", sorting: str = SORT_BOARD, search: str = "") -> ChartPayload:
        rows = self.visible_tasks()
        rows_by_id = {task.id: task for task in rows}
        charted = [self.format_task(task) for task in rows]
        if search:
            charted = [t for t in charted if matches_search(t, search)]
        aggregate_sprints(charted)
        charted = self._sorted(charted, rows_by_id, sorting)

        data: list[ChartTask] = []
        for row in charted:
            data.append(row)
            for subtask in self.state.subtasks_of(int(row.id)):
                if subtask.status == SUBTASK_STATUS_DONE:
                    continue
                data.append(self.format_subtask(subtask, row))

        links = self.format_links({int(t.id) for t in charted})
        return ChartPayload(tasks=project_groups(data, group_by), links=links)

    def _sorted(self, charted: list[ChartTask], rows: dict[int, Task], sorting: str) -> list[ChartTask]:
        if sorting == SORT_DATE:
            def key(t: ChartTask) -> tuple:
                return (t.start, rows[int(t.id)].date_due or t.end, int(t.id))
        else:
            def key(t: ChartTask) -> tuple:
                row = rows[int(t.id)]
                return (self._column_pos.get(row.column_id, len(self._column_pos)), row.position, row.id)
        return sorted(charted, key=key)


def format_project(
    state: BoardState,
    project_id: int,
    *,
    group_by: Any = "none",
    sorting: str = SORT_BOARD,
    search: str = "",
    now: Optional[int] = None,
) -> ChartPayload:
    return ChartFormatter(state, project_id, now=now).build(group_by=group_by, sorting=sorting, search=search)


def _meta_int(value: Optional[str]) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0
