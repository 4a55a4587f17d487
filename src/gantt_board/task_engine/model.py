"""Data model for the Gantt board.

Two layers live here.  The *stored* records (:class:`Task`, :class:`Link`,
:class:`Subtask` and the small host records around them) mirror what the
project board persists: plain rows with integer ids and unix timestamps.
The *chart* records (:class:`ChartTask`, :class:`ChartLink`) are the shape
the Gantt widget consumes; they are derived on read and never written back.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from ..constants import (
    CHART_LINK_FINISH_TO_START,
    COLOR_DEFAULT,
    SECONDS_PER_DAY,
    SUBTASK_ID_PREFIX,
)
from ..utils import _now_ts, format_chart_date, parse_chart_date

ChartId = Union[int, str]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskType(str, Enum):
    """How a task renders on the chart."""

    TASK = "task"
    MILESTONE = "milestone"
    SPRINT = "sprint"

    @classmethod
    def coerce(cls, raw: Any) -> "TaskType":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw or "task"))
        except ValueError:
            return cls.TASK


class TaskPriority(str, Enum):
    """Chart priority names and their board integer codes."""

    LOW = "low"
    NORMAL = "normal"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def host_value(self) -> int:
        return _PRIORITY_TO_HOST[self]

    @classmethod
    def from_host(cls, value: Any) -> "TaskPriority":
        try:
            code = int(value or 0)
        except (TypeError, ValueError):
            return cls.NORMAL
        return _HOST_TO_PRIORITY.get(code, cls.NORMAL)

    @classmethod
    def parse(cls, raw: Any) -> Optional["TaskPriority"]:
        """Return the priority named by *raw*, or ``None`` if unknown."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw))
        except ValueError:
            return None


_PRIORITY_TO_HOST = {
    TaskPriority.NORMAL: 0,
    TaskPriority.LOW: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.HIGH: 3,
}
_HOST_TO_PRIORITY = {v: k for k, v in _PRIORITY_TO_HOST.items()}


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------

def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return _int(value)


@dataclass
class Project:
    id: int
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(id=_int(data.get("id")), name=str(data.get("name", "")))


@dataclass
class User:
    id: int
    username: str = ""
    name: str = ""

    @property
    def label(self) -> str:
        return self.username or self.name or f"User #{self.id}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=_int(data.get("id")),
            username=str(data.get("username", "") or ""),
            name=str(data.get("name", "") or ""),
        )


@dataclass
class Column:
    id: int
    project_id: int
    title: str = ""
    position: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Column":
        return cls(
            id=_int(data.get("id")),
            project_id=_int(data.get("project_id")),
            title=str(data.get("title", "") or ""),
            position=_int(data.get("position")),
        )


@dataclass
class Category:
    id: int
    project_id: int
    name: str = ""
    color: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Category":
        return cls(
            id=_int(data.get("id")),
            project_id=_int(data.get("project_id")),
            name=str(data.get("name", "") or ""),
            color=str(data.get("color", "") or ""),
        )


@dataclass
class Task:
    """A board task row.  Gantt-specific attributes live in task metadata."""

    id: int
    project_id: int
    title: str = ""
    description: str = ""
    date_started: Optional[int] = None
    date_due: Optional[int] = None
    date_creation: int = field(default_factory=_now_ts)
    priority: int = 0
    owner_id: int = 0
    category_id: int = 0
    column_id: int = 0
    position: int = 0
    is_active: bool = True
    creator_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            id=_int(data.get("id")),
            project_id=_int(data.get("project_id")),
            title=str(data.get("title", "") or ""),
            description=str(data.get("description", "") or ""),
            date_started=_opt_int(data.get("date_started")),
            date_due=_opt_int(data.get("date_due")),
            date_creation=_int(data.get("date_creation"), _now_ts()),
            priority=_int(data.get("priority")),
            owner_id=_int(data.get("owner_id")),
            category_id=_int(data.get("category_id")),
            column_id=_int(data.get("column_id")),
            position=_int(data.get("position")),
            is_active=bool(data.get("is_active", True)),
            creator_id=_int(data.get("creator_id")),
        )


@dataclass
class Link:
    """A directed, labelled edge between two tasks.

    ``Link(task_id=a, opposite_task_id=b, label="blocks")`` reads "a blocks b".
    """

    id: int
    task_id: int
    opposite_task_id: int
    label: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Link":
        return cls(
            id=_int(data.get("id")),
            task_id=_int(data.get("task_id")),
            opposite_task_id=_int(data.get("opposite_task_id")),
            label=str(data.get("label", "") or "").strip().lower(),
        )


@dataclass
class Subtask:
    id: int
    task_id: int
    title: str = ""
    status: int = 0  # 0 todo, 1 in progress, 2 done
    due_date: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        return cls(
            id=_int(data.get("id")),
            task_id=_int(data.get("task_id")),
            title=str(data.get("title", "") or ""),
            status=_int(data.get("status")),
            due_date=_opt_int(data.get("due_date")),
        )


# ---------------------------------------------------------------------------
# Chart records
# ---------------------------------------------------------------------------

def _chart_id(value: Any) -> ChartId:
    if isinstance(value, str) and not value.lstrip("-").isdigit():
        return value
    return _int(value)


def chart_duration(start: int, end: int) -> int:
    """Whole days between *start* and *end*, at least one."""
    days = -(-(end - start) // SECONDS_PER_DAY)  # ceil
    return max(1, int(days))


@dataclass
class ChartTask:
    """One row of the Gantt payload."""

    id: ChartId
    text: str = ""
    start: int = 0
    end: int = 0
    duration: int = 1
    progress: float = 0.0
    priority: str = TaskPriority.NORMAL.value
    color: str = COLOR_DEFAULT
    owner_id: int = 0
    task_type: TaskType = TaskType.TASK
    sprint_id: int = 0
    child_tasks: list[int] = field(default_factory=list)
    parent: ChartId = 0
    is_milestone: bool = False
    readonly: bool = False
    # Display-only attributes used by grouping and the legend
    assignee: str = ""
    category: str = ""
    sprint: str = ""
    category_id: int = 0
    column_title: str = ""
    kind: str = "task"
    open: bool = True

    @property
    def is_subtask(self) -> bool:
        return isinstance(self.id, str) and self.id.startswith(SUBTASK_ID_PREFIX)

    @property
    def is_sprint(self) -> bool:
        return self.task_type == TaskType.SPRINT

    def set_span(self, start: int, end: int) -> None:
        self.start = start
        self.end = end
        self.duration = 0 if self.is_milestone else chart_duration(start, end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "start_date": format_chart_date(self.start),
            "end_date": format_chart_date(self.end),
            "duration": self.duration,
            "progress": self.progress,
            "priority": self.priority,
            "color": self.color,
            "owner_id": self.owner_id,
            "task_type": self.task_type.value,
            "sprint_id": self.sprint_id,
            "child_tasks": list(self.child_tasks),
            "parent": self.parent,
            "is_milestone": self.is_milestone,
            "readonly": self.readonly,
            "assignee": self.assignee,
            "category": self.category,
            "sprint": self.sprint,
            "category_id": self.category_id,
            "column_title": self.column_title,
            "type": self.kind,
            "open": self.open,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChartTask":
        start = parse_chart_date(data.get("start_date"))
        start = start if start is not None else _now_ts()
        end = parse_chart_date(data.get("end_date"))
        if end is None:
            end = start + _int(data.get("duration"), 1) * SECONDS_PER_DAY
        return cls(
            id=_chart_id(data.get("id")),
            text=str(data.get("text", "") or ""),
            start=start,
            end=end,
            duration=_int(data.get("duration"), 1),
            progress=float(data.get("progress") or 0.0),
            priority=str(data.get("priority") or TaskPriority.NORMAL.value),
            color=str(data.get("color") or COLOR_DEFAULT),
            owner_id=_int(data.get("owner_id")),
            task_type=TaskType.coerce(data.get("task_type")),
            sprint_id=_int(data.get("sprint_id")),
            child_tasks=[_int(c) for c in data.get("child_tasks") or []],
            parent=_chart_id(data.get("parent", 0)),
            is_milestone=bool(data.get("is_milestone", False)),
            readonly=bool(data.get("readonly", False)),
            assignee=str(data.get("assignee", "") or ""),
            category=str(data.get("category", "") or ""),
            sprint=str(data.get("sprint", "") or ""),
            category_id=_int(data.get("category_id")),
            column_title=str(data.get("column_title", "") or ""),
            kind=str(data.get("type", "task") or "task"),
            open=bool(data.get("open", True)),
        )


@dataclass
class ChartLink:
    id: int
    source: ChartId
    target: ChartId
    type: str = CHART_LINK_FINISH_TO_START

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChartLink":
        return cls(
            id=_int(data.get("id")),
            source=_int(data.get("source")),
            target=_int(data.get("target")),
            type=str(data.get("type", CHART_LINK_FINISH_TO_START)),
        )
