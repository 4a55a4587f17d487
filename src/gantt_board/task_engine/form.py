"""Edit-form state for a single chart task.

The form has one piece of state, the on-screen type (task, milestone or
sprint), and it changes only through :meth:`EditForm.select_type`.  The
type decides which sections are visible and which values are forced when
the form is applied back onto a task.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

from ..constants import SECONDS_PER_DAY
from .model import ChartTask, TaskType


class Section(str, Enum):
    TYPE = "type"
    DESCRIPTION = "description"
    CHILD_TASKS = "tasks"
    CATEGORY = "category"
    ASSIGNEE = "assignee"
    SPRINT = "sprint"
    PRIORITY = "priority"
    DURATION = "duration"


_COMMON = (Section.TYPE, Section.DESCRIPTION, Section.CATEGORY, Section.PRIORITY)

_LAYOUTS: dict[TaskType, frozenset[Section]] = {
    TaskType.TASK: frozenset(_COMMON + (Section.ASSIGNEE, Section.SPRINT, Section.DURATION)),
    TaskType.MILESTONE: frozenset(_COMMON + (Section.ASSIGNEE, Section.SPRINT)),
    TaskType.SPRINT: frozenset(_COMMON + (Section.CHILD_TASKS, Section.DURATION)),
}


def layout_for(task_type: TaskType) -> frozenset[Section]:
    return _LAYOUTS[TaskType.coerce(task_type)]


def initial_type(task: ChartTask) -> TaskType:
    if task.task_type != TaskType.TASK:
        return task.task_type
    if task.is_milestone:
        return TaskType.MILESTONE
    if task.kind == "project":
        return TaskType.SPRINT
    return TaskType.TASK


@dataclass
class EditForm:
    """Form bound to one task; ``task`` itself is never modified."""

    task: ChartTask
    task_type: TaskType = TaskType.TASK
    is_new: bool = False

    @classmethod
    def open(cls, task: ChartTask, is_new: bool = False) -> "EditForm":
        # a fresh row always opens as a plain task
        return cls(task=task, task_type=TaskType.TASK if is_new else initial_type(task), is_new=is_new)

    def select_type(self, task_type: Any) -> TaskType:
        self.task_type = TaskType.coerce(task_type)
        return self.task_type

    @property
    def sections(self) -> frozenset[Section]:
        return layout_for(self.task_type)

    def is_visible(self, section: Section) -> bool:
        return section in self.sections

    def apply(self, values: Optional[dict[str, Any]] = None) -> ChartTask:
        """Return a copy of the task with *values* and the type's forced fields.

        Values for hidden sections are dropped.
        """
        values = dict(values or {})
        if not self.is_visible(Section.ASSIGNEE):
            values.pop("owner_id", None)
        if not self.is_visible(Section.SPRINT):
            values.pop("sprint_id", None)
        if not self.is_visible(Section.CHILD_TASKS):
            values.pop("child_tasks", None)
        if not self.is_visible(Section.DURATION):
            values.pop("duration", None)

        updated = replace(self.task, **values) if values else replace(self.task)
        updated.child_tasks = list(updated.child_tasks)
        updated.task_type = self.task_type

        if self.task_type == TaskType.MILESTONE:
            updated.is_milestone = True
            updated.set_span(updated.start, updated.start)
        else:
            updated.is_milestone = False
            if "duration" in values or updated.end <= updated.start:
                days = max(1, int(values.get("duration") or 1))
                updated.set_span(updated.start, updated.start + days * SECONDS_PER_DAY)
        if self.task_type == TaskType.SPRINT:
            updated.owner_id = 0
            updated.sprint_id = 0
            updated.kind = "project"
        else:
            updated.child_tasks = []
            updated.kind = "task"
        return updated
