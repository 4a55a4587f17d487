"""Link validation rules and rate-limited rejection notices."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Mapping, Optional

from ..constants import (
    DEPENDENCY_LABELS,
    HIERARCHY_LABELS,
    LINK_BLOCKS,
    LINK_IS_CHILD_OF,
    LINK_IS_PARENT_OF,
    MSG_CIRCULAR,
    MSG_SAME_LEVEL,
    MSG_SPRINT_LINK,
    NOTICE_DEDUP_SECONDS,
)
from .links import LinkIndex
from .model import TaskType

logger = logging.getLogger(__name__)


class RejectReason(str, Enum):
    SELF_LINK = "self_link"
    UNKNOWN_TASK = "unknown_task"
    SPRINT_LINK = "sprint_link"
    SAME_LEVEL = "same_level"
    CYCLE = "cycle"
    DUPLICATE = "duplicate"
    SECOND_PARENT = "second_parent"


class LinkRejected(ValueError):
    """A candidate link broke one of the linking rules."""

    def __init__(self, reason: RejectReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class NoticeThrottle:
    """Deliver user-facing notices, dropping repeats inside a short window.

    The same text delivered again within ``window`` seconds of the previous
    delivery is suppressed; a different text always goes through.
    """

    def __init__(
        self,
        sink: Optional[Callable[[str], None]] = None,
        window: float = NOTICE_DEDUP_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink or (lambda text: logger.warning("%s", text))
        self._window = window
        self._clock = clock
        self._last_text = ""
        self._last_at: Optional[float] = None

    def notify(self, text: str) -> bool:
        now = self._clock()
        if text == self._last_text and self._last_at is not None and now - self._last_at < self._window:
            return False
        self._last_text = text
        self._last_at = now
        self._sink(text)
        return True


def normalize_label(label: str) -> str:
    return (label or LINK_BLOCKS).strip().lower()


class LinkValidator:
    """Check candidate links against the board's linking rules.

    Parameters
    ----------
    index:
        Current link index for the project.
    task_types:
        Mapping of known task id to its task type.  Ids missing from the
        mapping are treated as unknown tasks.
    """

    def __init__(self, index: LinkIndex, task_types: Mapping[int, TaskType]) -> None:
        self.index = index
        self.task_types = task_types

    def check(self, source: int, target: int, label: str = LINK_BLOCKS) -> Optional[LinkRejected]:
        """Return the first rule *source -> target* breaks, or ``None``."""
        label = normalize_label(label)
        if source == target:
            return LinkRejected(RejectReason.SELF_LINK, "A task cannot be linked to itself")
        if source not in self.task_types or target not in self.task_types:
            return LinkRejected(RejectReason.UNKNOWN_TASK, "One or both tasks not found")
        if label in DEPENDENCY_LABELS:
            if label == LINK_BLOCKS:
                return self._check_dependency(source, target)
            return self._check_dependency(target, source)
        if label in HIERARCHY_LABELS:
            if label == LINK_IS_PARENT_OF:
                return self._check_hierarchy(source, target)
            return self._check_hierarchy(target, source)
        return None

    def validate(self, source: int, target: int, label: str = LINK_BLOCKS) -> None:
        rejection = self.check(source, target, label)
        if rejection is not None:
            raise rejection

    # ------------------------------------------------------------------

    def _check_dependency(self, source: int, target: int) -> Optional[LinkRejected]:
        if TaskType.SPRINT in (self.task_types[source], self.task_types[target]):
            return LinkRejected(RejectReason.SPRINT_LINK, MSG_SPRINT_LINK)
        if not self.index.same_level(source, target):
            return LinkRejected(RejectReason.SAME_LEVEL, MSG_SAME_LEVEL)
        if source in self.index.reachable(target):
            return LinkRejected(RejectReason.CYCLE, MSG_CIRCULAR)
        if self.index.has_dependency(source, target):
            return LinkRejected(RejectReason.DUPLICATE, "Dependency already exists")
        return None

    def _check_hierarchy(self, parent: int, child: int) -> Optional[LinkRejected]:
        current = self.index.parent(child)
        if current and current != parent:
            return LinkRejected(RejectReason.SECOND_PARENT, f"Task {child} already has parent {current}")
        if child in self.index.ancestors(parent):
            return LinkRejected(RejectReason.CYCLE, "A task cannot become a child of its own descendant")
        return None


def label_for_kind(kind: str) -> str:
    """Map the chart's link ``type`` parameter to a stored label."""
    return LINK_IS_CHILD_OF if str(kind) in {"child", "1"} else LINK_BLOCKS
