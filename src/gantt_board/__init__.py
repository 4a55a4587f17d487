"""Provide the public `gantt_board` package exports."""

from __future__ import annotations

__version__ = "0.1.0"

from .task_engine.engine import GanttEngine, ProjectMismatch  # noqa: E402
from .task_engine.validation import LinkRejected  # noqa: E402

__all__ = ["GanttEngine", "LinkRejected", "ProjectMismatch", "__version__"]
