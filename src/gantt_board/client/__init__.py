"""HTTP client side of the Gantt board: chart session and save queue."""

from .save_queue import SaveQueue
from .session import ChartSession, OperationContext, SessionEvent

__all__ = ["ChartSession", "OperationContext", "SaveQueue", "SessionEvent"]
