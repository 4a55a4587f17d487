"""Debounced per-task save queue."""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from ..constants import SAVE_DEBOUNCE_SECONDS
from ..task_engine.model import ChartId


class SaveQueue:
    """Collect task payloads and release them after a quiet period.

    Each task keeps only its latest payload.  One shared debounce window
    restarts on every :meth:`enqueue`, so a burst of edits (a drag plus the
    successor moves it causes) is flushed together once edits stop for
    ``delay`` seconds.  Pending payloads live only in memory.
    """

    def __init__(self, delay: float = SAVE_DEBOUNCE_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self.delay = delay
        self._clock = clock
        self._pending: dict[ChartId, dict[str, Any]] = {}
        self._deadline: Optional[float] = None

    def enqueue(self, task_id: ChartId, payload: dict[str, Any]) -> None:
        self._pending[task_id] = payload
        self._deadline = self._clock() + self.delay

    def discard(self, task_id: ChartId) -> None:
        self._pending.pop(task_id, None)
        if not self._pending:
            self._deadline = None

    def is_due(self) -> bool:
        return bool(self._pending) and self._deadline is not None and self._clock() >= self._deadline

    def drain(self, force: bool = False) -> dict[ChartId, dict[str, Any]]:
        """Return and clear the pending payloads once the window has passed.

        With ``force`` the window is ignored.  Returns ``{}`` when nothing
        is due.
        """
        if not self._pending or not (force or self.is_due()):
            return {}
        due, self._pending = self._pending, {}
        self._deadline = None
        return due

    @property
    def pending(self) -> list[ChartId]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)
