"""Two-pass successor shifting.

When a task's dates move by ``delta`` seconds, every task reachable from it
over ``blocks`` edges moves by the same ``delta``.  The first pass walks the
graph and snapshots each successor's original span; the second pass applies
the delta to those snapshots, so diamonds and long chains never compound a
shift that was already applied.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from .links import LinkIndex
from .model import ChartId

logger = logging.getLogger(__name__)

Span = tuple[int, int]


def find_successors(index: LinkIndex, task_id: int) -> list[int]:
    """Successors of *task_id* over dependency edges, nearest first."""
    return index.reachable(task_id)


def plan_shift(baseline: Mapping[ChartId, Span], ids: Iterable[ChartId], delta: int) -> dict[ChartId, Span]:
    """New ``(start, end)`` for each id in *ids*, offset by *delta* seconds.

    Ids missing from *baseline* are skipped.  The plan depends only on the
    baseline, so two consecutive plans compose additively.
    """
    plan: dict[ChartId, Span] = {}
    for task_id in ids:
        span = baseline.get(task_id)
        if span is None:
            continue
        plan[task_id] = (span[0] + delta, span[1] + delta)
    return plan


def plan_successor_shift(
    index: LinkIndex,
    spans: Mapping[ChartId, Span],
    task_id: int,
    delta: int,
) -> dict[ChartId, Span]:
    """Plan the move of every successor of *task_id* by *delta* seconds.

    *spans* holds the current ``(start, end)`` of each known task; the
    moved task itself is not part of the plan.  Successors without a span
    are skipped.
    """
    if not delta:
        return {}
    successors = [sid for sid in find_successors(index, task_id) if sid in spans]
    # pass 1: snapshot before anything moves
    baseline = {sid: spans[sid] for sid in successors}
    # pass 2
    plan = plan_shift(baseline, successors, delta)
    if plan:
        logger.debug("Planned shift of %d successor(s) of task %s by %ss", len(plan), task_id, delta)
    return plan
