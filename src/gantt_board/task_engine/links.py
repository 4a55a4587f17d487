"""Adjacency index over task links, keyed by label class.

The board stores every relation as a labelled row and both directions of a
relation can be spelled either way (``blocks`` / ``is blocked by``,
``is a parent of`` / ``is a child of``).  :class:`LinkIndex` normalises
those rows once into two edge sets:

* dependency edges ``source -> target`` ("source blocks target")
* hierarchy edges ``parent -> child``

and keeps them current through :meth:`LinkIndex.add` / :meth:`LinkIndex.remove`
instead of re-scanning the link table on every lookup.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Iterable, Optional

from ..constants import (
    LINK_BLOCKS,
    LINK_IS_BLOCKED_BY,
    LINK_IS_CHILD_OF,
    LINK_IS_PARENT_OF,
)
from .model import Link

logger = logging.getLogger(__name__)


def dependency_edge(link: Link) -> Optional[tuple[int, int]]:
    """Return ``(source, target)`` for a dependency row, else ``None``."""
    if link.label == LINK_BLOCKS:
        return link.task_id, link.opposite_task_id
    if link.label == LINK_IS_BLOCKED_BY:
        return link.opposite_task_id, link.task_id
    return None


def hierarchy_edge(link: Link) -> Optional[tuple[int, int]]:
    """Return ``(parent, child)`` for a hierarchy row, else ``None``."""
    if link.label == LINK_IS_PARENT_OF:
        return link.task_id, link.opposite_task_id
    if link.label == LINK_IS_CHILD_OF:
        return link.opposite_task_id, link.task_id
    return None


class LinkIndex:
    """Dependency and hierarchy adjacency built from link rows."""

    def __init__(self, links: Iterable[Link] = ()) -> None:
        self._links: dict[int, Link] = {}
        self._succ: dict[int, dict[int, set[int]]] = defaultdict(dict)
        self._pred: dict[int, dict[int, set[int]]] = defaultdict(dict)
        # child -> {parent: link ids}; resolved to one parent by _parent_of
        self._parents: dict[int, dict[int, set[int]]] = defaultdict(dict)
        self._children: dict[int, dict[int, set[int]]] = defaultdict(dict)
        for link in sorted(links, key=lambda lk: lk.id):
            self.add(link)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def add(self, link: Link) -> None:
        if link.id in self._links:
            self.remove(link.id)
        self._links[link.id] = link
        dep = dependency_edge(link)
        if dep is not None:
            src, dst = dep
            self._succ[src].setdefault(dst, set()).add(link.id)
            self._pred[dst].setdefault(src, set()).add(link.id)
            return
        tree = hierarchy_edge(link)
        if tree is not None:
            parent, child = tree
            self._parents[child].setdefault(parent, set()).add(link.id)
            self._children[parent].setdefault(child, set()).add(link.id)
            if len(self._parents[child]) > 1:
                logger.warning(
                    "Task %s has conflicting parents %s", child, sorted(self._parents[child])
                )

    def remove(self, link_id: int) -> Optional[Link]:
        link = self._links.pop(link_id, None)
        if link is None:
            return None
        dep = dependency_edge(link)
        if dep is not None:
            _discard(self._succ, dep[0], dep[1], link_id)
            _discard(self._pred, dep[1], dep[0], link_id)
            return link
        tree = hierarchy_edge(link)
        if tree is not None:
            _discard(self._parents, tree[1], tree[0], link_id)
            _discard(self._children, tree[0], tree[1], link_id)
        return link

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def parent(self, task_id: int) -> int:
        """Derived parent id of *task_id*; ``0`` means top level.

        When links disagree, ``is a child of`` rows win over
        ``is a parent of`` rows, then the lowest link id wins.
        """
        candidates = self._parents.get(task_id)
        if not candidates:
            return 0

        def rank(parent_id: int) -> tuple[int, int]:
            ids = candidates[parent_id]
            child_side = any(self._links[i].label == LINK_IS_CHILD_OF for i in ids)
            return (0 if child_side else 1, min(ids))

        return min(candidates, key=rank)

    def children(self, task_id: int) -> list[int]:
        return sorted(c for c in self._children.get(task_id, {}) if self.parent(c) == task_id)

    def has_conflicting_parents(self, task_id: int) -> bool:
        return len(self._parents.get(task_id, {})) > 1

    def ancestors(self, task_id: int) -> list[int]:
        out: list[int] = []
        seen = {task_id}
        current = self.parent(task_id)
        while current and current not in seen:
            out.append(current)
            seen.add(current)
            current = self.parent(current)
        return out

    def hierarchy_link_ids(self, parent_id: int, child_id: int) -> list[int]:
        return sorted(self._children.get(parent_id, {}).get(child_id, set()))

    def same_level(self, a: int, b: int) -> bool:
        """True when both tasks are top level or siblings under one parent."""
        pa, pb = self.parent(a), self.parent(b)
        return (pa == 0 and pb == 0) or (pa != 0 and pa == pb)

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def successors(self, task_id: int) -> list[int]:
        return sorted(self._succ.get(task_id, {}))

    def predecessors(self, task_id: int) -> list[int]:
        return sorted(self._pred.get(task_id, {}))

    def has_dependency(self, source: int, target: int) -> bool:
        return target in self._succ.get(source, {})

    def reachable(self, task_id: int) -> list[int]:
        """Every task reachable from *task_id* over dependency edges, BFS order."""
        visited: set[int] = {task_id}
        order: list[int] = []
        queue: deque[int] = deque([task_id])
        while queue:
            current = queue.popleft()
            for nxt in self.successors(current):
                if nxt in visited:
                    continue
                visited.add(nxt)
                order.append(nxt)
                queue.append(nxt)
        return order

    def dependency_links(self) -> list[tuple[int, int, int]]:
        """``(link_id, source, target)`` for every dependency row, by link id."""
        out: list[tuple[int, int, int]] = []
        for link_id in sorted(self._links):
            dep = dependency_edge(self._links[link_id])
            if dep is not None:
                out.append((link_id, dep[0], dep[1]))
        return out

    def __len__(self) -> int:
        return len(self._links)


def _discard(table: dict[int, dict[int, set[int]]], key: int, other: int, link_id: int) -> None:
    bucket = table.get(key)
    if not bucket or other not in bucket:
        return
    bucket[other].discard(link_id)
    if not bucket[other]:
        del bucket[other]
    if not bucket:
        del table[key]
