"""Role inheritance graph.

Edges point from a child role to a parent role: a user holding the child
also holds every permission of the parent. The edge set is kept acyclic;
an edge that would close a cycle (self-loops included) is rejected and the
graph is left exactly as it was.

Provides:
- ``InheritanceGraph.add_edge()`` / ``remove_edge()`` — edge maintenance.
- ``get_inherited_roles()`` — transitive closure of parents.
- ``get_depth()`` — longest path to a parentless role.
- ``find_common_ancestor()`` — shared ancestor of two roles.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterable

from pydantic import BaseModel

from ..exceptions import ConflictError, ValidationError
from ..locking import LockRank, RWLock

logger = logging.getLogger(__name__)


class InheritanceEdge(BaseModel):
    child: str
    parent: str


class InheritanceGraph:
    """Directed acyclic graph of child → parent role edges."""

    def __init__(self) -> None:
        self.lock = RWLock("graph", LockRank.GRAPH)
        self._parents: dict[str, list[str]] = {}

    def _reachable(self, start: str, target: str) -> bool:
        """True if ``target`` is reachable from ``start`` following parent edges."""
        seen = {start}
        stack = [start]
        while stack:
            node = stack.pop()
            if node == target:
                return True
            for parent in self._parents.get(node, ()):
                if parent not in seen:
                    seen.add(parent)
                    stack.append(parent)
        return False

    def add_edge(self, child: str, parent: str) -> bool:
        """Make ``child`` inherit from ``parent``.

        Re-adding an existing edge is a no-op and returns False.

        Raises:
            ValidationError: empty role name.
            ConflictError: the edge would create a cycle.
        """
        if not child or not parent:
            raise ValidationError("Both child and parent roles are required")
        with self.lock.write():
            if parent in self._parents.get(child, ()):
                return False
            if self._reachable(parent, child):
                raise ConflictError(
                    f"circular inheritance: {child} -> {parent}",
                    child=child,
                    parent=parent,
                )
            self._parents.setdefault(child, []).append(parent)
        logger.debug("Role %s now inherits from %s", child, parent)
        return True

    def add_edges(self, child: str, parents: Iterable[str]) -> list[str]:
        """Add several edges for ``child`` all-or-nothing.

        Every candidate edge is checked against the graph as it would look
        with the earlier ones applied; on the first cycle nothing is written.

        Returns:
            Parents for which an edge was newly added.
        """
        wanted = list(dict.fromkeys(parents))
        if not child or not all(wanted):
            raise ValidationError("Both child and parent roles are required")
        with self.lock.write():
            current = list(self._parents.get(child, ()))
            added: list[str] = []
            try:
                for parent in wanted:
                    if parent in self._parents.get(child, ()):
                        continue
                    if self._reachable(parent, child):
                        raise ConflictError(
                            f"circular inheritance: {child} -> {parent}",
                            child=child,
                            parent=parent,
                        )
                    self._parents.setdefault(child, []).append(parent)
                    added.append(parent)
            except ConflictError:
                if current:
                    self._parents[child] = current
                else:
                    self._parents.pop(child, None)
                raise
        return added

    def remove_edge(self, child: str, parent: str) -> bool:
        """Remove an edge. Removing an absent edge returns False (not an error)."""
        with self.lock.write():
            parents = self._parents.get(child)
            if not parents or parent not in parents:
                return False
            parents.remove(parent)
            if not parents:
                del self._parents[child]
        return True

    def remove_role(self, role: str) -> None:
        """Drop every edge touching ``role``."""
        with self.lock.write():
            self._parents.pop(role, None)
            for child in list(self._parents):
                parents = self._parents[child]
                if role in parents:
                    parents.remove(role)
                    if not parents:
                        del self._parents[child]

    def rename_role(self, old: str, new: str) -> None:
        with self.lock.write():
            if old in self._parents:
                self._parents[new] = self._parents.pop(old)
            for parents in self._parents.values():
                for i, parent in enumerate(parents):
                    if parent == old:
                        parents[i] = new

    def get_direct_parents(self, role: str) -> list[str]:
        with self.lock.read():
            return list(self._parents.get(role, ()))

    def get_children(self, role: str) -> list[str]:
        with self.lock.read():
            return sorted(child for child, parents in self._parents.items() if role in parents)

    def get_inherited_roles(self, role: str) -> set[str]:
        """Every ancestor of ``role``, excluding ``role`` itself."""
        with self.lock.read():
            ancestors: set[str] = set()
            stack = list(self._parents.get(role, ()))
            while stack:
                node = stack.pop()
                if node in ancestors or node == role:
                    continue
                ancestors.add(node)
                stack.extend(self._parents.get(node, ()))
            return ancestors

    def get_depth(self, role: str) -> int:
        """Length of the longest parent chain from ``role``. Roots and unknown roles are 0."""
        with self.lock.read():
            memo: dict[str, int] = {}
            stack = [role]
            while stack:
                node = stack[-1]
                if node in memo:
                    stack.pop()
                    continue
                parents = self._parents.get(node, ())
                pending = [p for p in parents if p not in memo]
                if pending:
                    stack.extend(pending)
                    continue
                stack.pop()
                memo[node] = 1 + max(memo[p] for p in parents) if parents else 0
            return memo[role]

    def find_common_ancestor(self, a: str, b: str) -> str | None:
        """An ancestor shared by ``a`` and ``b``, or None.

        Each role counts as its own ancestor here, so if ``b`` inherits from
        ``a`` the answer is ``a``. Candidates are visited breadth-first from
        ``b`` and the first one found wins; which of several equally near
        candidates is returned is undefined.
        """
        with self.lock.read():
            ancestors_a = self.get_inherited_roles(a) | {a}
            seen = {b}
            queue = deque([b])
            while queue:
                node = queue.popleft()
                if node in ancestors_a:
                    return node
                for parent in self._parents.get(node, ()):
                    if parent not in seen:
                        seen.add(parent)
                        queue.append(parent)
            return None

    def hierarchy(self) -> dict[str, list[str]]:
        """Copy of the adjacency map, ``child -> [parents]``."""
        with self.lock.read():
            return {child: list(parents) for child, parents in self._parents.items()}

    # ── snapshot support ────────────────────────────────

    def dump(self) -> list[InheritanceEdge]:
        with self.lock.read():
            return [
                InheritanceEdge(child=child, parent=parent)
                for child in sorted(self._parents)
                for parent in self._parents[child]
            ]

    def load(self, edges: Iterable[InheritanceEdge]) -> None:
        """Replace the graph. Cycles in ``edges`` are rejected before anything changes."""
        previous = self.hierarchy()
        with self.lock.write():
            self._parents = {}
            try:
                for edge in edges:
                    self.add_edge(edge.child, edge.parent)
            except ConflictError:
                self._parents = previous
                raise


__all__ = [
    "InheritanceEdge",
    "InheritanceGraph",
]
