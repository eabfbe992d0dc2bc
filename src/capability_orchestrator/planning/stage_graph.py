"""Insertion-ordered dependency graph shared by workflows and sequential handler chains."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence, Set
from heapq import heapify, heappop, heappush


class CycleError(ValueError):
    """Raised when a cycle is detected in a stage or handler graph."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "graph contains at least one cycle"
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


class StageGraph:
    """Directed graph whose ties are always broken by node insertion order.

    Edges point from a prerequisite to the node that waits on it.
    """

    __slots__ = ("_order", "_children", "_parents")

    def __init__(
        self,
        nodes: Iterable[str] | None = None,
        edges: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        self._order: dict[str, int] = {}
        self._children: dict[str, set[str]] = {}
        self._parents: dict[str, set[str]] = {}

        for node_id in nodes or ():
            self.add_node(node_id)
        for parent, child in edges or ():
            self.add_edge(parent, child)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._order

    def __len__(self) -> int:
        return len(self._order)

    @property
    def nodes(self) -> tuple[str, ...]:
        """Node IDs in insertion order."""
        return tuple(self._order)

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        return tuple(
            (parent, child)
            for parent in self._order
            for child in self._sorted(self._children[parent])
        )

    def add_node(self, node_id: str) -> None:
        if not isinstance(node_id, str) or not node_id.strip():
            raise ValueError("node_id must be a non-empty string")
        if node_id in self._order:
            return
        self._order[node_id] = len(self._order)
        self._children[node_id] = set()
        self._parents[node_id] = set()

    def add_edge(self, parent: str, child: str) -> None:
        """Add ``parent -> child``: ``child`` may only run after ``parent``."""
        if parent == child:
            raise CycleError([(parent, parent)])
        self.add_node(parent)
        self.add_node(child)
        self._children[parent].add(child)
        self._parents[child].add(parent)

    def roots(self) -> tuple[str, ...]:
        return tuple(node for node in self._order if not self._parents[node])

    def sinks(self) -> tuple[str, ...]:
        return tuple(node for node in self._order if not self._children[node])

    def get_dependencies(self, node_id: str) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        return self._sorted(self._parents[node_id])

    def get_dependents(self, node_id: str) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        return self._sorted(self._children[node_id])

    def reachable_from(self, start: Iterable[str]) -> tuple[str, ...]:
        """All nodes reachable from ``start`` (inclusive) in insertion order."""
        seen: set[str] = set()
        frontier = list(start)
        while frontier:
            node = frontier.pop()
            if node in seen:
                continue
            self._assert_node_exists(node)
            seen.add(node)
            frontier.extend(self._children[node])
        return self._sorted(seen)

    def get_runnable(self, completed: Set[str]) -> tuple[str, ...]:
        """Nodes not yet completed whose dependencies are all in ``completed``."""
        return tuple(
            node
            for node in self._order
            if node not in completed and self._parents[node] <= completed
        )

    def topological_sort(self) -> tuple[str, ...]:
        """Kahn's algorithm; ready nodes are released lowest insertion index first."""
        indegree = {node: len(self._parents[node]) for node in self._order}
        ready = [self._order[node] for node, degree in indegree.items() if degree == 0]
        heapify(ready)
        by_index = list(self._order)

        order: list[str] = []
        while ready:
            node = by_index[heappop(ready)]
            order.append(node)
            for child in self._children[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heappush(ready, self._order[child])

        if len(order) != len(self._order):
            raise CycleError(self.detect_cycles())
        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Return cycles as closed paths, e.g. ``("a", "b", "a")``."""
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in self._order:
            if state.get(start, 0) != 0:
                continue
            state[start] = 1
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[str, Iterator[str]]] = [
                (start, iter(self._sorted(self._children[start])))
            ]

            while frames:
                node, child_iter = frames[-1]
                child = next(child_iter, None)
                if child is None:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                child_state = state.get(child, 0)
                if child_state == 0:
                    state[child] = 1
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, iter(self._sorted(self._children[child]))))
                elif child_state == 1:
                    cycle = tuple(stack[stack_index[child] :] + [child])
                    cycles[self._canonicalize_cycle(cycle)] = None

        return tuple(cycles)

    def _sorted(self, nodes: Iterable[str]) -> tuple[str, ...]:
        return tuple(sorted(nodes, key=self._order.__getitem__))

    def _canonicalize_cycle(self, cycle: tuple[str, ...]) -> tuple[str, ...]:
        body = cycle[:-1]
        pivot = min(range(len(body)), key=lambda index: self._order[body[index]])
        rotated = body[pivot:] + body[:pivot]
        return (*rotated, rotated[0])

    def _assert_node_exists(self, node_id: str) -> None:
        if node_id not in self._order:
            raise KeyError(f"unknown node: {node_id!r}")


__all__ = ["CycleError", "StageGraph"]
