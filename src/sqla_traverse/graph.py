from __future__ import annotations

import enum
from collections.abc import Callable, Iterator
from typing import Generic, TypeVar

from .errors import DependencyCycleError


T = TypeVar("T")


class _Mark(enum.Enum):
    NEW = 0
    ACTIVE = 1
    DONE = 2


class DependencyGraph(Generic[T]):
    """Arena of nodes with "must be written after" edges.

    Nodes are stored in insertion order and addressed by index; identity of
    the stored objects is ``id()``-based, so unsaved rows (which have no key
    yet) can be nodes.  ``require(a, b)`` records that node *a* can only be
    written once node *b* is; ``dependencies(a)`` lists those edges and
    ``sort()`` turns them into a write order.
    """

    __slots__ = ("_edges", "_index", "_nodes")

    def __init__(self) -> None:
        self._nodes: list[T] = []
        self._index: dict[int, int] = {}
        self._edges: list[list[int]] = []

    def add(self, node: T) -> tuple[int, bool]:
        """Add *node* unless present; return its index and whether it was new."""
        if (index := self._index.get(id(node))) is not None:
            return index, False

        index = len(self._nodes)
        self._nodes.append(node)
        self._index[id(node)] = index
        self._edges.append([])
        return index, True

    def index(self, node: T) -> int:
        return self._index[id(node)]

    def __contains__(self, node: object) -> bool:
        return id(node) in self._index

    def __getitem__(self, index: int) -> T:
        return self._nodes[index]

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[T]:
        return iter(self._nodes)

    def require(self, node: int, dependency: int) -> None:
        """Record that *node* must be ordered after *dependency*; repeats are ignored."""
        if dependency not in self._edges[node]:
            self._edges[node].append(dependency)

    def dependencies(self, node: int) -> tuple[int, ...]:
        """Indexes *node* requires, in the order they were first required."""
        return tuple(self._edges[node])

    def sort(self, label: Callable[[T], str] = repr) -> list[int]:
        """Order node indexes so every node follows its dependencies.

        Depth-first, starting from nodes in insertion order and following
        dependencies in the order they were required, so unrelated nodes keep
        their relative order.

        Raises:
            DependencyCycleError: With the labels of the nodes on the cycle.
        """
        marks = [_Mark.NEW] * len(self._nodes)
        order: list[int] = []

        for start in range(len(self._nodes)):
            if marks[start] is not _Mark.NEW:
                continue

            marks[start] = _Mark.ACTIVE
            path = [start]
            stack = [iter(self._edges[start])]
            while stack:
                dependency = next(stack[-1], None)
                if dependency is None:
                    stack.pop()
                    done = path.pop()
                    marks[done] = _Mark.DONE
                    order.append(done)
                    continue

                if marks[dependency] is _Mark.ACTIVE:
                    cycle = path[path.index(dependency) :] + [dependency]
                    raise DependencyCycleError(tuple(label(self._nodes[i]) for i in cycle))

                if marks[dependency] is _Mark.NEW:
                    marks[dependency] = _Mark.ACTIVE
                    path.append(dependency)
                    stack.append(iter(self._edges[dependency]))

        return order
