"""Result dependency DAG with deterministic topological ordering.

The graph enforces:
- Every dependency names an existing result.
- The dependency relation is acyclic; a cycle aborts construction and is
  reported with its full path.
- Every order produced places a dependency before its dependents, and
  independent results are ordered by name.
"""

from __future__ import annotations

import heapq
from collections import deque
from collections.abc import Iterable, Mapping

from resultforge.core.errors import CycleError, UnknownResultError
from resultforge.core.string_set import StringSet
from resultforge.models.project import Project

# DFS colouring
_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


class DependencyGraph:
    """Directed acyclic graph of result dependencies.

    Parameters
    ----------
    depends:
        Mapping of result name to the names it depends on.

    Examples
    --------
    >>> g = DependencyGraph({"A": [], "B": ["A"], "C": ["A", "B"]})
    >>> g.topological_order(["C"])
    ['A', 'B', 'C']
    """

    def __init__(self, depends: Mapping[str, Iterable[str]]) -> None:
        # Forward edges: result -> its dependencies, sorted
        self._depends: dict[str, list[str]] = {
            name: StringSet(deps).to_list() for name, deps in depends.items()
        }
        # Reverse edges: result -> results that depend on it
        self._dependents: dict[str, list[str]] = {name: [] for name in self._depends}
        for name in sorted(self._depends):
            for dep in self._depends[name]:
                if dep not in self._depends:
                    raise UnknownResultError(dep, context=f"dependency of {name}")
                self._dependents[dep].append(name)

        self._validate_no_cycles()

    @classmethod
    def from_project(cls, project: Project) -> DependencyGraph:
        return cls({name: res.all_depends() for name, res in project.results.items()})

    def _validate_no_cycles(self) -> None:
        """Depth-first search with three colours; report the first cycle found."""
        colour = {name: _UNVISITED for name in self._depends}
        path: list[str] = []

        for root in sorted(self._depends):
            if colour[root] != _UNVISITED:
                continue
            # Iterative DFS: stack of (node, iterator over its deps)
            stack = [(root, iter(self._depends[root]))]
            colour[root] = _IN_PROGRESS
            path.append(root)
            while stack:
                node, deps = stack[-1]
                advanced = False
                for dep in deps:
                    if colour[dep] == _IN_PROGRESS:
                        start = path.index(dep)
                        raise CycleError(path[start:] + [dep])
                    if colour[dep] == _UNVISITED:
                        colour[dep] = _IN_PROGRESS
                        path.append(dep)
                        stack.append((dep, iter(self._depends[dep])))
                        advanced = True
                        break
                if not advanced:
                    colour[node] = _DONE
                    path.pop()
                    stack.pop()

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def __contains__(self, name: object) -> bool:
        return name in self._depends

    @property
    def names(self) -> list[str]:
        return sorted(self._depends)

    def _require(self, names: Iterable[str]) -> list[str]:
        names = list(names)
        for name in names:
            if name not in self._depends:
                raise UnknownResultError(name)
        return names

    def direct_dependencies(self, name: str) -> list[str]:
        """Direct dependencies of *name*, sorted."""
        self._require([name])
        return list(self._depends[name])

    def transitive_closure(self, seeds: Iterable[str]) -> list[str]:
        """*seeds* plus everything reachable from them, sorted by name."""
        seeds = self._require(seeds)
        seen: set[str] = set()
        queue = deque(seeds)
        while queue:
            node = queue.popleft()
            if node in seen:
                continue
            seen.add(node)
            queue.extend(self._depends[node])
        return sorted(seen)

    def topological_order(self, seeds: Iterable[str] | None = None) -> list[str]:
        """Build order for the closure of *seeds* (all results when ``None``).

        Kahn's algorithm over the closure; among ready results the
        lexicographically smallest goes first.
        """
        nodes = self.names if seeds is None else self.transitive_closure(seeds)
        members = set(nodes)
        in_degree = {n: len(self._depends[n]) for n in nodes}
        ready = [n for n in nodes if in_degree[n] == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for dependent in self._dependents[node]:
                if dependent not in members:
                    continue
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, dependent)
        return order

    def dependency_list(self, name: str, recursive: bool = False) -> list[str]:
        """Dependencies of *name* in build order, excluding *name* itself.

        Non-recursive mode lists only the direct dependencies, sorted.
        """
        if not recursive:
            return self.direct_dependencies(name)
        return [n for n in self.topological_order([name]) if n != name]

    def get_dependents(self, name: str) -> list[str]:
        """All transitive dependents of *name* (BFS order)."""
        self._require([name])
        result: list[str] = []
        queue = deque(self._dependents[name])
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._dependents[node])
        return result
