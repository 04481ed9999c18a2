"""
Cycle detection over the package dependency graph.

Two passes, both with explicit stacks (no recursion, so deep graphs do not
hit the interpreter's recursion limit):

1. A depth-first traversal marks a node "on stack" while its subtree is
   being explored; an edge to an on-stack node is a back-edge, which proves
   the graph is not a DAG. Acyclic graphs stop here.
2. Every elementary cycle is then enumerated inside each strongly connected
   component (Johnson's algorithm). A back-edge walk alone misses cycles
   that pass through a node whose subtree was already finished.
"""

import logging
from collections import defaultdict
from typing import Callable, Iterable, Iterator

from monorch.graph import DependencyGraph

logger = logging.getLogger(__name__)

Cycle = tuple[str, ...]
Successors = Callable[[str], list[str]]

_ON_STACK = 1
_DONE = 2


def _has_back_edge(graph: DependencyGraph) -> bool:
    state: dict[str, int] = {}

    for start in graph.nodes:
        if start in state:
            continue

        stack: list[tuple[str, Iterator[str]]] = [(start, iter(sorted(graph.dependencies[start])))]
        state[start] = _ON_STACK

        while stack:
            node, children = stack[-1]
            child = next(children, None)

            if child is None:
                stack.pop()
                state[node] = _DONE
                continue

            mark = state.get(child)
            if mark is None:
                state[child] = _ON_STACK
                stack.append((child, iter(sorted(graph.dependencies[child]))))
            elif mark == _ON_STACK:
                return True

    return False


def _within(graph: DependencyGraph, scope: set[str]) -> Successors:
    """Successors restricted to scope, self-loops excluded, in name order."""
    def successors(name: str) -> list[str]:
        return sorted(d for d in graph.dependencies[name] if d in scope and d != name)
    return successors


def _strongly_connected(nodes: Iterable[str], successors: Successors) -> list[set[str]]:
    """Tarjan's strongly connected components, iteratively."""
    index: dict[str, int] = {}
    low: dict[str, int] = {}
    members: list[str] = []
    on_members: set[str] = set()
    components: list[set[str]] = []

    for root in sorted(nodes):
        if root in index:
            continue

        index[root] = low[root] = len(index)
        members.append(root)
        on_members.add(root)
        work: list[tuple[str, Iterator[str]]] = [(root, iter(successors(root)))]

        while work:
            node, children = work[-1]
            child = next(children, None)

            if child is not None:
                if child not in index:
                    index[child] = low[child] = len(index)
                    members.append(child)
                    on_members.add(child)
                    work.append((child, iter(successors(child))))
                elif child in on_members:
                    low[node] = min(low[node], index[child])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])

            if low[node] == index[node]:
                component = set()
                while True:
                    member = members.pop()
                    on_members.discard(member)
                    component.add(member)
                    if member == node:
                        break
                components.append(component)

    return components


def _unblock(node: str, blocked: set[str], blocked_by: dict[str, set[str]]) -> None:
    pending = {node}
    while pending:
        name = pending.pop()
        if name in blocked:
            blocked.remove(name)
            pending.update(blocked_by[name])
            blocked_by[name].clear()


def _cycles_through(start: str, successors: Successors) -> Iterator[Cycle]:
    """Elementary cycles through start, within one strongly connected component."""
    path = [start]
    blocked = {start}
    closed: set[str] = set()
    blocked_by: dict[str, set[str]] = defaultdict(set)
    # Children are popped from the end, so reverse to visit them in name order
    stack: list[tuple[str, list[str]]] = [(start, successors(start)[::-1])]

    while stack:
        node, children = stack[-1]
        if children:
            child = children.pop()
            if child == start:
                yield tuple(path)
                closed.update(path)
            elif child not in blocked:
                path.append(child)
                closed.discard(child)
                blocked.add(child)
                stack.append((child, successors(child)[::-1]))
                continue

        if not children:
            if node in closed:
                _unblock(node, blocked, blocked_by)
            else:
                for child in successors(node):
                    blocked_by[child].add(node)
            stack.pop()
            path.pop()


def _elementary_cycles(graph: DependencyGraph) -> Iterator[Cycle]:
    for name in graph.nodes:
        if name in graph.dependencies[name]:
            yield (name,)

    everything = set(graph.nodes)
    pending = [c for c in _strongly_connected(everything, _within(graph, everything)) if len(c) > 1]
    while pending:
        component = pending.pop()
        # Starting from the smallest name yields cycles already rotated to it
        start = min(component)
        yield from _cycles_through(start, _within(graph, component))

        rest = component - {start}
        pending.extend(c for c in _strongly_connected(rest, _within(graph, rest)) if len(c) > 1)


def detect_cycles(graph: DependencyGraph) -> list[Cycle]:
    """
    Find every elementary cycle of a dependency graph.

    Cycles in disconnected components and cycles sharing nodes are all
    reported, not just the first. Each cycle lists names in dependency order:
    cycle[i] depends on cycle[i + 1], and the last depends on the first. Each
    starts at its smallest name and none repeats a node.

    Args:
        graph: The dependency graph

    Returns:
        Distinct cycles, sorted (empty for a DAG)
    """
    if not _has_back_edge(graph):
        return []

    cycles = sorted(set(_elementary_cycles(graph)))
    logger.warning(
        f"Detected {len(cycles)} dependency cycle(s)",
        extra={"event": "cycle_detected", "metadata": {"cycles": [list(c) for c in cycles]}},
    )
    return cycles


def is_acyclic(graph: DependencyGraph) -> bool:
    return not _has_back_edge(graph)
