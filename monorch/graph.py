"""
Dependency graph - intra-workspace package dependencies.

An edge A -> B means "A depends on B". Only packages present in the
discovered set become nodes; dependencies on anything else are external and
dropped. The reverse mapping (dependents) is kept alongside for the
scheduler's readiness bookkeeping.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

from monorch.errors import ScanError
from monorch.schemas import PackageDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyGraph:
    """
    Adjacency of workspace packages.

    Attributes:
        dependencies: name -> names it depends on
        dependents: name -> names that depend on it
    """
    dependencies: Mapping[str, frozenset[str]] = field(default_factory=dict)
    dependents: Mapping[str, frozenset[str]] = field(default_factory=dict)

    def __post_init__(self):
        nodes = set(self.dependencies)
        for name, deps in self.dependencies.items():
            missing = deps - nodes
            if missing:
                raise ValueError(f"Edge from '{name}' to unknown node(s): {sorted(missing)}")
        if set(self.dependents) != nodes:
            raise ValueError("dependents must have exactly the same nodes as dependencies")

    @classmethod
    def from_edges(cls, dependencies: Mapping[str, Iterable[str]]) -> "DependencyGraph":
        """Build a graph from name -> dependency names (all names must be nodes)."""
        deps = {name: frozenset(targets) for name, targets in dependencies.items()}
        reverse: dict[str, set[str]] = {name: set() for name in deps}
        for name, targets in deps.items():
            for target in targets:
                if target in reverse:
                    reverse[target].add(name)
        return cls(
            dependencies=MappingProxyType(dict(sorted(deps.items()))),
            dependents=MappingProxyType({name: frozenset(reverse[name]) for name in sorted(reverse)}),
        )

    @property
    def nodes(self) -> tuple[str, ...]:
        """All package names, sorted."""
        return tuple(sorted(self.dependencies))

    def __contains__(self, name: object) -> bool:
        return name in self.dependencies

    def __len__(self) -> int:
        return len(self.dependencies)

    @property
    def edge_count(self) -> int:
        return sum(len(deps) for deps in self.dependencies.values())

    def transitive_dependents(self, name: str) -> set[str]:
        """Every package that depends on name, directly or indirectly."""
        return self._reach(name, self.dependents)

    def transitive_dependencies(self, name: str) -> set[str]:
        """Every package name depends on, directly or indirectly."""
        return self._reach(name, self.dependencies)

    def _reach(self, start: str, adjacency: Mapping[str, frozenset[str]]) -> set[str]:
        if start not in adjacency:
            raise KeyError(f"Unknown package: {start}")
        seen: set[str] = set()
        queue = deque(adjacency[start])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(adjacency[current])
        seen.discard(start)
        return seen

    def to_dict(self) -> dict[str, list[str]]:
        """Serialize adjacency to a JSON-friendly dictionary."""
        return {name: sorted(deps) for name, deps in self.dependencies.items()}


def build_graph(descriptors: Iterable[PackageDescriptor]) -> DependencyGraph:
    """
    Build the dependency graph for a set of descriptors.

    Deterministic: the same descriptor set yields an identical graph
    regardless of iteration order.

    Args:
        descriptors: Discovered packages (names must be unique)

    Returns:
        The DependencyGraph
    """
    by_name: dict[str, PackageDescriptor] = {}
    for d in descriptors:
        if d.name in by_name and by_name[d.name] != d:
            raise ScanError(
                f"Duplicate package name '{d.name}' at {by_name[d.name].location} and {d.location}",
                location=str(d.location),
            )
        by_name[d.name] = d

    edges: dict[str, frozenset[str]] = {}
    dropped = 0
    for name, d in by_name.items():
        internal = frozenset(dep for dep in d.dependencies if dep in by_name)
        dropped += len(d.dependencies) - len(internal)
        edges[name] = internal

    graph = DependencyGraph.from_edges(edges)
    logger.debug(
        f"Built dependency graph: {len(graph)} packages, {graph.edge_count} edges, "
        f"{dropped} external dependencies ignored"
    )
    return graph
