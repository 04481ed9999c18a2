"""
PackageDescriptor schema - parsed metadata of one workspace package.

A descriptor is created once per discovered package at scan time and is
immutable for the duration of a run.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping


@dataclass(frozen=True)
class PackageDescriptor:
    """
    Metadata for a single package in the workspace.

    Attributes:
        name: Unique package name
        version: Semantic version string
        location: Package directory
        dependencies: Declared dependency names (runtime and dev). May name
            packages outside the workspace; those are dropped by the graph builder.
        private: Whether the manifest marks the package as private
        scripts: Script name -> shell command, from the manifest
    """
    name: str
    version: str
    location: Path
    dependencies: frozenset[str] = field(default_factory=frozenset)
    private: bool = field(default=False, compare=False)
    scripts: Mapping[str, str] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Package name must be non-empty")
        # Accept any iterable of names, store as frozenset
        if not isinstance(self.dependencies, frozenset):
            object.__setattr__(self, "dependencies", frozenset(self.dependencies))
        if not isinstance(self.location, Path):
            object.__setattr__(self, "location", Path(self.location))

    def has_script(self, script: str) -> bool:
        return script in self.scripts

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "name": self.name,
            "version": self.version,
            "location": str(self.location),
            "dependencies": sorted(self.dependencies),
            "private": self.private,
            "scripts": dict(self.scripts),
        }
