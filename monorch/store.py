"""
PackageStore - Discover and parse workspace package manifests.

The store provides:
- Expanding package globs (e.g. "packages/*") relative to the workspace root
- Loading manifests from YAML or JSON (package.yaml, package.yml, package.json)
- Validation of manifest structure and semantic versions
- Duplicate-name detection across discovered locations

Loading has no side effects beyond filesystem reads.
"""

import fnmatch
import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import yaml

from monorch.errors import ScanError
from monorch.schemas import PackageDescriptor

logger = logging.getLogger(__name__)

# Manifest file names in order of preference
MANIFEST_NAMES = ("package.yaml", "package.yml", "package.json")

# Loose semantic version: MAJOR.MINOR.PATCH with optional pre-release/build
SEMVER_PATTERN = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)

DEPENDENCY_KEYS = ("dependencies", "devDependencies")


def is_valid_version(version: Any) -> bool:
    return isinstance(version, str) and bool(SEMVER_PATTERN.match(version))


class PackageStore:
    """
    Store of package descriptors discovered under a workspace root.

    Example layout:
        workspace/
            monorch.yaml
            packages/
                core/package.yaml
                cli/package.json
    """

    def __init__(self, root: Path | str):
        """
        Initialize the store.

        Args:
            root: Workspace root that package globs are relative to
        """
        self._root = Path(root)
        self._packages: dict[str, PackageDescriptor] = {}

    @property
    def root(self) -> Path:
        return self._root

    @property
    def packages(self) -> dict[str, PackageDescriptor]:
        """Descriptors from the last load, keyed by name."""
        return dict(self._packages)

    def load(self, globs: Sequence[str]) -> set[PackageDescriptor]:
        """
        Discover and parse every package matched by the globs.

        Args:
            globs: Package location globs relative to the root

        Returns:
            Set of PackageDescriptors

        Raises:
            ScanError: If a matched directory has no valid manifest, or
                       two packages declare the same name
        """
        found: dict[str, PackageDescriptor] = {}

        for location in self._expand(globs):
            descriptor = self.load_descriptor(location)
            existing = found.get(descriptor.name)
            if existing is not None:
                raise ScanError(
                    f"Duplicate package name '{descriptor.name}' declared at "
                    f"{existing.location} and {descriptor.location}",
                    location=str(location),
                )
            found[descriptor.name] = descriptor
            logger.debug(f"Discovered {descriptor.name}@{descriptor.version} at {location}")

        self._packages = found
        logger.info(
            f"Discovered {len(found)} packages",
            extra={"event": "packages_discovered", "metadata": {"count": len(found)}},
        )
        return set(found.values())

    def _expand(self, globs: Sequence[str]) -> list[Path]:
        """Expand globs to a sorted, de-duplicated list of directories."""
        if isinstance(globs, str):
            globs = [globs]

        locations: dict[Path, None] = {}
        for pattern in globs:
            if Path(pattern).is_absolute():
                raise ScanError(f"Package glob must be relative to the workspace root: {pattern}")
            for match in sorted(self._root.glob(pattern)):
                if match.is_dir():
                    locations[match.resolve()] = None
        return list(locations)

    def load_descriptor(self, location: Path) -> PackageDescriptor:
        """
        Parse the manifest in a package directory.

        Args:
            location: The package directory

        Returns:
            The parsed PackageDescriptor

        Raises:
            ScanError: If the manifest is missing or invalid
        """
        manifest_path = self._find_manifest(location)
        if manifest_path is None:
            raise ScanError(
                f"No package manifest ({', '.join(MANIFEST_NAMES)}) in {location}",
                location=str(location),
            )

        try:
            data = self._load_file(manifest_path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ScanError(f"Failed to load {manifest_path}: {e}", location=str(location))

        if not isinstance(data, dict):
            raise ScanError(f"Manifest {manifest_path} must be a mapping", location=str(location))

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ScanError(f"Manifest {manifest_path} is missing 'name'", location=str(location))

        version = data.get("version")
        if not is_valid_version(version):
            raise ScanError(
                f"Manifest {manifest_path} has invalid version {version!r} for '{name}'",
                location=str(location),
            )

        scripts = data.get("scripts") or {}
        if not isinstance(scripts, dict) or not all(isinstance(v, str) for v in scripts.values()):
            raise ScanError(
                f"Manifest {manifest_path}: 'scripts' must map names to commands",
                location=str(location),
            )

        return PackageDescriptor(
            name=name.strip(),
            version=version,
            location=location,
            dependencies=self._parse_dependencies(data, manifest_path),
            private=bool(data.get("private", False)),
            scripts={str(k): v for k, v in scripts.items()},
        )

    def _parse_dependencies(self, data: dict, manifest_path: Path) -> frozenset[str]:
        """Merge dependency mappings (name -> range) or lists of names."""
        names: set[str] = set()
        for key in DEPENDENCY_KEYS:
            value = data.get(key)
            if value is None:
                continue
            if isinstance(value, dict):
                names.update(str(k) for k in value)
            elif isinstance(value, list) and all(isinstance(v, str) for v in value):
                names.update(value)
            else:
                raise ScanError(
                    f"Manifest {manifest_path}: '{key}' must be a mapping or a list of names",
                    location=str(manifest_path.parent),
                )
        return frozenset(names)

    def _find_manifest(self, location: Path) -> Optional[Path]:
        # YAML preferred over JSON when both exist
        for filename in MANIFEST_NAMES:
            candidate = location / filename
            if candidate.is_file():
                return candidate
        return None

    def _load_file(self, path: Path) -> Any:
        """
        Load a manifest file (YAML or JSON).

        Raises:
            ValueError: If file format is unsupported or parsing fails
        """
        suffix = path.suffix.lower()

        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                return yaml.safe_load(f)
            elif suffix == ".json":
                return json.load(f)
            else:
                raise ValueError(f"Unsupported file format: {suffix}")


def load_packages(root: Path | str, globs: Sequence[str]) -> set[PackageDescriptor]:
    """Convenience wrapper: discover packages under root."""
    return PackageStore(root).load(globs)


def filter_packages(
    descriptors: Iterable[PackageDescriptor],
    scope: Optional[Sequence[str]] = None,
    ignore: Optional[Sequence[str]] = None,
) -> set[PackageDescriptor]:
    """
    Restrict descriptors by name patterns.

    Args:
        descriptors: Descriptors to filter
        scope: Keep only names matching at least one pattern (None = keep all)
        ignore: Drop names matching any pattern

    Returns:
        The filtered set. Dependencies on dropped packages become external.
    """
    kept = set()
    for d in descriptors:
        if scope and not any(fnmatch.fnmatchcase(d.name, p) for p in scope):
            continue
        if ignore and any(fnmatch.fnmatchcase(d.name, p) for p in ignore):
            continue
        kept.add(d)
    return kept
