"""
Workspace initialization.

Provisions the workspace root: writes (or updates) monorch.yaml, creates the
package directory, and retires a legacy VERSION file whose contents seed the
workspace version. Git is only checked for presence.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from monorch.config import (
    CONFIG_FILENAME,
    DEFAULT_PACKAGE_GLOBS,
    DEFAULT_VERSION,
    INDEPENDENT,
    WorkspaceConfig,
)

logger = logging.getLogger(__name__)

VERSION_FILENAME = "VERSION"
GLOB_CHARS = set("*?[")


@dataclass
class InitResult:
    """What init_workspace did."""
    config_path: Path
    created: bool
    version: str
    packages: List[str]
    created_dirs: List[Path] = field(default_factory=list)
    removed_version_file: bool = False
    is_git_repository: bool = False
    exact: bool = False
    package_location: str = "packages"


def is_git_repository(root: Path) -> bool:
    return (Path(root) / ".git").exists()


def glob_base(pattern: str) -> Path:
    """Leading path components of a glob that contain no wildcard."""
    parts = []
    for part in Path(pattern).parts:
        if GLOB_CHARS & set(part):
            break
        parts.append(part)
    return Path(*parts) if parts else Path(".")


def _resolve_version(root: Path, existing: Dict[str, Any], independent: bool) -> str:
    version_file = root / VERSION_FILENAME
    if independent:
        return INDEPENDENT
    if version_file.exists():
        return version_file.read_text().strip() or DEFAULT_VERSION
    if existing.get("version"):
        return str(existing["version"])
    return DEFAULT_VERSION


def _recorded_exact(existing: Dict[str, Any]) -> bool:
    command = existing.get("command")
    if not isinstance(command, dict) or not isinstance(command.get("init"), dict):
        return False
    return bool(command["init"].get("exact"))


def init_workspace(
    root: Path,
    independent: bool = False,
    packages: Optional[List[str]] = None,
    exact: bool = False,
) -> InitResult:
    """
    Create or update the workspace configuration at root.

    Args:
        root: Workspace root directory (created if missing)
        independent: Version packages independently
        packages: Package globs (default: keep existing, else packages/*)
        exact: Record exact version pinning under command.init.exact; once
            recorded it is kept by later runs

    Returns:
        InitResult describing the changes
    """
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)
    config_path = root / CONFIG_FILENAME

    created = not config_path.exists()
    existing: Dict[str, Any] = {} if created else WorkspaceConfig(config_path).raw_config
    if created:
        logger.info(f"Creating {CONFIG_FILENAME}.")
    else:
        logger.info(f"Updating {CONFIG_FILENAME}.")

    globs = packages or existing.get("packages") or list(DEFAULT_PACKAGE_GLOBS)
    version = _resolve_version(root, existing, independent)

    data = dict(existing)
    data["version"] = version
    data["packages"] = list(globs) if isinstance(globs, list) else globs
    data.setdefault("failure_policy", "fail-fast")
    WorkspaceConfig(config_path, data).validate()

    package_location = glob_base(globs[0]).as_posix()
    data["package_location"] = package_location

    exact = exact or _recorded_exact(existing)
    if exact:
        command = dict(data["command"]) if isinstance(data.get("command"), dict) else {}
        init_options = dict(command["init"]) if isinstance(command.get("init"), dict) else {}
        init_options["exact"] = True
        command["init"] = init_options
        data["command"] = command

    created_dirs = []
    for pattern in globs:
        base = root / glob_base(pattern)
        if not base.exists():
            logger.info(f"Creating package directory in {base}/.")
            base.mkdir(parents=True)
            created_dirs.append(base)

    config_path.write_text(yaml.safe_dump(data, sort_keys=False))

    removed = False
    version_file = root / VERSION_FILENAME
    if version_file.exists():
        logger.info(f"Removing old {VERSION_FILENAME} file.")
        version_file.unlink()
        removed = True

    git = is_git_repository(root)
    if not git:
        logger.warning(f"{root} is not a git repository.")

    return InitResult(
        config_path=config_path,
        created=created,
        version=version,
        packages=list(globs),
        created_dirs=created_dirs,
        removed_version_file=removed,
        is_git_repository=git,
        exact=exact,
        package_location=package_location,
    )
