import json
from pathlib import Path

import pytest
import yaml

from monorch.schemas import PackageDescriptor


def make_descriptor(name: str, deps=(), version: str = "1.0.0", scripts=None, location=None) -> PackageDescriptor:
    return PackageDescriptor(
        name=name,
        version=version,
        location=Path(location or f"/workspace/packages/{name}"),
        dependencies=frozenset(deps),
        scripts=scripts or {},
    )


def write_package(root: Path, dirname: str, manifest: dict, fmt: str = "yaml") -> Path:
    """Create root/packages/<dirname> with a manifest in the given format."""
    location = root / "packages" / dirname
    location.mkdir(parents=True, exist_ok=True)
    if fmt == "json":
        (location / "package.json").write_text(json.dumps(manifest))
    else:
        (location / "package.yaml").write_text(yaml.safe_dump(manifest))
    return location


@pytest.fixture
def descriptor():
    """Factory for in-memory package descriptors."""
    return make_descriptor


@pytest.fixture
def workspace(tmp_path):
    """An initialized workspace root with monorch.yaml and an empty packages/ dir."""
    (tmp_path / "monorch.yaml").write_text(yaml.safe_dump({
        "version": "1.0.0",
        "packages": ["packages/*"],
    }))
    (tmp_path / "packages").mkdir()
    return tmp_path


@pytest.fixture(autouse=True)
def isolated_root(monkeypatch):
    # Tests never pick up a workspace from the environment
    monkeypatch.delenv("MONORCH_ROOT", raising=False)
