"""Tests for monorch.workspace initialization."""

import pytest
import yaml

from monorch.errors import ConfigError
from monorch.workspace import glob_base, init_workspace, is_git_repository


def _read(path):
    return yaml.safe_load(path.read_text())


class TestInitWorkspace:
    """Tests for init_workspace."""

    def test_creates_config_and_package_dir(self, tmp_path):
        result = init_workspace(tmp_path)

        assert result.created
        assert (tmp_path / "packages").is_dir()
        assert result.created_dirs == [tmp_path / "packages"]
        data = _read(tmp_path / "monorch.yaml")
        assert data["version"] == "0.0.0"
        assert data["packages"] == ["packages/*"]
        assert data["failure_policy"] == "fail-fast"

    def test_independent(self, tmp_path):
        result = init_workspace(tmp_path, independent=True)
        assert result.version == "independent"
        assert _read(tmp_path / "monorch.yaml")["version"] == "independent"

    def test_custom_globs(self, tmp_path):
        init_workspace(tmp_path, packages=["libs/*", "apps/web"])
        assert (tmp_path / "libs").is_dir()
        assert (tmp_path / "apps" / "web").is_dir()

    def test_update_preserves_existing_settings(self, tmp_path):
        (tmp_path / "monorch.yaml").write_text(yaml.safe_dump({
            "version": "2.3.0",
            "packages": ["modules/*"],
            "concurrency": 3,
        }))
        result = init_workspace(tmp_path)

        assert not result.created
        data = _read(tmp_path / "monorch.yaml")
        assert data["version"] == "2.3.0"
        assert data["packages"] == ["modules/*"]
        assert data["concurrency"] == 3

    def test_version_file_seeds_version_and_is_removed(self, tmp_path):
        (tmp_path / "VERSION").write_text("4.5.6\n")
        result = init_workspace(tmp_path)

        assert result.version == "4.5.6"
        assert result.removed_version_file
        assert not (tmp_path / "VERSION").exists()

    def test_independent_wins_over_version_file(self, tmp_path):
        (tmp_path / "VERSION").write_text("4.5.6")
        assert init_workspace(tmp_path, independent=True).version == "independent"
        assert not (tmp_path / "VERSION").exists()

    def test_git_presence_reported(self, tmp_path):
        assert not init_workspace(tmp_path).is_git_repository
        (tmp_path / ".git").mkdir()
        assert init_workspace(tmp_path).is_git_repository
        assert is_git_repository(tmp_path)

    def test_package_location_recorded(self, tmp_path):
        result = init_workspace(tmp_path, packages=["libs/*", "apps/*"])
        assert result.package_location == "libs"
        assert _read(tmp_path / "monorch.yaml")["package_location"] == "libs"

    def test_exact_recorded(self, tmp_path):
        result = init_workspace(tmp_path, exact=True)
        assert result.exact
        assert _read(tmp_path / "monorch.yaml")["command"] == {"init": {"exact": True}}

    def test_exact_kept_by_later_runs(self, tmp_path):
        init_workspace(tmp_path, exact=True)
        result = init_workspace(tmp_path)
        assert result.exact
        assert _read(tmp_path / "monorch.yaml")["command"]["init"]["exact"] is True

    def test_exact_merges_into_existing_command_settings(self, tmp_path):
        (tmp_path / "monorch.yaml").write_text(yaml.safe_dump({
            "packages": ["packages/*"],
            "command": {"run": {"stream": True}},
        }))
        init_workspace(tmp_path, exact=True)
        assert _read(tmp_path / "monorch.yaml")["command"] == {
            "run": {"stream": True},
            "init": {"exact": True},
        }

    def test_not_exact_by_default(self, tmp_path):
        assert not init_workspace(tmp_path).exact
        assert "command" not in _read(tmp_path / "monorch.yaml")

    def test_invalid_existing_config_creates_nothing(self, tmp_path):
        (tmp_path / "monorch.yaml").write_text(yaml.safe_dump({"packages": "libs/*"}))
        with pytest.raises(ConfigError, match="non-empty list"):
            init_workspace(tmp_path)
        assert not (tmp_path / "libs").exists()

    def test_rerun_is_stable(self, tmp_path):
        init_workspace(tmp_path)
        first = (tmp_path / "monorch.yaml").read_text()
        result = init_workspace(tmp_path)
        assert (tmp_path / "monorch.yaml").read_text() == first
        assert result.created_dirs == []


class TestGlobBase:
    """Tests for glob_base."""

    def test_strips_wildcards(self):
        assert str(glob_base("packages/*")) == "packages"
        assert str(glob_base("libs/**/pkg-?")) == "libs"
        assert str(glob_base("apps/web")) == "apps/web"
        assert str(glob_base("*")) == "."
