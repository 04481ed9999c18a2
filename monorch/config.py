"""
Configuration management for monorch workspaces.

Loads and validates the monorch.yaml file at the workspace root.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from monorch.errors import ConfigError
from monorch.schemas import FailurePolicy, RunOptions

CONFIG_FILENAME = "monorch.yaml"
DEFAULT_PACKAGE_GLOBS = ["packages/*"]
DEFAULT_VERSION = "0.0.0"
INDEPENDENT = "independent"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("pretty", "structured")


class WorkspaceConfig:
    """Complete workspace configuration."""

    def __init__(self, config_path: Path, data: Optional[Dict[str, Any]] = None):
        self.config_path = Path(config_path)
        self.root = self.config_path.parent
        self.raw_config = data if data is not None else self._load_yaml()

        self.version = str(self.raw_config.get("version", DEFAULT_VERSION))
        self.packages: List[str] = self.raw_config.get("packages", list(DEFAULT_PACKAGE_GLOBS))
        self.concurrency: Optional[int] = self.raw_config.get("concurrency")
        self.failure_policy = self.raw_config.get("failure_policy", FailurePolicy.FAIL_FAST.value)

        # Logging
        self.logging = self.raw_config.get("logging") or {}

    def _load_yaml(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax in {self.config_path}: {e}")

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigError(f"{self.config_path} must contain a mapping")
        return config

    @property
    def independent(self) -> bool:
        """Packages are versioned independently rather than in lockstep."""
        return self.version == INDEPENDENT

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation (None = no log file)."""
        log_output = self.logging.get("output")
        if not log_output:
            return None
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        path = Path(log_output)
        return path if path.is_absolute() else self.root / path

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        """Check if console logging is enabled."""
        return self.logging.get("console", False)

    def run_options(self) -> RunOptions:
        """Build RunOptions from the configured concurrency and failure policy."""
        return RunOptions(
            concurrency=self.concurrency,
            failure_policy=FailurePolicy(self.failure_policy),
        )

    def validate(self) -> None:
        """Validate entire configuration."""
        if not isinstance(self.packages, list) or not self.packages:
            raise ConfigError("'packages' must be a non-empty list of globs")
        for pattern in self.packages:
            if not isinstance(pattern, str) or not pattern:
                raise ConfigError(f"Invalid package glob: {pattern!r}")
            if Path(pattern).is_absolute():
                raise ConfigError(f"Package glob must be relative to the workspace root: {pattern}")

        if self.concurrency is not None:
            if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, int) or self.concurrency < 1:
                raise ConfigError(f"'concurrency' must be a positive integer, got {self.concurrency!r}")

        valid_policies = [p.value for p in FailurePolicy]
        if self.failure_policy not in valid_policies:
            raise ConfigError(
                f"'failure_policy' must be one of {valid_policies}, got {self.failure_policy!r}"
            )

        if not isinstance(self.logging, dict):
            raise ConfigError(f"'logging' must be a mapping, got {self.logging!r}")
        if self.get_log_level() not in LOG_LEVELS:
            raise ConfigError(
                f"Unknown log level: {self.logging.get('level')!r} (expected one of {list(LOG_LEVELS)})"
            )
        if self.get_log_format() not in LOG_FORMATS:
            raise ConfigError(f"Unknown log format: {self.get_log_format()!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the monorch.yaml layout, keeping unknown keys."""
        data = dict(self.raw_config)
        data["version"] = self.version
        data["packages"] = list(self.packages)
        if self.concurrency is not None:
            data["concurrency"] = self.concurrency
        data["failure_policy"] = self.failure_policy
        if self.logging:
            data["logging"] = dict(self.logging)
        return data

    def __repr__(self) -> str:
        return f"WorkspaceConfig(root={self.root}, version={self.version}, packages={self.packages})"


def find_workspace_root(start: Optional[Path] = None) -> Path:
    """
    Locate the workspace root.

    MONORCH_ROOT wins when set; otherwise walk up from start (default: cwd)
    until a directory containing monorch.yaml is found.

    Raises:
        ConfigError: If no workspace root is found
    """
    env_root = os.environ.get("MONORCH_ROOT")
    if env_root:
        return Path(env_root).expanduser()

    current = (start or Path.cwd()).resolve()
    for candidate in [current, *current.parents]:
        if (candidate / CONFIG_FILENAME).exists():
            return candidate

    raise ConfigError(
        f"No {CONFIG_FILENAME} found in {current} or any parent directory. "
        "Run 'monorch init' to create one."
    )


def load_config(config_path: Optional[Path] = None) -> WorkspaceConfig:
    """
    Load workspace configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to monorch.yaml at the workspace root

    Returns:
        Validated WorkspaceConfig instance

    Raises:
        ConfigError: If config is invalid or missing
    """
    if config_path is None:
        config_path = find_workspace_root() / CONFIG_FILENAME

    config = WorkspaceConfig(Path(config_path))
    config.validate()
    return config
