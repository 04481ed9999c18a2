"""
monorch - Monorepo task runner

Discovers workspace packages, orders them by their dependencies and runs
scripts or commands across them concurrently.
"""

__version__ = "0.1.0"


__all__ = [
    "run",
    "run_workspace",
    "RunOptions",
    "FailurePolicy",
    "PackageDescriptor",
    "RunSummary",
    "load_config",
]

from .schemas import FailurePolicy, PackageDescriptor, RunOptions, RunSummary
from .config import load_config
from .runner import run, run_workspace
