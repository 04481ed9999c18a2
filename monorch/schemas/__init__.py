"""
monorch.schemas - Data model for workspace runs.

PackageDescriptor -> DependencyGraph -> ExecutionResult -> RunSummary

Lifecycle:
1. PackageDescriptor: Parsed manifest of one package, immutable for the run
2. RunOptions: Concurrency limit and failure policy
3. ExecutionResult: Outcome of one package's action (or its skip)
4. RunSummary: Reduction of all finalized results

The DependencyGraph lives in monorch.graph since it is built, not loaded.
"""

from .package import PackageDescriptor
from .options import FailurePolicy, RunOptions
from .result import (
    ExecutionResult,
    PackageStatus,
    RunSummary,
    TERMINAL_STATUSES,
)

__all__ = [
    # Package
    "PackageDescriptor",
    # Options
    "FailurePolicy",
    "RunOptions",
    # Results
    "ExecutionResult",
    "PackageStatus",
    "RunSummary",
    "TERMINAL_STATUSES",
]
