"""
Error classes for monorch.

These error types separate structural failures from per-package failures:
- ScanError: Bad or duplicate package metadata (fatal, before scheduling)
- CyclicDependencyError: The dependency graph is not a DAG (fatal, before scheduling)
- ActionError: A package's action failed (recorded on that package only)
- SkippedDueToUpstreamFailure: Informational detail attached to skipped packages

Error handling contract:
- Structural errors abort the run before any action executes
- Action errors are caught at the worker boundary and never escape the scheduler
"""

from typing import Optional, Sequence


class MonorchError(Exception):
    """Base exception for monorch."""
    pass


class ConfigError(MonorchError):
    """Workspace configuration is missing or invalid."""
    pass


class ScanError(MonorchError):
    """
    Package discovery failed.

    Raised when a package glob matches a directory without a valid manifest,
    or when two discovered packages declare the same name.
    """

    def __init__(self, message: str, location: Optional[str] = None):
        self.location = location
        super().__init__(message)


class CyclicDependencyError(MonorchError):
    """
    The workspace dependency graph contains at least one cycle.

    Carries every detected cycle so callers can report all of them at once.
    """

    def __init__(self, cycles: Sequence[Sequence[str]]):
        self.cycles = [tuple(c) for c in cycles]
        rendered = "; ".join(" -> ".join(list(c) + [c[0]]) for c in self.cycles)
        super().__init__(f"Cyclic package dependencies detected: {rendered}")


class ActionError(MonorchError):
    """
    A package action failed.

    Attributes:
        package: Name of the package whose action failed
        cause: Original exception, if the failure wrapped one
        exit_code: Process exit code for command actions
        output: Captured output, if any
    """

    def __init__(
        self,
        package: str,
        message: str,
        cause: Optional[BaseException] = None,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
    ):
        self.package = package
        self.cause = cause
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"Package '{package}' failed: {message}")


class SkippedDueToUpstreamFailure(MonorchError):
    """
    Not an error per se: records why a package's action was never invoked.

    Attributes:
        package: The skipped package
        upstream: The failed package that caused the skip (None when cancelled)
    """

    def __init__(self, package: str, upstream: Optional[str] = None, reason: Optional[str] = None):
        self.package = package
        self.upstream = upstream
        if reason is None:
            reason = f"dependency '{upstream}' failed"
        super().__init__(f"Package '{package}' skipped: {reason}")
