"""
Result schemas - per-package execution results and the run summary.

ExecutionResult tracks the outcome of one package's action.
RunSummary is the reduction of all finalized results for a run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .options import FailurePolicy


class PackageStatus(str, Enum):
    """Status of a package within a run."""
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (PackageStatus.SUCCEEDED, PackageStatus.FAILED, PackageStatus.SKIPPED)


TERMINAL_STATUSES = (PackageStatus.SUCCEEDED, PackageStatus.FAILED, PackageStatus.SKIPPED)


@dataclass(frozen=True)
class ExecutionResult:
    """
    The outcome of one package within a run.

    Attributes:
        package: Package name
        status: Current status
        output: Whatever the action returned (None until it completes)
        error: Error details if failed or skipped
        started_at: When the action started (None if never started)
        completed_at: When the action finished
        batch_index: Position of the package in the plan order
    """
    package: str
    status: PackageStatus
    output: Any = None
    error: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    batch_index: int = 0

    def __post_init__(self):
        if self.status == PackageStatus.RUNNING and self.started_at is None:
            raise ValueError("Running packages must have started_at")
        if self.status in (PackageStatus.SUCCEEDED, PackageStatus.FAILED):
            if self.started_at is None or self.completed_at is None:
                raise ValueError(f"{self.status.value} packages must have started_at and completed_at")
        if self.status == PackageStatus.FAILED and self.error is None:
            raise ValueError("Failed packages must carry error details")
        # SKIPPED packages never start, so they carry no started_at

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate execution duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "package": self.package,
            "status": self.status.value,
            "batch_index": self.batch_index,
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.output is not None:
            result["output"] = self.output if isinstance(self.output, (str, int, float, bool, dict, list)) else repr(self.output)
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class RunSummary:
    """
    Summary of a completed run.

    Attributes:
        results: Final result of every package, in plan order
        batches: Admission batches, in the order they were started
        failure_policy: Policy the run was executed under
        first_failure: First failed result by plan order (not completion order)
    """
    results: tuple[ExecutionResult, ...] = field(default_factory=tuple)
    batches: tuple[frozenset[str], ...] = field(default_factory=tuple)
    failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST
    first_failure: Optional[ExecutionResult] = None

    def __post_init__(self):
        for r in self.results:
            if not r.status.is_terminal:
                raise ValueError(f"Result for '{r.package}' is not final: {r.status.value}")

    def count(self, status: PackageStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def succeeded(self) -> int:
        return self.count(PackageStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self.count(PackageStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(PackageStatus.SKIPPED)

    @property
    def counts(self) -> dict[str, int]:
        return {status.value: self.count(status) for status in TERMINAL_STATUSES}

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    @property
    def outcome(self) -> str:
        if self.success:
            return "succeeded"
        if self.failure_policy == FailurePolicy.CONTINUE:
            return "completed-with-failures"
        return "failed"

    @property
    def statuses(self) -> dict[str, PackageStatus]:
        return {r.package: r.status for r in self.results}

    def get(self, package: str) -> Optional[ExecutionResult]:
        """Get the result for a specific package."""
        for r in self.results:
            if r.package == package:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "outcome": self.outcome,
            "success": self.success,
            "failure_policy": self.failure_policy.value,
            "counts": self.counts,
            "batches": [sorted(b) for b in self.batches],
            "first_failure": self.first_failure.to_dict() if self.first_failure else None,
            "results": [r.to_dict() for r in self.results],
        }
