"""
Aggregator - reduce finalized per-package results to a RunSummary.
"""

from typing import Iterable, Optional, Sequence

from monorch.schemas import (
    ExecutionResult,
    FailurePolicy,
    PackageStatus,
    RunSummary,
)


def aggregate(
    results: Iterable[ExecutionResult],
    batches: Sequence[frozenset[str]] = (),
    failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
) -> RunSummary:
    """
    Summarize a run.

    The first failure is chosen by plan order (batch index, then name), not
    by completion time, so the same failures always surface the same detail.

    Args:
        results: Finalized results (every status terminal)
        batches: Admission batches recorded by the scheduler
        failure_policy: Policy the run used

    Returns:
        RunSummary with results in plan order

    Raises:
        ValueError: If a result is not final
    """
    ordered = tuple(sorted(results, key=lambda r: (r.batch_index, r.package)))

    first_failure: Optional[ExecutionResult] = None
    for r in ordered:
        if r.status == PackageStatus.FAILED:
            first_failure = r
            break

    return RunSummary(
        results=ordered,
        batches=tuple(frozenset(b) for b in batches),
        failure_policy=failure_policy,
        first_failure=first_failure,
    )
