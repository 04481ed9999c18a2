"""
Progress events emitted by a run.

A RunObserver receives:
- package_started(descriptor): An action is about to be invoked
- package_finished(result): A package reached a terminal state (including skips)
- cycle_detected(cycles): The graph was rejected before scheduling
- run_finished(summary): All packages are final

Observers are called from the scheduler's coordination loop, never from
worker threads, so implementations need no locking of their own.
"""

import logging
from typing import Iterable, Optional, Sequence

from monorch.schemas import ExecutionResult, PackageDescriptor, PackageStatus, RunSummary
from monorch.utils import format_duration, print_error, print_info, print_success, print_warning


class RunObserver:
    """No-op observer. Subclass and override the events you care about."""

    def package_started(self, descriptor: PackageDescriptor) -> None:
        pass

    def package_finished(self, result: ExecutionResult) -> None:
        pass

    def cycle_detected(self, cycles: Sequence[Sequence[str]]) -> None:
        pass

    def run_finished(self, summary: RunSummary) -> None:
        pass


class CompositeObserver(RunObserver):
    """Fan events out to several observers in order."""

    def __init__(self, observers: Iterable[RunObserver]):
        self.observers = list(observers)

    def package_started(self, descriptor: PackageDescriptor) -> None:
        for o in self.observers:
            o.package_started(descriptor)

    def package_finished(self, result: ExecutionResult) -> None:
        for o in self.observers:
            o.package_finished(result)

    def cycle_detected(self, cycles: Sequence[Sequence[str]]) -> None:
        for o in self.observers:
            o.cycle_detected(cycles)

    def run_finished(self, summary: RunSummary) -> None:
        for o in self.observers:
            o.run_finished(summary)


class LoggingObserver(RunObserver):
    """Log every event with structured extras."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("monorch.run")

    def package_started(self, descriptor: PackageDescriptor) -> None:
        self.logger.info(
            f"Starting {descriptor.name}",
            extra={"event": "package_started", "package": descriptor.name},
        )

    def package_finished(self, result: ExecutionResult) -> None:
        level = logging.ERROR if result.status == PackageStatus.FAILED else logging.INFO
        message = f"{result.package}: {result.status.value}"
        if result.error:
            message += f" ({result.error.get('message')})"
        self.logger.log(
            level,
            message,
            extra={
                "event": "package_finished",
                "package": result.package,
                "metadata": {"status": result.status.value, "duration_ms": result.duration_ms},
            },
        )

    def cycle_detected(self, cycles: Sequence[Sequence[str]]) -> None:
        self.logger.error(
            f"Refusing to run: {len(cycles)} dependency cycle(s)",
            extra={"event": "cycle_detected", "metadata": {"cycles": [list(c) for c in cycles]}},
        )

    def run_finished(self, summary: RunSummary) -> None:
        self.logger.info(
            f"Run {summary.outcome}: {summary.counts}",
            extra={"event": "run_finished", "metadata": summary.counts},
        )


class ConsoleObserver(RunObserver):
    """Print per-package progress to the rich console."""

    def package_finished(self, result: ExecutionResult) -> None:
        if result.status == PackageStatus.SUCCEEDED:
            duration = (result.duration_ms or 0) / 1000
            print_success(f"{result.package} ({format_duration(duration)})")
        elif result.status == PackageStatus.FAILED:
            print_error(f"{result.package}: {result.error['message']}")
        else:
            reason = result.error["message"] if result.error else "skipped"
            print_warning(f"{result.package}: {reason}")

    def cycle_detected(self, cycles: Sequence[Sequence[str]]) -> None:
        for cycle in cycles:
            print_error("Cycle: " + " -> ".join(list(cycle) + [cycle[0]]))

    def run_finished(self, summary: RunSummary) -> None:
        counts = summary.counts
        line = (
            f"{counts['succeeded']} succeeded, {counts['failed']} failed, "
            f"{counts['skipped']} skipped"
        )
        if summary.success:
            print_success(f"Run succeeded: {line}")
        else:
            print_error(f"Run {summary.outcome}: {line}")
            if summary.first_failure is not None:
                print_info(
                    f"First failure: {summary.first_failure.package}: "
                    f"{summary.first_failure.error['message']}"
                )
