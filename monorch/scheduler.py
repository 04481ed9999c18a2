"""
Scheduler - Dependency-ordered, concurrent execution of package actions.

The Scheduler implements:
- Static batch planning (plan_batches) for dry runs and result ordering
- Streaming admission: a package starts as soon as its last dependency succeeds
- A concurrency limit on actions in flight (None = unbounded)
- Skipping of every transitive dependent of a failed package
- Cancellation: no new admissions, running actions finish

Execution model:
1. One coordination loop (the calling thread) owns every state record and the
   remaining-dependency counts
2. Actions run on a ThreadPoolExecutor; workers never touch shared state, they
   post a completion message on a queue
3. The loop admits ready packages, then blocks on the queue; each completion
   frees dependents (success) or skips them (failure)

Per-package states: PENDING -> READY -> RUNNING -> SUCCEEDED | FAILED | SKIPPED
"""

import heapq
import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from monorch.cycles import detect_cycles
from monorch.errors import ActionError, CyclicDependencyError, SkippedDueToUpstreamFailure
from monorch.events import RunObserver
from monorch.graph import DependencyGraph
from monorch.schemas import (
    ExecutionResult,
    PackageDescriptor,
    PackageStatus,
    RunOptions,
)

logger = logging.getLogger(__name__)

# An action takes a package descriptor and returns arbitrary output; raising signals failure
Action = Callable[[PackageDescriptor], Any]


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def plan_batches(graph: DependencyGraph, concurrency: Optional[int] = None) -> list[frozenset[str]]:
    """
    Compute the static execution plan of an acyclic graph.

    Each level holds the packages whose dependencies all sit in earlier
    levels; with a concurrency limit, levels are split (in name order) into
    chunks of at most that size.

    Args:
        graph: The dependency graph
        concurrency: Maximum batch size (None = unbounded)

    Returns:
        Ordered batches; their union is every node exactly once

    Raises:
        CyclicDependencyError: If the graph has a cycle
    """
    cycles = detect_cycles(graph)
    if cycles:
        raise CyclicDependencyError(cycles)

    remaining = {name: len(deps) for name, deps in graph.dependencies.items()}
    level = sorted(name for name, count in remaining.items() if count == 0)
    batches: list[frozenset[str]] = []

    while level:
        if concurrency is None:
            batches.append(frozenset(level))
        else:
            for i in range(0, len(level), concurrency):
                batches.append(frozenset(level[i:i + concurrency]))

        next_level = []
        for name in level:
            for dependent in graph.dependents[name]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    next_level.append(dependent)
        level = sorted(next_level)

    return batches


def plan_order(graph: DependencyGraph, concurrency: Optional[int] = None) -> dict[str, int]:
    """Map each package to the index of its batch in the static plan."""
    return {
        name: index
        for index, batch in enumerate(plan_batches(graph, concurrency))
        for name in batch
    }


def _error_detail(error: BaseException) -> dict[str, Any]:
    detail: dict[str, Any] = {"type": type(error).__name__, "message": str(error)}
    if isinstance(error, ActionError):
        if error.cause is not None:
            detail["cause"] = type(error.cause).__name__
        if error.exit_code is not None:
            detail["exit_code"] = error.exit_code
        if error.output:
            detail["output"] = error.output
    if isinstance(error, SkippedDueToUpstreamFailure) and error.upstream is not None:
        detail["upstream"] = error.upstream
    return detail


@dataclass
class _PackageState:
    """Mutable per-package record, only touched by the coordination loop."""
    descriptor: PackageDescriptor
    remaining: int
    batch_index: int
    status: PackageStatus = PackageStatus.PENDING
    output: Any = None
    error: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(
            package=self.descriptor.name,
            status=self.status,
            output=self.output,
            error=self.error,
            started_at=self.started_at,
            completed_at=self.completed_at,
            batch_index=self.batch_index,
        )


@dataclass(frozen=True)
class _Completion:
    """Message a worker posts back to the coordination loop."""
    package: str
    completed_at: datetime
    output: Any = None
    error: Optional[BaseException] = field(default=None)


class Scheduler:
    """
    Drives one run of an action across a dependency graph.

    Usage:
        scheduler = Scheduler(graph, descriptors, RunOptions(concurrency=4))
        results = scheduler.run(action)
        scheduler.batches  # admission batches, in start order

    A Scheduler instance runs once.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        descriptors: Mapping[str, PackageDescriptor],
        options: Optional[RunOptions] = None,
        observer: Optional[RunObserver] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            graph: The dependency graph (validated for cycles on run)
            descriptors: Package name -> descriptor, one per graph node
            options: Concurrency limit and failure policy
            observer: Receives progress events
        """
        missing = set(graph.nodes) - set(descriptors)
        if missing:
            raise ValueError(f"No descriptor for package(s): {sorted(missing)}")

        self._graph = graph
        self._descriptors = descriptors
        self._options = options or RunOptions()
        self._observer = observer or RunObserver()
        self._cancelled = threading.Event()
        self._batches: list[frozenset[str]] = []
        self._states: dict[str, _PackageState] = {}
        self._ready: list[tuple[int, str]] = []
        self._started = False

    @property
    def batches(self) -> list[frozenset[str]]:
        """Packages admitted together, in admission order."""
        return list(self._batches)

    @property
    def options(self) -> RunOptions:
        return self._options

    def cancel(self) -> None:
        """
        Stop admitting packages.

        Safe to call from any thread. Running actions finish; every package not
        yet started is marked skipped once the coordination loop wakes up.
        """
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, action: Action) -> list[ExecutionResult]:
        """
        Run action for every package in dependency order.

        Args:
            action: Callable invoked with each package's descriptor

        Returns:
            Final results, in plan order (batch index, then name)

        Raises:
            CyclicDependencyError: If the graph has a cycle (no action runs)
        """
        if self._started:
            raise RuntimeError("Scheduler instances run once")
        self._started = True

        cycles = detect_cycles(self._graph)
        if cycles:
            self._observer.cycle_detected(cycles)
            raise CyclicDependencyError(cycles)

        order = plan_order(self._graph, self._options.concurrency)
        for name in self._graph.nodes:
            self._states[name] = _PackageState(
                descriptor=self._descriptors[name],
                remaining=len(self._graph.dependencies[name]),
                batch_index=order[name],
            )
            if self._states[name].remaining == 0:
                self._mark_ready(name)

        limit = self._options.concurrency
        workers = limit if limit is not None else max(1, len(self._graph))
        completions: "queue.Queue[_Completion]" = queue.Queue()
        in_flight = 0

        logger.info(
            f"Scheduling {len(self._graph)} packages "
            f"(concurrency={limit or 'unbounded'}, policy={self._options.failure_policy.value})",
            extra={"event": "run_started", "metadata": {"packages": len(self._graph)}},
        )

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="monorch") as pool:
            while True:
                if self._cancelled.is_set():
                    self._skip_unstarted()

                admitted = []
                while self._ready and (limit is None or in_flight < limit):
                    _, name = heapq.heappop(self._ready)
                    self._start(name)
                    pool.submit(self._work, action, self._descriptors[name], completions)
                    admitted.append(name)
                    in_flight += 1

                if admitted:
                    self._batches.append(frozenset(admitted))
                    logger.debug(f"Admitted batch {len(self._batches)}: {sorted(admitted)}")

                if in_flight == 0:
                    break

                self._complete(completions.get())
                in_flight -= 1

        return sorted(
            (state.to_result() for state in self._states.values()),
            key=lambda r: (r.batch_index, r.package),
        )

    @staticmethod
    def _work(action: Action, descriptor: PackageDescriptor, completions: queue.Queue) -> None:
        """
        Worker body: invoke the action and report back, never raise.

        Every invocation posts exactly one completion, including when the
        action raises SystemExit or KeyboardInterrupt.
        """
        try:
            output = action(descriptor)
        except BaseException as e:
            completions.put(_Completion(descriptor.name, _utcnow(), error=e))
        else:
            completions.put(_Completion(descriptor.name, _utcnow(), output=output))

    def _mark_ready(self, name: str) -> None:
        state = self._states[name]
        state.status = PackageStatus.READY
        heapq.heappush(self._ready, (state.batch_index, name))

    def _start(self, name: str) -> None:
        state = self._states[name]
        state.status = PackageStatus.RUNNING
        state.started_at = _utcnow()
        self._observer.package_started(state.descriptor)

    def _complete(self, message: _Completion) -> None:
        state = self._states[message.package]
        state.completed_at = message.completed_at

        if message.error is None:
            state.status = PackageStatus.SUCCEEDED
            state.output = message.output
            self._observer.package_finished(state.to_result())

            for dependent in sorted(self._graph.dependents[message.package]):
                dep_state = self._states[dependent]
                dep_state.remaining -= 1
                if dep_state.remaining == 0 and dep_state.status == PackageStatus.PENDING:
                    self._mark_ready(dependent)
            return

        error = message.error
        if not isinstance(error, Exception):
            detail = f"{type(error).__name__}: {error}" if str(error) else type(error).__name__
            error = ActionError(message.package, f"action raised {detail}", cause=error)
        elif not isinstance(error, ActionError):
            error = ActionError(message.package, str(error) or type(error).__name__, cause=error)
        state.status = PackageStatus.FAILED
        state.error = _error_detail(error)
        self._observer.package_finished(state.to_result())
        self._skip_dependents(message.package)

    def _skip_dependents(self, failed: str) -> None:
        """Skip every not-yet-started transitive dependent of a failed package."""
        affected = sorted(
            self._graph.transitive_dependents(failed),
            key=lambda n: (self._states[n].batch_index, n),
        )
        for name in affected:
            self._skip(name, SkippedDueToUpstreamFailure(name, upstream=failed))

    def _skip_unstarted(self) -> None:
        self._ready.clear()
        for name in sorted(self._states, key=lambda n: (self._states[n].batch_index, n)):
            self._skip(name, SkippedDueToUpstreamFailure(name, reason="run cancelled"))

    def _skip(self, name: str, reason: SkippedDueToUpstreamFailure) -> None:
        state = self._states[name]
        if state.status not in (PackageStatus.PENDING, PackageStatus.READY):
            return
        if state.status == PackageStatus.READY:
            self._ready = [entry for entry in self._ready if entry[1] != name]
            heapq.heapify(self._ready)
        state.status = PackageStatus.SKIPPED
        state.error = _error_detail(reason)
        self._observer.package_finished(state.to_result())
