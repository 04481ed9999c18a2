"""
Runner - the entry point that wires Store -> Graph -> Cycle gate -> Scheduler -> Aggregator.

Usage:
    from monorch.runner import run, run_workspace
    from monorch.schemas import RunOptions, FailurePolicy

    summary = run(descriptors, action, RunOptions(concurrency=4))
    summary = run_workspace(config, CommandAction("make test"))
"""

import logging
from typing import Iterable, Optional, Sequence

from monorch.aggregator import aggregate
from monorch.config import WorkspaceConfig
from monorch.cycles import detect_cycles
from monorch.errors import CyclicDependencyError
from monorch.events import RunObserver
from monorch.graph import build_graph
from monorch.scheduler import Action, Scheduler
from monorch.schemas import PackageDescriptor, RunOptions, RunSummary
from monorch.store import PackageStore, filter_packages

logger = logging.getLogger(__name__)


def run(
    descriptors: Iterable[PackageDescriptor],
    action: Action,
    options: Optional[RunOptions] = None,
    observer: Optional[RunObserver] = None,
) -> RunSummary:
    """
    Run an action across packages in dependency order.

    Args:
        descriptors: Packages to run (dependencies outside this set are external)
        action: Callable invoked with each descriptor; raising marks the package failed
        options: Concurrency limit and failure policy
        observer: Receives progress events

    Returns:
        RunSummary of every package's final status

    Raises:
        CyclicDependencyError: If the graph has a cycle (zero actions invoked)
    """
    options = options or RunOptions()
    observer = observer or RunObserver()
    descriptors = list(descriptors)

    graph = build_graph(descriptors)
    cycles = detect_cycles(graph)
    if cycles:
        observer.cycle_detected(cycles)
        raise CyclicDependencyError(cycles)

    scheduler = Scheduler(
        graph,
        {d.name: d for d in descriptors},
        options=options,
        observer=observer,
    )
    results = scheduler.run(action)

    summary = aggregate(results, scheduler.batches, options.failure_policy)
    observer.run_finished(summary)
    return summary


def run_workspace(
    config: WorkspaceConfig,
    action: Action,
    options: Optional[RunOptions] = None,
    observer: Optional[RunObserver] = None,
    scope: Optional[Sequence[str]] = None,
    ignore: Optional[Sequence[str]] = None,
) -> RunSummary:
    """
    Discover the workspace's packages and run an action across them.

    Args:
        config: Loaded workspace configuration
        action: Per-package action
        options: Overrides config concurrency / failure policy when given
        observer: Receives progress events
        scope: Package name patterns to include
        ignore: Package name patterns to exclude

    Raises:
        ScanError: If package discovery fails (zero actions invoked)
        CyclicDependencyError: If the graph has a cycle (zero actions invoked)
    """
    descriptors = PackageStore(config.root).load(config.packages)
    descriptors = filter_packages(descriptors, scope=scope, ignore=ignore)
    if options is None:
        options = config.run_options()
    return run(descriptors, action, options, observer)
