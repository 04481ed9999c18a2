"""Tests for monorch.scheduler.

Tests static planning, dependency ordering, streaming admission,
concurrency limits, failure propagation and cancellation.
"""

import sys
import threading
import time

import pytest

from monorch.errors import ActionError, CyclicDependencyError
from monorch.events import RunObserver
from monorch.graph import DependencyGraph, build_graph
from monorch.scheduler import Scheduler, plan_batches, plan_order
from monorch.schemas import PackageStatus, RunOptions


# =============================================================================
# HELPERS
# =============================================================================


class Recorder:
    """Thread-safe action that records start/finish times per package."""

    def __init__(self, fail=(), delay=0.0):
        self.fail = set(fail)
        self.delay = delay
        self.lock = threading.Lock()
        self.calls = []
        self.intervals = {}
        self.in_flight = 0
        self.max_in_flight = 0

    def __call__(self, descriptor):
        with self.lock:
            self.calls.append(descriptor.name)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        start = time.monotonic()
        try:
            if self.delay:
                time.sleep(self.delay)
            if descriptor.name in self.fail:
                raise RuntimeError(f"{descriptor.name} broke")
            return f"built {descriptor.name}"
        finally:
            with self.lock:
                self.in_flight -= 1
                self.intervals[descriptor.name] = (start, time.monotonic())


class EventLog(RunObserver):
    def __init__(self):
        self.events = []

    def package_started(self, descriptor):
        self.events.append(("started", descriptor.name))

    def package_finished(self, result):
        self.events.append(("finished", result.package, result.status))

    def cycle_detected(self, cycles):
        self.events.append(("cycles", cycles))


def make_scheduler(descriptors, **kwargs):
    graph = build_graph(descriptors)
    return Scheduler(graph, {d.name: d for d in descriptors}, **kwargs)


@pytest.fixture
def diamond(descriptor):
    return [
        descriptor("core"),
        descriptor("ui", deps=["core"]),
        descriptor("api", deps=["core"]),
        descriptor("app", deps=["ui", "api"]),
    ]


# =============================================================================
# STATIC PLAN
# =============================================================================


class TestPlanBatches:
    """Tests for plan_batches / plan_order."""

    def test_levels(self, diamond):
        batches = plan_batches(build_graph(diamond))
        assert batches == [frozenset({"core"}), frozenset({"api", "ui"}), frozenset({"app"})]

    def test_concurrency_splits_levels(self, diamond):
        batches = plan_batches(build_graph(diamond), concurrency=1)
        assert batches == [frozenset({"core"}), frozenset({"api"}), frozenset({"ui"}), frozenset({"app"})]

    def test_union_is_every_node_once(self, descriptor):
        descriptors = [descriptor(f"p{i}", deps=[f"p{j}" for j in range(i) if (i + j) % 3 == 0]) for i in range(12)]
        graph = build_graph(descriptors)
        batches = plan_batches(graph, concurrency=3)
        flat = [name for batch in batches for name in batch]
        assert sorted(flat) == sorted(graph.nodes)
        assert len(flat) == len(set(flat))

    def test_dependencies_in_strictly_earlier_batches(self, descriptor):
        descriptors = [descriptor(f"p{i}", deps=[f"p{j}" for j in range(i) if (i * j) % 5 == 1]) for i in range(15)]
        graph = build_graph(descriptors)
        order = plan_order(graph)
        for name, deps in graph.dependencies.items():
            for dep in deps:
                assert order[dep] < order[name]

    def test_cycle_rejected(self):
        graph = DependencyGraph.from_edges({"a": ["b"], "b": ["a"]})
        with pytest.raises(CyclicDependencyError) as exc_info:
            plan_batches(graph)
        assert exc_info.value.cycles == [("a", "b")]

    def test_empty_graph(self):
        assert plan_batches(DependencyGraph.from_edges({})) == []


# =============================================================================
# ORDERING
# =============================================================================


class TestOrdering:
    """A package never starts before its dependencies succeeded."""

    def test_all_succeed(self, diamond):
        action = Recorder()
        results = make_scheduler(diamond).run(action)

        assert {r.package: r.status for r in results} == {
            "core": PackageStatus.SUCCEEDED,
            "ui": PackageStatus.SUCCEEDED,
            "api": PackageStatus.SUCCEEDED,
            "app": PackageStatus.SUCCEEDED,
        }
        assert sorted(action.calls) == ["api", "app", "core", "ui"]

    def test_dependencies_finish_before_dependents_start(self, diamond):
        action = Recorder(delay=0.02)
        make_scheduler(diamond).run(action)

        graph = build_graph(diamond)
        for name, deps in graph.dependencies.items():
            for dep in deps:
                assert action.intervals[dep][1] <= action.intervals[name][0]

    def test_results_in_plan_order(self, diamond):
        results = make_scheduler(diamond).run(Recorder())
        assert [r.package for r in results] == ["core", "api", "ui", "app"]
        assert [r.batch_index for r in results] == [0, 1, 1, 2]

    def test_outputs_recorded(self, diamond):
        results = make_scheduler(diamond).run(Recorder())
        assert {r.package: r.output for r in results}["app"] == "built app"

    def test_admission_batches_respect_dependencies(self, descriptor):
        descriptors = [descriptor(f"p{i}", deps=[f"p{j}" for j in range(i) if (i + 2 * j) % 4 == 0]) for i in range(10)]
        scheduler = make_scheduler(descriptors, options=RunOptions(concurrency=3))
        scheduler.run(Recorder(delay=0.005))

        graph = build_graph(descriptors)
        position = {name: i for i, batch in enumerate(scheduler.batches) for name in batch}
        assert sorted(position) == sorted(graph.nodes)
        for name, deps in graph.dependencies.items():
            for dep in deps:
                assert position[dep] < position[name]

    def test_streaming_admits_as_soon_as_ready(self, descriptor):
        """'after' depends only on 'fast'; it must start while 'slow' still runs."""
        after_started = threading.Event()

        def action(d):
            if d.name == "slow":
                return after_started.wait(timeout=5)
            if d.name == "after":
                after_started.set()
            return None

        descriptors = [descriptor("slow"), descriptor("fast"), descriptor("after", deps=["fast"])]
        results = {r.package: r for r in make_scheduler(descriptors).run(action)}

        assert results["slow"].output is True
        assert results["after"].status == PackageStatus.SUCCEEDED

    def test_scheduler_runs_once(self, diamond):
        scheduler = make_scheduler(diamond)
        scheduler.run(Recorder())
        with pytest.raises(RuntimeError):
            scheduler.run(Recorder())

    def test_missing_descriptor_rejected(self, descriptor):
        graph = build_graph([descriptor("a"), descriptor("b")])
        with pytest.raises(ValueError, match="No descriptor"):
            Scheduler(graph, {"a": descriptor("a")})


# =============================================================================
# CONCURRENCY
# =============================================================================


class TestConcurrency:
    """Tests for the concurrency limit."""

    def test_limit_bounds_in_flight(self, descriptor):
        descriptors = [descriptor(f"p{i}") for i in range(8)]
        action = Recorder(delay=0.03)
        make_scheduler(descriptors, options=RunOptions(concurrency=2)).run(action)
        assert action.max_in_flight <= 2
        assert len(action.calls) == 8

    def test_limit_one_is_strictly_serial(self, diamond, descriptor):
        descriptors = diamond + [descriptor("solo")]
        action = Recorder(delay=0.01)
        scheduler = make_scheduler(descriptors, options=RunOptions(concurrency=1))
        scheduler.run(action)

        intervals = sorted(action.intervals.values())
        for (_, prev_end), (next_start, _) in zip(intervals, intervals[1:]):
            assert prev_end <= next_start
        assert all(len(batch) == 1 for batch in scheduler.batches)
        assert action.max_in_flight == 1

    def test_unbounded_runs_independent_packages_together(self, descriptor):
        descriptors = [descriptor(f"p{i}") for i in range(5)]
        barrier = threading.Barrier(5, timeout=5)

        def action(d):
            barrier.wait()
            return d.name

        results = make_scheduler(descriptors).run(action)
        assert all(r.status == PackageStatus.SUCCEEDED for r in results)


# =============================================================================
# FAILURES
# =============================================================================


class TestFailures:
    """Failures skip dependents and leave independent subgraphs alone."""

    def test_dependents_skipped(self, descriptor):
        descriptors = [
            descriptor("a"),
            descriptor("b", deps=["a"]),
            descriptor("c", deps=["b"]),
            descriptor("d"),
        ]
        action = Recorder(fail={"a"})
        results = {r.package: r for r in make_scheduler(descriptors).run(action)}

        assert results["a"].status == PackageStatus.FAILED
        assert results["b"].status == PackageStatus.SKIPPED
        assert results["c"].status == PackageStatus.SKIPPED
        assert results["d"].status == PackageStatus.SUCCEEDED
        assert "b" not in action.calls
        assert "c" not in action.calls

    def test_failure_detail(self, descriptor):
        results = make_scheduler([descriptor("a")]).run(Recorder(fail={"a"}))
        error = results[0].error
        assert error["type"] == "ActionError"
        assert error["cause"] == "RuntimeError"
        assert "a broke" in error["message"]

    def test_skip_detail_names_upstream(self, descriptor):
        descriptors = [descriptor("a"), descriptor("b", deps=["a"]), descriptor("c", deps=["b"])]
        results = {r.package: r for r in make_scheduler(descriptors).run(Recorder(fail={"a"}))}
        assert results["c"].error["type"] == "SkippedDueToUpstreamFailure"
        assert results["c"].error["upstream"] == "a"
        assert results["c"].started_at is None

    def test_action_error_passes_through(self, descriptor):
        def action(d):
            raise ActionError(d.name, "exit 3", exit_code=3, output="stderr text")

        (result,) = make_scheduler([descriptor("a")]).run(action)
        assert result.error["exit_code"] == 3
        assert result.error["output"] == "stderr text"
        assert "cause" not in result.error

    def test_diamond_with_one_failing_branch(self, diamond):
        results = {r.package: r.status for r in make_scheduler(diamond).run(Recorder(fail={"ui"}))}
        assert results == {
            "core": PackageStatus.SUCCEEDED,
            "ui": PackageStatus.FAILED,
            "api": PackageStatus.SUCCEEDED,
            "app": PackageStatus.SKIPPED,
        }

    def test_running_siblings_finish(self, descriptor):
        """A failure does not interrupt actions already in flight."""
        descriptors = [descriptor("bad"), descriptor("slow")]
        action = Recorder(fail={"bad"}, delay=0.05)
        results = {r.package: r.status for r in make_scheduler(descriptors).run(action)}
        assert results == {"bad": PackageStatus.FAILED, "slow": PackageStatus.SUCCEEDED}

    def test_system_exit_in_action_fails_the_package(self, descriptor):
        descriptors = [descriptor("a"), descriptor("b", deps=["a"]), descriptor("c")]

        def action(d):
            if d.name == "a":
                sys.exit(2)
            return "ok"

        results = {}

        def drive():
            results.update((r.package, r) for r in make_scheduler(descriptors).run(action))

        worker = threading.Thread(target=drive, daemon=True)
        worker.start()
        worker.join(timeout=5)
        assert not worker.is_alive(), "run did not return"

        assert results["a"].status == PackageStatus.FAILED
        assert results["a"].error["cause"] == "SystemExit"
        assert "action raised SystemExit: 2" in results["a"].error["message"]
        assert results["b"].status == PackageStatus.SKIPPED
        assert results["c"].status == PackageStatus.SUCCEEDED

    def test_keyboard_interrupt_in_action_fails_the_package(self, descriptor):
        def action(d):
            raise KeyboardInterrupt

        (result,) = make_scheduler([descriptor("a")]).run(action)
        assert result.status == PackageStatus.FAILED
        assert result.error["cause"] == "KeyboardInterrupt"
        assert "action raised KeyboardInterrupt" in result.error["message"]


# =============================================================================
# CANCELLATION AND EVENTS
# =============================================================================


class TestCancellation:
    """Tests for Scheduler.cancel."""

    def test_cancel_skips_unstarted(self, descriptor):
        descriptors = [descriptor("a"), descriptor("b"), descriptor("c")]
        scheduler = make_scheduler(descriptors, options=RunOptions(concurrency=1))

        def action(d):
            scheduler.cancel()
            return d.name

        results = {r.package: r for r in scheduler.run(action)}

        assert results["a"].status == PackageStatus.SUCCEEDED
        assert results["b"].status == PackageStatus.SKIPPED
        assert results["c"].status == PackageStatus.SKIPPED
        assert results["b"].error["message"] == "Package 'b' skipped: run cancelled"
        assert scheduler.cancelled


class TestEvents:
    """Observer events."""

    def test_started_precedes_finished(self, diamond):
        log = EventLog()
        make_scheduler(diamond, observer=log).run(Recorder())

        for name in ("core", "ui", "api", "app"):
            started = log.events.index(("started", name))
            finished = log.events.index(("finished", name, PackageStatus.SUCCEEDED))
            assert started < finished

    def test_skips_reported_without_start(self, descriptor):
        log = EventLog()
        descriptors = [descriptor("a"), descriptor("b", deps=["a"])]
        make_scheduler(descriptors, observer=log).run(Recorder(fail={"a"}))

        assert ("finished", "b", PackageStatus.SKIPPED) in log.events
        assert ("started", "b") not in log.events

    def test_cycle_reported_and_nothing_runs(self, descriptor):
        log = EventLog()
        action = Recorder()
        descriptors = [descriptor("a", deps=["b"]), descriptor("b", deps=["a"])]

        with pytest.raises(CyclicDependencyError):
            make_scheduler(descriptors, observer=log).run(action)

        assert action.calls == []
        assert log.events == [("cycles", [("a", "b")])]
