"""Tests for monorch.events observers and logging setup."""

import json
import logging
import sys
from datetime import datetime, timezone

from monorch.events import CompositeObserver, ConsoleObserver, LoggingObserver, RunObserver
from monorch.schemas import ExecutionResult, PackageStatus, RunSummary
from monorch.utils import StructuredFormatter, format_duration, print_error, setup_logging


NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def failed(package="a"):
    return ExecutionResult(
        package=package,
        status=PackageStatus.FAILED,
        started_at=NOW,
        completed_at=NOW,
        error={"type": "ActionError", "message": f"Package '{package}' failed: boom"},
    )


class TestCompositeObserver:
    def test_fans_out(self, descriptor):
        calls = []

        class Tap(RunObserver):
            def __init__(self, tag):
                self.tag = tag

            def package_started(self, d):
                calls.append((self.tag, d.name))

        CompositeObserver([Tap(1), Tap(2)]).package_started(descriptor("a"))
        assert calls == [(1, "a"), (2, "a")]


class TestLoggingObserver:
    def test_failure_logged_as_error(self, caplog):
        with caplog.at_level(logging.INFO, logger="monorch.run"):
            LoggingObserver().package_finished(failed())
        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.event == "package_finished"
        assert record.package == "a"

    def test_cycles_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="monorch.run"):
            LoggingObserver().cycle_detected([("a", "b")])
        assert "1 dependency cycle" in caplog.text


class TestConsoleObserver:
    def test_summary_mentions_first_failure(self, capsys):
        summary = RunSummary(results=(failed("a"),), first_failure=failed("a"))
        ConsoleObserver().run_finished(summary)
        out = capsys.readouterr().out
        assert "0 succeeded, 1 failed, 0 skipped" in out
        assert "First failure: a" in out


class TestLoggingSetup:
    def test_structured_file_log(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        logger = setup_logging(log_file, log_format="structured", console_output=False)
        logger.info("hello", extra={"event": "test_event", "package": "core"})
        for handler in logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["message"] == "hello"
        assert entry["event"] == "test_event"
        assert entry["package"] == "core"

    def test_plain_file_log_prefixes_package(self, tmp_path):
        log_file = tmp_path / "run.log"
        logger = setup_logging(log_file, log_format="pretty", console_output=False)
        logger.info("built", extra={"package": "core"})
        logger.info("done")
        for handler in logger.handlers:
            handler.flush()

        lines = log_file.read_text().splitlines()
        assert lines[0].endswith("INFO - [core] built")
        assert lines[1].endswith("INFO - done")

    def test_console_logs_go_to_stderr(self, capsys):
        logger = setup_logging(None, console_output=True)
        try:
            logger.info("scheduling")
        finally:
            logger.handlers = []
        captured = capsys.readouterr()
        assert "scheduling" in captured.err
        assert captured.out == ""

    def test_no_file_no_console(self):
        logger = setup_logging(None, console_output=False)
        assert logger.handlers == []

    def test_formatter_includes_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord("monorch", logging.ERROR, __file__, 1, "oops", None, sys.exc_info())
        data = json.loads(StructuredFormatter().format(record))
        assert "ValueError: bad" in data["exception"]


def test_format_duration():
    assert format_duration(0.3) == "0.3s"
    assert format_duration(45) == "45s"
    assert format_duration(83) == "1m 23s"
    assert format_duration(3725) == "1h 2m 5s"


def test_console_messages_are_not_markup(capsys):
    print_error("Package 'a' failed: 'echo [/x]' exited with code 1")
    assert "'echo [/x]' exited with code 1" in capsys.readouterr().out
