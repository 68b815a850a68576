"""Tests for logging setup, metrics and tracing."""
import logging

import pytest

from mnote.observability import (LOG_FILENAME, MetricsCollector,
                                 configure_logging, metrics, timed_operation,
                                 traced)


class TestConfigureLogging:
    def test_creates_log_file(self, tmp_path, clean_logging):
        log_dir = configure_logging(tmp_path / "logs", level=logging.INFO, console=False)
        logging.getLogger("mnote.test").info("hello log")
        for handler in logging.getLogger("mnote").handlers:
            handler.flush()
        assert "hello log" in (log_dir / LOG_FILENAME).read_text()

    def test_reconfigure_does_not_stack_handlers(self, tmp_path, clean_logging):
        configure_logging(tmp_path / "logs", console=True)
        configure_logging(tmp_path / "logs", console=True)
        ours = [h for h in logging.getLogger("mnote").handlers if getattr(h, "_mnote_handler", False)]
        assert len(ours) == 2

    def test_level_applied(self, tmp_path, clean_logging):
        configure_logging(tmp_path / "logs", level=logging.ERROR, console=False)
        assert logging.getLogger("mnote").level == logging.ERROR


class TestMetrics:
    def test_record_and_snapshot(self):
        collector = MetricsCollector()
        collector.record_operation("op", 10.0, True)
        collector.record_operation("op", 30.0, False, error="bad")
        snapshot = collector.get_metrics()["op"]
        assert snapshot["count"] == 2
        assert snapshot["success_count"] == 1
        assert snapshot["error_count"] == 1
        assert snapshot["avg_duration_ms"] == 20.0
        assert snapshot["max_duration_ms"] == 30.0
        assert snapshot["last_error"] == "bad"
        assert snapshot["last_error_time"] is not None

    def test_summary(self):
        collector = MetricsCollector()
        assert collector.summary() == ""
        collector.record_operation("sync", 10.0, True)
        collector.record_operation("sync", 20.0, False, error="x")
        collector.record_operation("add_note", 1.0, True)
        assert collector.summary().splitlines() == [
            "add_note: 1 runs, 0 failed, avg 1.0ms",
            "sync: 2 runs, 1 failed, avg 15.0ms",
        ]

    def test_reset(self):
        collector = MetricsCollector()
        collector.record_operation("op", 1.0, True)
        collector.reset()
        assert collector.get_metrics() == {}


class TestTimedOperation:
    def test_success(self):
        with timed_operation("unit_op", book="work") as op:
            op["result_count"] = 3
        assert metrics.get_metrics()["unit_op"]["success_count"] == 1

    def test_failure_recorded_and_reraised(self):
        with pytest.raises(ValueError):
            with timed_operation("unit_fail"):
                raise ValueError("nope")
        assert metrics.get_metrics()["unit_fail"]["last_error"] == "nope"


class TestTraced:
    def test_traced_method(self):
        class Thing:
            @traced("thing_op")
            def run(self, book, items):
                return items

        assert Thing().run("work", [1, 2]) == [1, 2]
        assert metrics.get_metrics()["thing_op"]["count"] == 1

    def test_default_name(self):
        @traced()
        def plain():
            return None

        plain()
        assert "plain" in metrics.get_metrics()
