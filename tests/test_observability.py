"""Tests for the observability module.

Tests for metrics collection, timed operations and logging configuration.
"""
import json
import logging
import time
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest

from bearnotes.observability import (
    MetricsCollector,
    configure_logging,
    timed_operation,
)


@pytest.fixture
def metrics_file(tmp_path):
    return tmp_path / "metrics.json"


@pytest.fixture
def metrics_collector(metrics_file):
    return MetricsCollector(metrics_file=metrics_file, auto_save_interval=0)


@pytest.fixture
def bearnotes_logger():
    """The package logger, with handlers added by a test removed afterwards."""
    logger = logging.getLogger("bearnotes")
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    for handler in logger.handlers[:]:
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_record_successful_operation(self, metrics_collector):
        metrics_collector.record_operation("create_note", 12.5, success=True)
        data = metrics_collector.get_metrics()["create_note"]
        assert data["count"] == 1
        assert data["success_count"] == 1
        assert data["error_count"] == 0
        assert data["success_rate"] == 1.0
        assert data["avg_duration_ms"] == 12.5

    def test_record_failed_operation(self, metrics_collector):
        metrics_collector.record_operation("delete_category", 3.0, success=False, error="has notes")
        data = metrics_collector.get_metrics()["delete_category"]
        assert data["error_count"] == 1
        assert data["last_error"] == "has notes"
        assert data["last_error_time"] is not None

    def test_multiple_operations_aggregated(self, metrics_collector):
        for duration in (10.0, 20.0, 30.0):
            metrics_collector.record_operation("search", duration, success=True)
        data = metrics_collector.get_metrics()["search"]
        assert data["count"] == 3
        assert data["avg_duration_ms"] == 20.0
        assert data["min_duration_ms"] == 10.0
        assert data["max_duration_ms"] == 30.0

    def test_save_and_load_metrics(self, metrics_file):
        collector = MetricsCollector(metrics_file=metrics_file, auto_save_interval=0)
        collector.record_operation("create_note", 5.0, success=True)
        collector.record_operation("create_note", 7.0, success=False, error="boom")
        assert collector.save_metrics() is True

        saved = json.loads(metrics_file.read_text(encoding="utf-8"))
        assert saved["operations"]["create_note"]["count"] == 2

        reloaded = MetricsCollector(metrics_file=metrics_file, auto_save_interval=0)
        data = reloaded.get_metrics()["create_note"]
        assert data["count"] == 2
        assert data["error_count"] == 1
        assert data["last_error"] == "boom"

    def test_auto_save(self, metrics_file):
        collector = MetricsCollector(metrics_file=metrics_file, auto_save_interval=2)
        collector.record_operation("a", 1.0, success=True)
        assert not metrics_file.exists()
        collector.record_operation("a", 1.0, success=True)
        assert metrics_file.exists()

    def test_corrupt_metrics_file_is_ignored(self, metrics_file):
        metrics_file.write_text("{not json", encoding="utf-8")
        collector = MetricsCollector(metrics_file=metrics_file, auto_save_interval=0)
        assert collector.get_metrics() == {}

    def test_get_summary(self, metrics_collector):
        assert metrics_collector.get_summary()["overall_success_rate"] == 1.0
        metrics_collector.record_operation("a", 1.0, success=True)
        metrics_collector.record_operation("b", 1.0, success=False, error="x")
        summary = metrics_collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["total_errors"] == 1
        assert summary["overall_success_rate"] == 0.5
        assert summary["operations_tracked"] == ["a", "b"]

    def test_reset_metrics(self, metrics_collector):
        metrics_collector.record_operation("a", 1.0, success=True)
        metrics_collector.reset()
        assert metrics_collector.get_metrics() == {}


class TestTimedOperation:
    """Tests for timed_operation context manager."""

    def test_timed_operation_records_success(self, metrics_collector):
        with patch("bearnotes.observability.metrics", metrics_collector):
            with timed_operation("test_op", note_id="abc") as op:
                time.sleep(0.01)  # 10ms
                op["result_count"] = 3
        data = metrics_collector.get_metrics()["test_op"]
        assert data["success_count"] == 1
        assert data["avg_duration_ms"] >= 10
        assert len(op["correlation_id"]) == 8

    def test_timed_operation_records_failure(self, metrics_collector):
        with patch("bearnotes.observability.metrics", metrics_collector):
            with pytest.raises(ValueError):
                with timed_operation("test_op"):
                    raise ValueError("Test error")
        data = metrics_collector.get_metrics()["test_op"]
        assert data["error_count"] == 1
        assert data["last_error"] == "Test error"


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_creates_directory_and_returns_path(self, tmp_path, bearnotes_logger):
        log_dir = tmp_path / "logs"
        assert configure_logging(log_dir=log_dir, console=False) == log_dir
        assert log_dir.is_dir()
        assert any(
            isinstance(h, RotatingFileHandler) and h.baseFilename.endswith("bearnotes.log")
            for h in bearnotes_logger.handlers
        )

    def test_sets_level(self, tmp_path, bearnotes_logger):
        configure_logging(log_dir=tmp_path / "logs", level=logging.DEBUG, console=False)
        assert bearnotes_logger.level == logging.DEBUG

    def test_writes_log_file(self, tmp_path, bearnotes_logger):
        log_dir = tmp_path / "logs"
        configure_logging(log_dir=log_dir, console=False)
        logging.getLogger("bearnotes.services.note_service").info("hello from a service")
        for handler in bearnotes_logger.handlers:
            handler.flush()
        assert "hello from a service" in (log_dir / "bearnotes.log").read_text(encoding="utf-8")

    def test_handlers_not_duplicated(self, tmp_path, bearnotes_logger):
        log_dir = tmp_path / "logs"
        configure_logging(log_dir=log_dir, console=False)
        configure_logging(log_dir=log_dir, console=False)
        file_handlers = [
            h for h in bearnotes_logger.handlers
            if isinstance(h, RotatingFileHandler) and h.baseFilename.startswith(str(tmp_path.resolve()))
        ]
        assert len(file_handlers) == 1
