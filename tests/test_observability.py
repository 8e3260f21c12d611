"""Tests for the observability module."""

import json
import logging
import pytest
import time
from io import StringIO

from zeo_memory.observability import (
    ContextManager,
    ContextScope,
    LogLevel,
    MetricsCollector,
    MetricType,
    RequestContext,
    StructuredLogger,
    Timer,
    configure_logging,
)
from zeo_memory.observability.logging import ROOT_LOGGER_NAME, LogEvent
from zeo_memory.observability.metrics import DEFAULT_SAMPLE_WINDOW, Metric


@pytest.fixture
def log_output():
    """Capture structured JSON log lines from the package logger."""
    output = StringIO()
    logger = configure_logging(level=LogLevel.DEBUG, json_output=True, output=output)
    yield output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def _lines(output):
    return [json.loads(line) for line in output.getvalue().splitlines() if line]


class TestMetricsCollector:
    """Tests for the MetricsCollector class."""
    
    def test_default_metrics(self):
        """Test default metrics are created."""
        collector = MetricsCollector()
        
        assert collector.get_metric(MetricsCollector.OPERATION_DURATION) is not None
        assert collector.get_metric(MetricsCollector.CACHE_HITS).type == MetricType.COUNTER
        assert collector.get_metric(MetricsCollector.OPERATION_DURATION).name == (
            "zeo_memory_operation_duration_seconds"
        )
    
    def test_record_operation(self):
        """Test recording successful and failed operations."""
        collector = MetricsCollector()
        
        collector.record_operation("store", 0.5, success=True)
        collector.record_operation("store", 1.5, success=False)
        collector.record_operation("search", 0.1)
        
        summary = collector.get_summary()
        assert summary["total_operations"] == 3
        assert summary["total_errors"] == 1
        
        duration = collector.get_metric(MetricsCollector.OPERATION_DURATION)
        assert duration.get_average({"action": "store"}) == 1.0
        assert duration.get_sum({"action": "search"}) == 0.1
    
    def test_increment_counter(self):
        """Unknown counters are created on first use."""
        collector = MetricsCollector()
        
        collector.increment_counter("custom_total")
        collector.increment_counter("custom_total", 2)
        
        assert collector.get_metric("custom_total").get_sum() == 3
    
    def test_summary_empty(self):
        """An idle collector reports zeros."""
        summary = MetricsCollector().get_summary()
        
        assert summary["total_operations"] == 0
        assert summary["success_rate"] == 0
        assert summary["avg_duration_seconds"] == 0
    
    def test_memory_bounded(self):
        """Long runs keep aggregates exact while samples stay capped."""
        collector = MetricsCollector()
        
        for _ in range(3 * DEFAULT_SAMPLE_WINDOW):
            collector.record_operation("retrieve", 0.5)
        
        duration = collector.get_metric(MetricsCollector.OPERATION_DURATION)
        samples = sum(len(stats.samples) for stats in duration.series.values())
        assert samples == DEFAULT_SAMPLE_WINDOW
        assert duration.count == 3 * DEFAULT_SAMPLE_WINDOW
        assert duration.get_average({"action": "retrieve"}) == 0.5
        assert collector.get_summary()["total_operations"] == 3 * DEFAULT_SAMPLE_WINDOW
    
    def test_label_sets_share_one_series(self):
        """Repeated labels aggregate into a single series."""
        collector = MetricsCollector()
        
        for _ in range(50):
            collector.record_operation("store", 0.1)
        
        total = collector.get_metric(MetricsCollector.OPERATIONS_TOTAL)
        assert len(total.series) == 1
        assert total.get_sum({"status": "success"}) == 50
    
    def test_clear(self):
        """Test clearing metric values."""
        collector = MetricsCollector()
        collector.record_operation("store", 0.1)
        
        collector.clear()
        
        assert collector.get_summary()["total_operations"] == 0
    
    def test_get_all_metrics(self):
        """Every metric is exported as a dict."""
        metrics = MetricsCollector(prefix="test").get_all_metrics()
        
        assert "test_cache_misses_total" in metrics
        assert metrics["test_cache_misses_total"]["sum"] == 0


class TestMetric:
    """Tests for individual metrics."""
    
    def test_percentile(self):
        """Percentiles come from sorted values."""
        metric = Metric(name="m", type=MetricType.HISTOGRAM)
        for value in range(1, 101):
            metric.record(float(value))
        
        assert metric.get_percentile(50) == 51.0
        assert metric.get_percentile(95) == 96.0
        assert metric.to_dict()["average"] == 50.5
    
    def test_label_matching(self):
        """Values are filtered by labels."""
        metric = Metric(name="m", type=MetricType.COUNTER)
        metric.record(1, {"action": "store"})
        metric.record(2, {"action": "search"})
        
        assert metric.get_sum({"action": "store"}) == 1
        assert metric.get_sum() == 3
        assert metric.get_average({"action": "delete"}) is None


class TestTimer:
    """Tests for the Timer context manager."""
    
    def test_records_duration(self):
        """Test timing a block."""
        collector = MetricsCollector()
        
        with Timer(collector, "store") as timer:
            time.sleep(0.01)
        
        assert timer.duration >= 0.01
        assert collector.get_summary()["total_operations"] == 1
    
    def test_records_failure(self):
        """Exceptions count as failed operations and propagate."""
        collector = MetricsCollector()
        
        with pytest.raises(ValueError):
            with Timer(collector, "store"):
                raise ValueError("boom")
        
        assert collector.get_summary()["total_errors"] == 1


class TestRequestContext:
    """Tests for request context propagation."""
    
    def test_create_context(self):
        """Test creating a context."""
        context = RequestContext(action="store")
        
        assert len(context.request_id) == 16
        assert context.to_dict()["action"] == "store"
    
    def test_set_attribute(self):
        """Test setting context attribute."""
        context = RequestContext()
        context.set_attribute("key", "value")
        
        assert context.to_dict()["attributes"]["key"] == "value"
    
    def test_context_scope(self):
        """Test context scope restores the previous context."""
        original = RequestContext(action="outer")
        ContextManager.set_current(original)
        
        inner = RequestContext(action="inner")
        with ContextScope(inner):
            assert ContextManager.get_current() is inner
        
        assert ContextManager.get_current() is original
        ContextManager.set_current(None)


class TestStructuredLogging:
    """Tests for structured logging."""
    
    def test_log_levels(self):
        """Test log level conversion."""
        assert LogLevel.DEBUG.levelno == 10
        assert LogLevel.INFO.levelno == 20
        assert LogLevel.WARNING.levelno == 30
        assert LogLevel.ERROR.levelno == 40
        assert LogLevel.CRITICAL.levelno == 50
    
    def test_log_event_as_text(self):
        """Text lines put attributes and the short request id after the message."""
        event = LogEvent(
            level="INFO",
            message="Memory stored",
            logger="zeo_memory.engine",
            request_id="abc12345678901234",
            action="store",
            attributes={"memory_id": "mem_1"},
        )
        
        text = event.as_text()
        
        assert " INFO zeo_memory.engine: Memory stored memory_id=mem_1" in text
        assert text.endswith("action=store request=abc12345")
        assert text.split(" ")[0].endswith("Z")
    
    def test_json_output(self, log_output):
        """Attributes and the request id appear in JSON lines."""
        logger = StructuredLogger(f"{ROOT_LOGGER_NAME}.test")
        
        with ContextScope(RequestContext(request_id="req-1", action="store")):
            logger.info("Memory stored", memory_id="mem_1")
        
        line = _lines(log_output)[-1]
        assert line["message"] == "Memory stored"
        assert line["request_id"] == "req-1"
        assert line["action"] == "store"
        assert line["attributes"] == {"memory_id": "mem_1"}
    
    def test_exception_logged(self, log_output):
        """Warnings can carry an exception traceback."""
        logger = StructuredLogger(f"{ROOT_LOGGER_NAME}.test")
        
        try:
            raise RuntimeError("cache down")
        except RuntimeError as e:
            logger.warning("Cache write failed", exception=e, key="k")
        
        line = _lines(log_output)[-1]
        assert line["level"] == "WARNING"
        assert "RuntimeError: cache down" in line["exception"]
    
    def test_module_loggers_use_handler(self, log_output):
        """Plain module loggers flow through the structured handler."""
        logging.getLogger(f"{ROOT_LOGGER_NAME}.cache").warning("Cache read failed")
        
        assert _lines(log_output)[-1]["logger"] == "zeo_memory.cache"
    
    def test_configure_replaces_handler(self):
        """Reconfiguring does not stack handlers."""
        first = StringIO()
        second = StringIO()
        configure_logging(output=first)
        logger = configure_logging(output=second)
        
        try:
            StructuredLogger(ROOT_LOGGER_NAME).info("once")
            
            assert first.getvalue() == ""
            assert len(second.getvalue().splitlines()) == 1
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)
    
    def test_engine_operations_logged(self, engine, log_output):
        """Engine operations log with the request context."""
        engine.execute("store", content="logged memory")
        
        lines = [line for line in _lines(log_output) if line["message"] == "Memory stored"]
        assert lines
        assert lines[0]["action"] == "store"
        assert "request_id" in lines[0]
