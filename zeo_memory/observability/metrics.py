"""
Metrics collection for the memory engine.

Counters and histograms tracking operation latency, failures,
embedding fallbacks and cache effectiveness.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple


class MetricType(str, Enum):
    """Type of metric."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


# Recent samples kept per label set for percentiles
DEFAULT_SAMPLE_WINDOW = 1000

LabelKey = Tuple[Tuple[str, str], ...]


def _label_key(labels: Optional[Dict[str, str]]) -> LabelKey:
    return tuple(sorted((labels or {}).items()))


@dataclass
class SeriesStats:
    """Running aggregates for one label set."""
    count: int = 0
    total: float = 0.0
    last: Optional[float] = None
    samples: Deque[float] = field(default_factory=deque)
    
    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.last = value
        self.samples.append(value)


@dataclass
class Metric:
    """
    A tracked metric.
    
    Only running count and sum are kept per label set, plus the most
    recent ``sample_window`` values for percentiles, so memory stays
    flat however many operations are recorded.
    """
    
    name: str
    type: MetricType
    description: str = ""
    unit: str = ""
    sample_window: int = DEFAULT_SAMPLE_WINDOW
    series: Dict[LabelKey, SeriesStats] = field(default_factory=dict)
    
    def record(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = _label_key(labels)
        stats = self.series.get(key)
        if stats is None:
            stats = SeriesStats(samples=deque(maxlen=self.sample_window))
            self.series[key] = stats
        stats.add(value)
    
    def matching(self, labels: Optional[Dict[str, str]] = None) -> List[SeriesStats]:
        """Series whose labels include every given label."""
        wanted = (labels or {}).items()
        return [
            stats for key, stats in self.series.items()
            if all(pair in key for pair in wanted)
        ]
    
    @property
    def count(self) -> int:
        return sum(stats.count for stats in self.series.values())
    
    def get_sum(self, labels: Optional[Dict[str, str]] = None) -> float:
        return sum(stats.total for stats in self.matching(labels))
    
    def get_average(self, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        series = self.matching(labels)
        count = sum(stats.count for stats in series)
        if count:
            return sum(stats.total for stats in series) / count
        return None
    
    def get_percentile(self, percentile: float) -> Optional[float]:
        """Percentile (0-100) over the recent sample window."""
        sorted_values = sorted(v for stats in self.series.values() for v in stats.samples)
        if not sorted_values:
            return None
        index = int(len(sorted_values) * percentile / 100)
        return sorted_values[min(index, len(sorted_values) - 1)]
    
    def reset(self) -> None:
        self.series.clear()
    
    def to_dict(self) -> Dict[str, Any]:
        base = {
            "name": self.name,
            "type": self.type.value,
            "description": self.description,
            "unit": self.unit,
            "value_count": self.count,
        }
        
        if self.type == MetricType.COUNTER:
            base["sum"] = self.get_sum()
        elif self.type == MetricType.GAUGE:
            latest = [stats.last for stats in self.series.values()]
            base["current"] = latest[-1] if latest else None
        elif self.type == MetricType.HISTOGRAM:
            base["average"] = self.get_average()
            base["p50"] = self.get_percentile(50)
            base["p95"] = self.get_percentile(95)
        
        return base


class MetricsCollector:
    """
    Central collector for memory engine metrics.
    
    Usage:
        collector = MetricsCollector()
        
        with Timer(collector, "store"):
            engine.store("Cats are mammals")
        
        collector.get_summary()
    """
    
    OPERATION_DURATION = "memory_operation_duration_seconds"
    OPERATIONS_TOTAL = "memory_operations_total"
    OPERATION_ERRORS = "memory_operation_errors_total"
    EMBEDDING_FALLBACKS = "embedding_fallbacks_total"
    CACHE_HITS = "cache_hits_total"
    CACHE_MISSES = "cache_misses_total"
    
    def __init__(self, prefix: str = "zeo"):
        self.prefix = prefix
        self._metrics: Dict[str, Metric] = {}
        self._lock = threading.Lock()
        self._setup_default_metrics()
    
    def _setup_default_metrics(self) -> None:
        self._create_metric(
            self.OPERATION_DURATION,
            MetricType.HISTOGRAM,
            "Memory operation duration in seconds",
            "seconds",
        )
        self._create_metric(
            self.OPERATIONS_TOTAL,
            MetricType.COUNTER,
            "Total number of memory operations",
        )
        self._create_metric(
            self.OPERATION_ERRORS,
            MetricType.COUNTER,
            "Total number of failed memory operations",
        )
        self._create_metric(
            self.EMBEDDING_FALLBACKS,
            MetricType.COUNTER,
            "Embeddings produced by the deterministic fallback",
        )
        self._create_metric(
            self.CACHE_HITS,
            MetricType.COUNTER,
            "Read-through cache hits",
        )
        self._create_metric(
            self.CACHE_MISSES,
            MetricType.COUNTER,
            "Read-through cache misses",
        )
    
    def _create_metric(
        self,
        name: str,
        metric_type: MetricType,
        description: str = "",
        unit: str = "",
    ) -> Metric:
        full_name = f"{self.prefix}_{name}"
        metric = Metric(
            name=full_name,
            type=metric_type,
            description=description,
            unit=unit,
        )
        self._metrics[full_name] = metric
        return metric
    
    def get_metric(self, name: str) -> Optional[Metric]:
        return self._metrics.get(f"{self.prefix}_{name}")
    
    def record_operation(
        self,
        action: str,
        duration_seconds: float,
        success: bool = True,
    ) -> None:
        """Record one engine operation."""
        with self._lock:
            self.get_metric(self.OPERATION_DURATION).record(
                duration_seconds, {"action": action}
            )
            self.get_metric(self.OPERATIONS_TOTAL).record(
                1, {"action": action, "status": "success" if success else "error"}
            )
            if not success:
                self.get_metric(self.OPERATION_ERRORS).record(1, {"action": action})
    
    def increment_counter(
        self,
        name: str,
        value: float = 1.0,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        with self._lock:
            metric = self.get_metric(name)
            if metric is None:
                metric = self._create_metric(name, MetricType.COUNTER)
            metric.record(value, labels)
    
    def get_all_metrics(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: metric.to_dict() for name, metric in self._metrics.items()}
    
    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of key metrics."""
        with self._lock:
            duration = self.get_metric(self.OPERATION_DURATION)
            operations = self.get_metric(self.OPERATIONS_TOTAL).get_sum()
            errors = self.get_metric(self.OPERATION_ERRORS).get_sum()
            
            return {
                "total_operations": int(operations),
                "total_errors": int(errors),
                "success_rate": (operations - errors) / operations * 100 if operations > 0 else 0,
                "avg_duration_seconds": duration.get_average() or 0,
                "p95_duration_seconds": duration.get_percentile(95) or 0,
                "embedding_fallbacks": int(self.get_metric(self.EMBEDDING_FALLBACKS).get_sum()),
                "cache_hits": int(self.get_metric(self.CACHE_HITS).get_sum()),
                "cache_misses": int(self.get_metric(self.CACHE_MISSES).get_sum()),
            }
    
    def clear(self) -> None:
        """Clear all metric values."""
        with self._lock:
            for metric in self._metrics.values():
                metric.reset()


class Timer:
    """
    Context manager timing one engine operation.
    
    The operation counts as failed if the block raises.
    """
    
    def __init__(self, collector: MetricsCollector, action: str):
        self.collector = collector
        self.action = action
        self.start_time: float = 0
        self.duration: float = 0
    
    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time
        self.collector.record_operation(self.action, self.duration, success=exc_type is None)
        return False
