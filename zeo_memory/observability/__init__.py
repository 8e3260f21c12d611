"""
Observability for the memory engine - structured logging, request
context and metrics.
"""

from .context import (
    ContextManager,
    ContextScope,
    RequestContext,
)
from .logging import (
    LogLevel,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
)
from .metrics import (
    Metric,
    MetricsCollector,
    MetricType,
    Timer,
)

__all__ = [
    # Context
    "ContextManager",
    "ContextScope",
    "RequestContext",
    # Logging
    "LogLevel",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    # Metrics
    "Metric",
    "MetricsCollector",
    "MetricType",
    "Timer",
]
