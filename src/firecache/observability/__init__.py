"""Observability for the response cache.

Provides structured logging and metrics:
- JSON structured logging with cache operation context
- Prometheus counters for reads, writes, evictions and deletions
"""

from firecache.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    collection_var,
    configure_logging,
    operation_var,
)
from firecache.observability.metrics import get_metrics, metrics_registry

__all__ = [
    # Logging
    "configure_logging",
    "ConsoleFormatter",
    "JsonFormatter",
    "LogContext",
    "operation_var",
    "collection_var",
    # Metrics
    "metrics_registry",
    "get_metrics",
]
