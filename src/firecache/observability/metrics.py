"""Prometheus metrics for the response cache.

Provides counters for:
- Reads (hits, misses) and writes
- Lazy evictions performed on read
- Entries removed by invalidation and by the expiry sweep

Usage:
    from firecache.observability.metrics import record_cache_hit

    record_cache_hit("firestore")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from firecache.config import settings

logger = logging.getLogger(__name__)


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    cache_hits_total: Any = None
    cache_misses_total: Any = None
    cache_sets_total: Any = None
    cache_evictions_total: Any = None
    cache_invalidated_entries_total: Any = None
    cache_swept_entries_total: Any = None

    _initialized: bool = field(default=False, repr=False)
    _registry: Any = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not settings.enable_metrics:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        from prometheus_client import REGISTRY, Counter

        self._registry = REGISTRY

        self.cache_hits_total = Counter(
            "firecache_hits_total",
            "Cache reads that returned a payload",
            ["backend"],
        )
        self.cache_misses_total = Counter(
            "firecache_misses_total",
            "Cache reads that found no live entry",
            ["backend"],
        )
        self.cache_sets_total = Counter(
            "firecache_sets_total",
            "Cache entries written",
            ["backend"],
        )
        self.cache_evictions_total = Counter(
            "firecache_evictions_total",
            "Expired entries evicted on read",
            ["backend"],
        )
        self.cache_invalidated_entries_total = Counter(
            "firecache_invalidated_entries_total",
            "Entries removed by entity or typename invalidation",
            ["backend"],
        )
        self.cache_swept_entries_total = Counter(
            "firecache_swept_entries_total",
            "Entries removed by the expiry sweep",
            ["backend"],
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"

        from prometheus_client import generate_latest

        return generate_latest(self._registry)


metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry


def record_cache_hit(backend: str) -> None:
    metrics = get_metrics()
    if metrics.cache_hits_total:
        metrics.cache_hits_total.labels(backend=backend).inc()


def record_cache_miss(backend: str) -> None:
    metrics = get_metrics()
    if metrics.cache_misses_total:
        metrics.cache_misses_total.labels(backend=backend).inc()


def record_cache_set(backend: str) -> None:
    metrics = get_metrics()
    if metrics.cache_sets_total:
        metrics.cache_sets_total.labels(backend=backend).inc()


def record_cache_eviction(backend: str) -> None:
    metrics = get_metrics()
    if metrics.cache_evictions_total:
        metrics.cache_evictions_total.labels(backend=backend).inc()


def record_invalidated(backend: str, count: int) -> None:
    """Record entries removed by an invalidate call.

    Args:
        backend: Store backend name (firestore, redis)
        count: Number of entries deleted
    """
    metrics = get_metrics()
    if metrics.cache_invalidated_entries_total and count:
        metrics.cache_invalidated_entries_total.labels(backend=backend).inc(count)


def record_swept(backend: str, count: int) -> None:
    """Record entries removed by the expiry sweep."""
    metrics = get_metrics()
    if metrics.cache_swept_entries_total and count:
        metrics.cache_swept_entries_total.labels(backend=backend).inc(count)
