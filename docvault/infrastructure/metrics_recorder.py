"""
Metrics Recorder

Prometheus counters and histograms for storage operations, cache lookups,
dropped notifications and reconciliation.
"""

import time
from contextlib import contextmanager
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, REGISTRY

DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsRecorder:
    """
    Records storage metrics into a Prometheus registry.

    Tests pass a fresh CollectorRegistry so metric names never collide
    between instances.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "docvault"):
        self.registry = registry if registry is not None else REGISTRY

        self.operation_duration = Histogram(
            "storage_operation_duration_seconds",
            "Duration of storage operations",
            ["operation", "backend", "success"],
            namespace=namespace,
            buckets=DURATION_BUCKETS,
            registry=self.registry,
        )
        self.operation_errors = Counter(
            "storage_operation_errors_total",
            "Storage operations that ended in an error",
            ["operation", "backend", "kind"],
            namespace=namespace,
            registry=self.registry,
        )
        self.cache_requests = Counter(
            "cache_requests_total",
            "Metadata cache lookups",
            ["operation", "result"],
            namespace=namespace,
            registry=self.registry,
        )
        self.notifications_dropped = Counter(
            "notifications_dropped_total",
            "Notification events dropped because a queue was full",
            ["kind"],
            namespace=namespace,
            registry=self.registry,
        )
        self.orphans_removed = Counter(
            "orphans_removed_total",
            "Catalog rows removed because their object was missing",
            namespace=namespace,
            registry=self.registry,
        )

    def observe_operation(self, operation: str, backend: str, seconds: float, success: bool) -> None:
        self.operation_duration.labels(
            operation=operation, backend=backend, success=str(success).lower()
        ).observe(seconds)

    def record_error(self, operation: str, backend: str, kind: str) -> None:
        self.operation_errors.labels(operation=operation, backend=backend, kind=kind).inc()

    def record_cache(self, operation: str, hit: bool) -> None:
        self.cache_requests.labels(operation=operation, result="hit" if hit else "miss").inc()

    def record_dropped_notification(self, kind: str) -> None:
        self.notifications_dropped.labels(kind=kind).inc()

    def record_orphans_removed(self, count: int) -> None:
        if count > 0:
            self.orphans_removed.inc(count)

    @contextmanager
    def track(self, operation: str, backend: str):
        """
        Time a block and record its outcome.

        Example:
            with metrics.track("upload", "aws"):
                await provider.upload(...)
        """
        started = time.perf_counter()
        success = False
        try:
            yield
            success = True
        finally:
            self.observe_operation(operation, backend, time.perf_counter() - started, success)
