"""
Metrics instrumentation wrapper around prometheus_client.
"""
from functools import wraps
import time

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


class MetricsRegistry:
    """
    Central metrics registry for the clinic back office.

    Provides typed access to all application metrics. Pass a fresh
    `CollectorRegistry` to build an isolated instance (tests); the
    module-level `metrics` uses the default process registry.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        return Counter(name, description, labels or [], registry=self.registry)

    def _create_histogram(self, name, description, labels=None, buckets=None):
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets, registry=self.registry)
        return Histogram(name, description, labels or [], registry=self.registry)

    def _setup_metrics(self):
        # ===================================================================
        # HTTP Metrics
        # ===================================================================
        self.http_requests_total = self._create_counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'status']
        )

        self.exceptions_total = self._create_counter(
            'exceptions_total',
            'Total exceptions',
            ['exception_type', 'location']
        )

        # ===================================================================
        # Invoice Reconciliation Metrics
        # ===================================================================
        self.invoice_reconciliation_runs_total = self._create_counter(
            'invoice_reconciliation_runs_total',
            'Invoice reconciliation passes',
            ['result']  # completed, partial, fetch_failed
        )

        self.invoice_reconciliation_items_total = self._create_counter(
            'invoice_reconciliation_items_total',
            'Orders processed by invoice reconciliation',
            ['result']  # created, failed, cancelled
        )

        self.invoice_reconciliation_duration_seconds = self._create_histogram(
            'invoice_reconciliation_duration_seconds',
            'Duration of one invoice reconciliation pass',
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
        )

    def track_duration(self, histogram_metric):
        """
        Decorator to track function duration.

        Usage:
            @metrics.track_duration(metrics.invoice_reconciliation_duration_seconds)
            def reconcile(self):
                ...
        """
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return func(*args, **kwargs)
                finally:
                    histogram_metric.observe(time.time() - start_time)
            return wrapper
        return decorator


# Global metrics instance
metrics = MetricsRegistry()
