"""Prometheus metrics for the storage environment."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all storage environment metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Handle cache metrics
        self.handles_opened_total = Counter(
            "dbenv_handles_opened_total",
            "Engine handles physically opened",
            registry=self._registry,
        )

        self.handles_closed_total = Counter(
            "dbenv_handles_closed_total",
            "Engine handles physically closed",
            registry=self._registry,
        )

        self.handles_open = Gauge(
            "dbenv_handles_open",
            "Engine handles currently held in the cache",
            registry=self._registry,
        )

        # Transaction metrics
        self.transactions_total = Counter(
            "dbenv_transactions_total",
            "Total number of transactions",
            ["status"],  # commit, abort
            registry=self._registry,
        )

        # Record metrics
        self.record_ops_total = Counter(
            "dbenv_record_ops_total",
            "Record operations issued through database handles",
            ["op", "status"],  # op: read, write, erase, exists; status: ok, fail
            registry=self._registry,
        )

        # Maintenance metrics
        self.flushes_total = Counter(
            "dbenv_flushes_total",
            "Total flush passes",
            ["shutdown"],
            registry=self._registry,
        )

        self.checkpoints_total = Counter(
            "dbenv_checkpoints_total",
            "Total per-file checkpoints",
            registry=self._registry,
        )

        self.verify_results_total = Counter(
            "dbenv_verify_results_total",
            "Verify outcomes",
            ["result"],  # ok, recovered, recovery_failed
            registry=self._registry,
        )

        self.salvaged_records_total = Counter(
            "dbenv_salvaged_records_total",
            "Records extracted by salvage",
            registry=self._registry,
        )

        self.rewrite_duration_seconds = Histogram(
            "dbenv_rewrite_duration_seconds",
            "Rewrite duration in seconds",
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0),
            registry=self._registry,
        )

        self.info = Info(
            "dbenv",
            "Storage environment information",
            registry=self._registry,
        )


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(
    port: int | None = None, registry: CollectorRegistry | None = None
) -> MetricsRegistry:
    """
    Set up the global metrics registry and, optionally, its HTTP endpoint.

    The default registry is built once; later calls reuse it.

    Args:
        port: Port for the metrics HTTP server (no server if None)
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    if _metrics is None or registry is not None:
        _metrics = MetricsRegistry(registry)

    from db_env import __version__
    _metrics.info.info({"version": __version__})

    if port is not None:
        start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
