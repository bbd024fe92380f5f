"""
Prometheus metrics for monitoring source synchronization.

Defines and exposes metrics for:
- Sync attempts by outcome
- Items synced per adapter kind
- Adapter latency and errors
- In-flight fetches and remaining rate budget

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from feedsync.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for adapter latency histograms (in seconds)
LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the sync engine.

    Usage:
        metrics = get_metrics()
        metrics.start_server()
        metrics.record_sync("rss", "ok", item_count=12, latency=0.4)
    """

    def __init__(self):
        self.sync_attempts = Counter(
            "feedsync_sync_attempts_total",
            "Total sync attempts by outcome",
            ["kind", "status"],  # status: ok, error, rate_limited
        )

        self.items_synced = Counter(
            "feedsync_items_synced_total",
            "Total normalized items returned by adapters",
            ["kind"],
        )

        self.adapter_errors = Counter(
            "feedsync_adapter_errors_total",
            "Total adapter sync failures",
            ["kind", "error_type"],
        )

        self.sync_latency = Histogram(
            "feedsync_sync_latency_seconds",
            "Time spent inside adapter sync calls",
            ["kind"],
            buckets=LATENCY_BUCKETS,
        )

        self.syncs_in_flight = Gauge(
            "feedsync_syncs_in_flight",
            "Number of adapter fetches currently running",
            ["kind"],
        )

        self.rate_budget_remaining = Gauge(
            "feedsync_rate_budget_remaining",
            "Lowest remaining API calls reported for an adapter kind",
            ["kind"],
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    def record_sync(
        self,
        kind: str,
        status: str,
        item_count: int = 0,
        latency: float | None = None,
    ) -> None:
        """
        Record the outcome of one sync attempt.

        Args:
            kind: Adapter kind
            status: ok, error or rate_limited
            item_count: Number of items the adapter returned
            latency: Optional adapter latency in seconds
        """
        self.sync_attempts.labels(kind=kind, status=status).inc()
        if item_count:
            self.items_synced.labels(kind=kind).inc(item_count)
        if latency is not None:
            self.sync_latency.labels(kind=kind).observe(latency)

    def record_error(self, kind: str, error_type: str) -> None:
        """Record an adapter failure."""
        self.adapter_errors.labels(kind=kind, error_type=error_type).inc()

    def set_in_flight(self, kind: str, count: int) -> None:
        """Set the number of in-flight fetches for a kind."""
        self.syncs_in_flight.labels(kind=kind).set(count)

    def set_rate_budget(self, kind: str, remaining: int) -> None:
        """Set the tracked remaining rate budget for a kind."""
        self.rate_budget_remaining.labels(kind=kind).set(remaining)


_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
