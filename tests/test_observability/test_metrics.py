"""Tests for the Prometheus metrics collector."""

from unittest.mock import patch

from prometheus_client import REGISTRY

from feedsync.observability.metrics import get_metrics


def sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetricsCollector:
    def test_singleton(self):
        assert get_metrics() is get_metrics()

    def test_record_sync_counts_attempts_and_items(self):
        metrics = get_metrics()
        before_ok = sample("feedsync_sync_attempts_total", kind="metrics-rss", status="ok")
        before_items = sample("feedsync_items_synced_total", kind="metrics-rss")

        metrics.record_sync("metrics-rss", "ok", item_count=12, latency=0.4)

        assert sample("feedsync_sync_attempts_total", kind="metrics-rss", status="ok") == before_ok + 1
        assert sample("feedsync_items_synced_total", kind="metrics-rss") == before_items + 12
        assert sample("feedsync_sync_latency_seconds_count", kind="metrics-rss") >= 1

    def test_record_sync_without_items_or_latency(self):
        metrics = get_metrics()

        metrics.record_sync("metrics-quiet", "rate_limited")

        assert sample("feedsync_sync_attempts_total", kind="metrics-quiet", status="rate_limited") == 1
        assert sample("feedsync_items_synced_total", kind="metrics-quiet") == 0
        assert sample("feedsync_sync_latency_seconds_count", kind="metrics-quiet") == 0

    def test_record_error(self):
        get_metrics().record_error("metrics-gh", "HTTPStatusError")

        assert sample(
            "feedsync_adapter_errors_total", kind="metrics-gh", error_type="HTTPStatusError"
        ) == 1

    def test_gauges(self):
        metrics = get_metrics()

        metrics.set_in_flight("metrics-yt", 3)
        metrics.set_rate_budget("metrics-yt", 4200)

        assert sample("feedsync_syncs_in_flight", kind="metrics-yt") == 3
        assert sample("feedsync_rate_budget_remaining", kind="metrics-yt") == 4200

    def test_start_server_uses_settings_port(self, test_settings):
        with (
            patch("feedsync.observability.metrics.get_settings", return_value=test_settings),
            patch("feedsync.observability.metrics.start_http_server") as start,
        ):
            get_metrics().start_server()

        start.assert_called_once_with(test_settings.metrics_port, registry=REGISTRY)
