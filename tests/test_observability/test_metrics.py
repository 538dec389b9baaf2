"""Tests for the Prometheus metrics collector."""

from prometheus_client import REGISTRY

from src.observability.metrics import get_metrics


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetricsCollector:
    """Tests for MetricsCollector recording helpers."""

    def test_get_metrics_is_singleton(self):
        assert get_metrics() is get_metrics()

    def test_record_success(self):
        metrics = get_metrics()
        before = _sample("trendtag_tags_collected_total", source="MetricsOk")

        metrics.record_source("MetricsOk", success=True, tag_count=12, latency=3.5)

        assert _sample("trendtag_tags_collected_total", source="MetricsOk") == before + 12
        assert _sample("trendtag_source_health", source="MetricsOk") == 1
        assert _sample(
            "trendtag_sources_crawled_total", source="MetricsOk", status="succeeded"
        ) >= 1
        assert _sample("trendtag_source_latency_seconds_count", source="MetricsOk") >= 1

    def test_record_failure_marks_unhealthy(self):
        metrics = get_metrics()

        metrics.record_source("MetricsBad", success=True, tag_count=1)
        metrics.record_source("MetricsBad", success=False)

        assert _sample("trendtag_source_health", source="MetricsBad") == 0
        assert _sample("trendtag_sources_crawled_total", source="MetricsBad", status="failed") == 1

    def test_record_cancelled(self):
        get_metrics().record_cancelled("MetricsStop")

        assert _sample(
            "trendtag_sources_crawled_total", source="MetricsStop", status="cancelled"
        ) == 1

    def test_zero_item_errors_not_counted(self):
        metrics = get_metrics()

        metrics.record_item_errors("MetricsItems", 0)
        assert _sample("trendtag_extraction_item_errors_total", source="MetricsItems") == 0

        metrics.record_item_errors("MetricsItems", 2)
        assert _sample("trendtag_extraction_item_errors_total", source="MetricsItems") == 2
