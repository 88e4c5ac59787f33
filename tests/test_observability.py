"""Tests for observability metrics module."""

import pytest
from vitalis.observability.metrics import MetricsStore


class TestContextMetrics:
    """Tests for per-context generation metrics."""

    def test_record_latency(self):
        store = MetricsStore()
        store.record_generation_latency("dashboard", 50.0)
        store.record_generation_latency("dashboard", 100.0)
        store.record_generation_latency("dashboard", 150.0)

        summary = store.get_summary()
        context_metrics = summary["contexts"]["dashboard"]

        assert context_metrics["call_count"] == 3
        assert context_metrics["p50_ms"] == 100.0
        assert context_metrics["max_ms"] == 150.0

    def test_record_generation_error(self):
        store = MetricsStore()
        store.record_generation_error("timeline", "QUOTA_EXCEEDED")
        store.record_generation_error("timeline", "QUOTA_EXCEEDED")
        store.record_generation_error("timeline", "UPSTREAM_UNAVAILABLE")

        summary = store.get_summary()
        errors = summary["contexts"]["timeline"]["errors"]

        assert errors["QUOTA_EXCEEDED"] == 2
        assert errors["UPSTREAM_UNAVAILABLE"] == 1
        assert summary["global_errors"]["QUOTA_EXCEEDED"] == 2

    def test_global_errors(self):
        store = MetricsStore()
        store.record_error("STORAGE_FAILURE")
        store.record_error("STORAGE_FAILURE")
        store.record_error("INTERNAL_ERROR")

        summary = store.get_summary()
        assert summary["global_errors"]["STORAGE_FAILURE"] == 2
        assert summary["global_errors"]["INTERNAL_ERROR"] == 1


class TestCacheMetrics:
    """Tests for response cache counters."""

    def test_hit_rate(self):
        store = MetricsStore()
        store.record_cache_event("misses")
        store.record_cache_event("hits")
        store.record_cache_event("hits")
        store.record_cache_event("hits")

        cache = store.get_summary()["cache"]
        assert cache["hits"] == 3
        assert cache["hit_rate"] == 0.75

    def test_hit_rate_without_lookups(self):
        assert MetricsStore().get_summary()["cache"]["hit_rate"] is None

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            MetricsStore().record_cache_event("evictions")


class TestMetricsSummary:
    """Tests for metrics summary structure."""

    def test_summary_structure(self):
        store = MetricsStore()
        summary = store.get_summary()

        assert "uptime_seconds" in summary
        assert "collected_at" in summary
        assert "contexts" in summary
        assert "global_errors" in summary
        assert "cache" in summary
        assert "dedup_joins" in summary["cache"]

    def test_reset(self):
        store = MetricsStore()
        store.record_generation_latency("dashboard", 100.0)
        store.record_error("TEST_ERROR")
        store.record_cache_event("stores")

        store.reset()
        summary = store.get_summary()

        assert summary["contexts"] == {}
        assert summary["global_errors"] == {}
        assert summary["cache"]["stores"] == 0
